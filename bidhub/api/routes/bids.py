"""
Bid API Routes
==============

REST endpoints for the bid lifecycle between contractors (GC/SC) and
project owners.

Routes:
  POST   /api/v1/bids                       -- Create a draft bid (GC/SC)
  GET    /api/v1/bids/mine                  -- Caller's own bids (GC/SC)
  GET    /api/v1/bids/{bid_id}              -- Bid detail (contractor or owner)
  PATCH  /api/v1/bids/{bid_id}              -- Edit a draft bid
  PUT    /api/v1/bids/{bid_id}/items        -- Replace items of a draft bid
  POST   /api/v1/bids/{bid_id}/submit       -- draft -> submitted
  POST   /api/v1/bids/{bid_id}/withdraw     -- -> withdrawn
  POST   /api/v1/bids/{bid_id}/accept       -- -> accepted (owner)
  POST   /api/v1/bids/{bid_id}/reject       -- -> rejected (owner)
  POST   /api/v1/bids/{bid_id}/start        -- accepted -> started (owner)
  DELETE /api/v1/bids/{bid_id}              -- Hard delete
  GET    /api/v1/projects/{project_id}/bids -- Bids on a project (owner)

Service errors are ``AppError`` subclasses and are turned into the error
envelope by the handlers registered in ``bidhub.main``.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from bidhub.api.deps import ContractorUser, CurrentUser, DBSession, ProjectOwnerUser
from bidhub.api.schemas.bid import (
    BidCreateRequest,
    BidDetailOut,
    BidItemOut,
    BidItemsUpdateOut,
    BidItemsUpdateRequest,
    BidOut,
    BidPatchRequest,
    MyBidOut,
    ProjectBidOut,
    StatusHistoryOut,
)
from bidhub.api.schemas.common import ERROR_RESPONSES, ApiResponse, MessageResponse
from bidhub.models import Bid, ContractorType, UserRole
from bidhub.services import bidService

router = APIRouter(tags=["Bids"], responses=ERROR_RESPONSES)


def _bid_response(bid: Bid, message: str) -> ApiResponse[BidOut]:
    return ApiResponse[BidOut](data=BidOut.model_validate(bid), message=message)


def _items_in(body_items) -> list[bidService.BidItemInput]:
    return [
        bidService.BidItemInput(name=i.name, price=i.price, description=i.description)
        for i in body_items
    ]


# ---------------------------------------------------------------------------
# Contractor endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/bids",
    response_model=ApiResponse[BidOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create a draft bid",
)
async def create_bid(
    body: BidCreateRequest,
    db: DBSession,
    current_user: ContractorUser,
) -> ApiResponse[BidOut]:
    contractor_type = (
        ContractorType.SUBCONTRACTOR
        if current_user.role == UserRole.SUBCONTRACTOR
        else ContractorType.GENERAL_CONTRACTOR
    )
    bid = await bidService.create_bid(
        db,
        project_id=body.project_id,
        contractor_id=current_user.id,
        contractor_type=contractor_type,
        total_price=body.total_price,
        items=_items_in(body.items),
        estimated_start_date=body.estimated_start_date,
        estimated_end_date=body.estimated_end_date,
        notes=body.notes,
        company_highlights=body.company_highlights,
        relevant_experience=body.relevant_experience,
        credentials=body.credentials,
    )
    return _bid_response(bid, "Bid created")


@router.get(
    "/bids/mine",
    response_model=ApiResponse[list[MyBidOut]],
    summary="List the caller's bids",
)
async def get_my_bids(db: DBSession, current_user: ContractorUser) -> ApiResponse[list[MyBidOut]]:
    rows = await bidService.get_my_bids(db, current_user.id)
    return ApiResponse[list[MyBidOut]](data=[MyBidOut.model_validate(r) for r in rows])


@router.patch(
    "/bids/{bid_id}",
    response_model=ApiResponse[BidOut],
    summary="Edit a draft bid",
)
async def update_bid(
    bid_id: uuid.UUID,
    body: BidPatchRequest,
    db: DBSession,
    current_user: CurrentUser,
) -> ApiResponse[BidOut]:
    patch = bidService.BidPatch(**body.model_dump(exclude_unset=True))
    bid = await bidService.update_bid(db, bid_id, current_user.id, patch)
    return _bid_response(bid, "Bid updated")


@router.put(
    "/bids/{bid_id}/items",
    response_model=ApiResponse[BidItemsUpdateOut],
    summary="Replace the items of a draft bid",
)
async def update_bid_items(
    bid_id: uuid.UUID,
    body: BidItemsUpdateRequest,
    db: DBSession,
    current_user: CurrentUser,
) -> ApiResponse[BidItemsUpdateOut]:
    result = await bidService.update_bid_items(db, bid_id, current_user.id, _items_in(body.items))
    return ApiResponse[BidItemsUpdateOut](
        data=BidItemsUpdateOut.model_validate(result),
        message="Bid items updated",
    )


@router.post("/bids/{bid_id}/submit", response_model=ApiResponse[BidOut], summary="Submit a bid")
async def submit_bid(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> ApiResponse[BidOut]:
    bid = await bidService.submit_bid(db, bid_id, current_user.id)
    return _bid_response(bid, "Bid submitted")


@router.post("/bids/{bid_id}/withdraw", response_model=ApiResponse[BidOut], summary="Withdraw a bid")
async def withdraw_bid(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> ApiResponse[BidOut]:
    bid = await bidService.withdraw_bid(db, bid_id, current_user.id)
    return _bid_response(bid, "Bid withdrawn")


# ---------------------------------------------------------------------------
# Project owner endpoints
# ---------------------------------------------------------------------------

@router.post("/bids/{bid_id}/accept", response_model=ApiResponse[BidOut], summary="Accept a bid")
async def accept_bid(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> ApiResponse[BidOut]:
    bid = await bidService.accept_bid(db, bid_id, current_user.id)
    return _bid_response(bid, "Bid accepted")


@router.post("/bids/{bid_id}/reject", response_model=ApiResponse[BidOut], summary="Reject a bid")
async def reject_bid(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> ApiResponse[BidOut]:
    bid = await bidService.reject_bid(db, bid_id, current_user.id)
    return _bid_response(bid, "Bid rejected")


@router.post(
    "/bids/{bid_id}/start",
    response_model=ApiResponse[BidOut],
    summary="Start the project from an accepted bid",
)
async def start_project(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> ApiResponse[BidOut]:
    bid = await bidService.start_project_from_bid(db, bid_id, current_user.id)
    return _bid_response(bid, "Project started")


@router.get(
    "/projects/{project_id}/bids",
    response_model=ApiResponse[list[ProjectBidOut]],
    summary="List the bids on a project",
)
async def get_project_bids(
    project_id: uuid.UUID,
    db: DBSession,
    current_user: ProjectOwnerUser,
) -> ApiResponse[list[ProjectBidOut]]:
    rows = await bidService.get_project_bids(db, project_id, current_user.id)
    data = [
        ProjectBidOut(
            **BidOut.model_validate(row.bid).model_dump(),
            contractor_name=row.contractor_name,
            contractor_email=row.contractor_email,
            contractor_company=row.contractor_company,
        )
        for row in rows
    ]
    return ApiResponse[list[ProjectBidOut]](data=data)


# ---------------------------------------------------------------------------
# Either party
# ---------------------------------------------------------------------------

@router.get(
    "/bids/{bid_id}",
    response_model=ApiResponse[BidDetailOut],
    summary="Bid detail with items and status history",
)
async def get_bid_detail(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> ApiResponse[BidDetailOut]:
    detail = await bidService.get_bid_detail(db, bid_id, current_user.id)
    data = BidDetailOut(
        **BidOut.model_validate(detail.bid).model_dump(),
        project_title=detail.project_title,
        contractor_name=detail.contractor_name,
        items=[BidItemOut.model_validate(item) for item in detail.items],
        history=[StatusHistoryOut.model_validate(entry) for entry in detail.history],
        available_actions=detail.available_actions,
    )
    return ApiResponse[BidDetailOut](data=data)


@router.delete(
    "/bids/{bid_id}",
    response_model=MessageResponse,
    summary="Delete a bid",
)
async def delete_bid(bid_id: uuid.UUID, db: DBSession, current_user: CurrentUser) -> MessageResponse:
    await bidService.delete_bid(db, bid_id, current_user.id)
    return MessageResponse(message="Bid deleted")
