"""
Pydantic v2 schemas for the Bids API.

Money values are ``Decimal`` and serialize as strings with two decimals
(``"12500.00"``) so clients never see float rounding.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import Field, model_validator

from bidhub.models.bid import BidStatus, ContractorType

from .common import CamelModel


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class BidItemIn(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class BidCreateRequest(CamelModel):
    """Request body for ``POST /bids``.

    ``totalPrice`` may be omitted when ``items`` are given; the total then
    equals the sum of the item prices.
    """

    project_id: uuid.UUID
    total_price: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    items: list[BidItemIn] = Field(default_factory=list)
    estimated_start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None
    notes: Optional[str] = None
    company_highlights: Optional[str] = None
    relevant_experience: Optional[str] = None
    credentials: Optional[str] = None

    @model_validator(mode="after")
    def _price_or_items(self) -> "BidCreateRequest":
        if self.total_price is None and not self.items:
            raise ValueError("Either totalPrice or items are required")
        return self


class BidItemsUpdateRequest(CamelModel):
    items: list[BidItemIn]


class BidPatchRequest(CamelModel):
    """Request body for ``PATCH /bids/{id}``; at least one field."""

    total_price: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    estimated_start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None
    notes: Optional[str] = None
    company_highlights: Optional[str] = None
    relevant_experience: Optional[str] = None
    credentials: Optional[str] = None


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class BidItemOut(CamelModel):
    id: uuid.UUID
    name: str
    description: Optional[str] = None
    price: Decimal
    created_at: datetime


class BidOut(CamelModel):
    id: uuid.UUID
    project_id: uuid.UUID
    contractor_id: uuid.UUID
    contractor_type: ContractorType
    total_price: Decimal
    estimated_start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None
    notes: Optional[str] = None
    company_highlights: Optional[str] = None
    relevant_experience: Optional[str] = None
    credentials: Optional[str] = None
    status: BidStatus
    created_at: datetime
    updated_at: datetime


class ProjectBidOut(BidOut):
    """A bid as the project owner sees it in the project's bid list."""

    contractor_name: str
    contractor_email: str
    contractor_company: Optional[str] = None


class MyBidOut(CamelModel):
    """A bid as its contractor sees it in ``GET /bids/mine``."""

    id: uuid.UUID
    project_id: uuid.UUID
    status: BidStatus
    amount: Decimal
    project_name: str
    location: Optional[str] = None
    project_type: Optional[str] = None
    client_name: str
    items_count: int
    created_at: datetime
    updated_at: datetime


class StatusHistoryOut(CamelModel):
    old_status: Optional[BidStatus] = None
    new_status: BidStatus
    changed_by: uuid.UUID
    changed_by_name: Optional[str] = None
    changed_at: datetime


class BidDetailOut(BidOut):
    project_title: str
    contractor_name: str
    items: list[BidItemOut]
    history: list[StatusHistoryOut]
    available_actions: list[BidStatus]


class BidItemsUpdateOut(CamelModel):
    count: int
    total_calculated: Decimal
