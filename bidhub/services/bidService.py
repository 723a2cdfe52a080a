"""
Bid Service
===========

Business logic for the bid lifecycle between contractors and project
owners:

- Creating draft bids (one per contractor per project)
- Replacing line items and recomputing the total
- Editing draft fields through an explicit ``BidPatch``
- Contractor transitions: submit, withdraw
- Owner transitions: view, accept, reject, start project
- Hard delete by either party
- Read models for the owner, the contractor, and the detail view

Every multi-statement operation runs inside ``atomic()`` and reads the bid
with ``SELECT ... FOR UPDATE`` first, so racing requests on the same bid
are serialized by the database: the first to take the lock wins and the
other one re-reads the new status and fails its guard.  Each transition
appends exactly one ``BidStatusLog`` row.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from bidhub.core.database import atomic
from bidhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from bidhub.models import (
    Bid,
    BidItem,
    BidStatus,
    BidStatusLog,
    ContractorType,
    Project,
    ProjectStatus,
    User,
)
from bidhub.models.base import utcnow
from bidhub.services.bidStateManager import (
    ActorType,
    get_valid_transitions,
    validate_transition,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class BidNotFoundError(NotFoundError):
    """Raised when the bid does not exist."""


class ProjectNotFoundError(NotFoundError):
    """Raised when the referenced project does not exist."""


class DuplicateBidError(ConflictError):
    """Raised when the contractor already has a bid on the project."""


class BidAccessDeniedError(AuthorizationError):
    """Raised when the caller is neither the contractor nor the project owner
    required by the operation."""


class BidTransitionError(InvalidTransitionError):
    """Raised when the state machine rejects a transition."""


class InvalidBidDataError(ValidationError):
    """Raised for inconsistent bid input (empty patch, bad schedule...)."""


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_CENTS = Decimal("0.01")
DUPLICATE_BID_CONSTRAINT = "uq_bids_project_contractor"


def _money(value: Any) -> Decimal:
    """Normalise a price to a two-decimal ``Decimal``."""
    amount = value if isinstance(value, Decimal) else Decimal(str(value))
    return amount.quantize(_CENTS, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Input structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BidItemInput:
    name: str
    price: Decimal
    description: Optional[str] = None


@dataclass
class BidPatch:
    """Partial update for a draft bid.

    Every field maps 1:1 to a ``bids`` column.  ``None`` means "leave
    unchanged"; a patch with no field set is rejected.
    """

    total_price: Optional[Decimal] = None
    estimated_start_date: Optional[date] = None
    estimated_end_date: Optional[date] = None
    notes: Optional[str] = None
    company_highlights: Optional[str] = None
    relevant_experience: Optional[str] = None
    credentials: Optional[str] = None

    def to_values(self) -> dict[str, Any]:
        values = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }
        if not values:
            raise InvalidBidDataError("Patch must set at least one field.")
        if "total_price" in values:
            if values["total_price"] < 0:
                raise InvalidBidDataError("Total price cannot be negative.")
            values["total_price"] = _money(values["total_price"])
        return values


# ---------------------------------------------------------------------------
# Data transfer objects
# ---------------------------------------------------------------------------

@dataclass
class BidItemsUpdate:
    count: int
    total_calculated: Decimal


@dataclass
class ProjectBidRow:
    """A bid as listed for the project owner."""

    bid: Bid
    contractor_name: str
    contractor_email: str
    contractor_company: Optional[str]


@dataclass
class MyBidRow:
    """A bid as listed for the contractor who made it."""

    id: uuid.UUID
    project_id: uuid.UUID
    status: BidStatus
    amount: Decimal
    project_name: str
    location: Optional[str]
    project_type: Optional[str]
    client_name: str
    items_count: int
    created_at: datetime
    updated_at: datetime


@dataclass
class StatusHistoryEntry:
    old_status: Optional[BidStatus]
    new_status: BidStatus
    changed_by: uuid.UUID
    changed_by_name: Optional[str]
    changed_at: datetime


@dataclass
class BidDetail:
    bid: Bid
    project_title: str
    contractor_name: str
    items: list[BidItem] = field(default_factory=list)
    history: list[StatusHistoryEntry] = field(default_factory=list)
    available_actions: list[BidStatus] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _validate_schedule(start: Optional[date], end: Optional[date]) -> None:
    if start is not None and end is not None and end < start:
        raise InvalidBidDataError("Estimated end date cannot be before the start date.")


def _validate_items(items: Sequence[BidItemInput]) -> None:
    for item in items:
        if not item.name or not item.name.strip():
            raise InvalidBidDataError("Every bid item needs a name.")
        if Decimal(str(item.price)) < 0:
            raise InvalidBidDataError(f"Item '{item.name}' has a negative price.")


async def _insert_items(
    db: AsyncSession,
    bid_id: uuid.UUID,
    items: Iterable[BidItemInput],
) -> Decimal:
    total = Decimal("0.00")
    for item in items:
        price = _money(item.price)
        total += price
        db.add(
            BidItem(
                bid_id=bid_id,
                name=item.name.strip(),
                description=item.description,
                price=price,
            )
        )
    await db.flush()
    return total


async def _log_status(
    db: AsyncSession,
    *,
    bid_id: uuid.UUID,
    old_status: Optional[BidStatus],
    new_status: BidStatus,
    changed_by: uuid.UUID,
) -> None:
    """Append an immutable status log row within the caller's transaction."""
    db.add(
        BidStatusLog(
            bid_id=bid_id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
        )
    )
    await db.flush()


def _is_duplicate_bid(exc: IntegrityError) -> bool:
    """True when the violation is the one-bid-per-contractor constraint.

    PostgreSQL names the constraint; SQLite only lists the columns.
    """
    message = str(exc.orig)
    return DUPLICATE_BID_CONSTRAINT in message or (
        "UNIQUE constraint failed" in message and "bids.contractor_id" in message
    )


async def _lock_bid(db: AsyncSession, bid_id: uuid.UUID) -> tuple[Bid, uuid.UUID]:
    """Load and row-lock a bid together with its project's owner id.

    Raises:
        BidNotFoundError: If the bid/project join yields no row.
    """
    stmt = (
        select(Bid, Project.owner_id)
        .join(Project, Bid.project_id == Project.id)
        .where(Bid.id == bid_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    row = (await db.execute(stmt)).one_or_none()
    if row is None:
        raise BidNotFoundError(f"Bid '{bid_id}' not found")
    return row[0], row[1]


async def _apply_transition(
    db: AsyncSession,
    bid: Bid,
    new_status: BidStatus,
    *,
    actor_type: ActorType,
    actor_id: uuid.UUID,
) -> BidStatus:
    """Validate and persist a status change plus its log row.

    Returns the previous status.
    """
    old_status = bid.status
    result = validate_transition(old_status, new_status, actor_type)
    if not result.allowed:
        raise BidTransitionError(result.reason or "Transition not allowed.")

    bid.status = new_status
    bid.updated_at = utcnow()
    await db.flush()
    await _log_status(
        db,
        bid_id=bid.id,
        old_status=old_status,
        new_status=new_status,
        changed_by=actor_id,
    )
    logger.info(
        "Bid transition: bid=%s %s -> %s by %s=%s",
        bid.id, old_status.value, new_status.value, actor_type.value, actor_id,
    )
    return old_status


async def _contractor_transition(
    db: AsyncSession,
    bid_id: uuid.UUID,
    contractor_id: uuid.UUID,
    new_status: BidStatus,
) -> Bid:
    async with atomic(db):
        bid, _owner_id = await _lock_bid(db, bid_id)
        if bid.contractor_id != contractor_id:
            raise BidAccessDeniedError("Unauthorized: this is not your bid.")
        await _apply_transition(
            db, bid, new_status, actor_type=ActorType.CONTRACTOR, actor_id=contractor_id,
        )
    return bid


async def _owner_transition(
    db: AsyncSession,
    bid_id: uuid.UUID,
    owner_id: uuid.UUID,
    new_status: BidStatus,
) -> Bid:
    async with atomic(db):
        bid, project_owner_id = await _lock_bid(db, bid_id)
        if project_owner_id != owner_id:
            raise BidAccessDeniedError("Unauthorized: you do not own this project.")
        await _apply_transition(
            db, bid, new_status, actor_type=ActorType.OWNER, actor_id=owner_id,
        )
    return bid


# ---------------------------------------------------------------------------
# Contractor operations
# ---------------------------------------------------------------------------

async def create_bid(
    db: AsyncSession,
    *,
    project_id: uuid.UUID,
    contractor_id: uuid.UUID,
    contractor_type: ContractorType = ContractorType.GENERAL_CONTRACTOR,
    total_price: Optional[Decimal] = None,
    items: Sequence[BidItemInput] = (),
    estimated_start_date: Optional[date] = None,
    estimated_end_date: Optional[date] = None,
    notes: Optional[str] = None,
    company_highlights: Optional[str] = None,
    relevant_experience: Optional[str] = None,
    credentials: Optional[str] = None,
) -> Bid:
    """Create a draft bid with its items and the initial ``null -> draft``
    log row.

    ``total_price`` may be omitted when items are given; it then equals the
    sum of the item prices.

    Raises:
        ProjectNotFoundError: If the project does not exist.
        DuplicateBidError: If the contractor already bid on the project.
        InvalidBidDataError: For missing price or inconsistent input.
    """
    _validate_items(items)
    _validate_schedule(estimated_start_date, estimated_end_date)
    if total_price is None and not items:
        raise InvalidBidDataError("Either totalPrice or items are required.")
    if total_price is not None and Decimal(str(total_price)) < 0:
        raise InvalidBidDataError("Total price cannot be negative.")

    try:
        async with atomic(db):
            project = (
                await db.execute(select(Project.id).where(Project.id == project_id))
            ).scalar_one_or_none()
            if project is None:
                raise ProjectNotFoundError(f"Project '{project_id}' not found")

            existing = (
                await db.execute(
                    select(Bid.id).where(
                        Bid.project_id == project_id,
                        Bid.contractor_id == contractor_id,
                    )
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise DuplicateBidError("You have already created a bid for this project.")

            bid = Bid(
                project_id=project_id,
                contractor_id=contractor_id,
                contractor_type=contractor_type,
                total_price=_money(total_price) if total_price is not None else Decimal("0.00"),
                estimated_start_date=estimated_start_date,
                estimated_end_date=estimated_end_date,
                notes=notes,
                company_highlights=company_highlights,
                relevant_experience=relevant_experience,
                credentials=credentials,
                status=BidStatus.DRAFT,
            )
            db.add(bid)
            await db.flush()

            items_total = await _insert_items(db, bid.id, items)
            if total_price is None:
                bid.total_price = items_total
                await db.flush()

            await _log_status(
                db,
                bid_id=bid.id,
                old_status=None,
                new_status=BidStatus.DRAFT,
                changed_by=contractor_id,
            )
    except IntegrityError as exc:
        if not _is_duplicate_bid(exc):
            raise
        # Lost a race against a concurrent create for the same pair
        raise DuplicateBidError("You have already created a bid for this project.") from exc

    logger.info(
        "Bid created: bid=%s project=%s contractor=%s total=%s items=%d",
        bid.id, project_id, contractor_id, bid.total_price, len(items),
    )
    return bid


async def update_bid_items(
    db: AsyncSession,
    bid_id: uuid.UUID,
    contractor_id: uuid.UUID,
    items: Sequence[BidItemInput],
) -> BidItemsUpdate:
    """Replace every item of a draft bid and set its total to the sum of the
    new item prices.  The status does not change, so nothing is logged.
    """
    _validate_items(items)

    async with atomic(db):
        bid, _owner_id = await _lock_bid(db, bid_id)
        if bid.contractor_id != contractor_id:
            raise BidAccessDeniedError("Unauthorized: this is not your bid.")
        if bid.status != BidStatus.DRAFT:
            raise BidTransitionError("Cannot update items unless bid is in draft status.")

        await db.execute(delete(BidItem).where(BidItem.bid_id == bid_id))
        total = await _insert_items(db, bid_id, items)

        bid.total_price = total
        bid.updated_at = utcnow()
        await db.flush()

    logger.info("Bid items replaced: bid=%s count=%d total=%s", bid_id, len(items), total)
    return BidItemsUpdate(count=len(items), total_calculated=total)


async def update_bid(
    db: AsyncSession,
    bid_id: uuid.UUID,
    contractor_id: uuid.UUID,
    patch: BidPatch,
) -> Bid:
    """Apply a ``BidPatch`` to a draft bid."""
    values = patch.to_values()

    async with atomic(db):
        bid, _owner_id = await _lock_bid(db, bid_id)
        if bid.contractor_id != contractor_id:
            raise BidAccessDeniedError("Unauthorized: this is not your bid.")
        if bid.status != BidStatus.DRAFT:
            raise BidTransitionError("Only draft bids can be edited.")

        _validate_schedule(
            values.get("estimated_start_date", bid.estimated_start_date),
            values.get("estimated_end_date", bid.estimated_end_date),
        )
        for column, value in values.items():
            setattr(bid, column, value)
        bid.updated_at = utcnow()
        await db.flush()

    logger.info("Bid updated: bid=%s fields=%s", bid_id, sorted(values))
    return bid


async def submit_bid(db: AsyncSession, bid_id: uuid.UUID, contractor_id: uuid.UUID) -> Bid:
    """``draft -> submitted``."""
    return await _contractor_transition(db, bid_id, contractor_id, BidStatus.SUBMITTED)


async def withdraw_bid(db: AsyncSession, bid_id: uuid.UUID, contractor_id: uuid.UUID) -> Bid:
    """Any live status ``-> withdrawn``."""
    return await _contractor_transition(db, bid_id, contractor_id, BidStatus.WITHDRAWN)


# ---------------------------------------------------------------------------
# Owner operations
# ---------------------------------------------------------------------------

async def accept_bid(db: AsyncSession, bid_id: uuid.UUID, owner_id: uuid.UUID) -> Bid:
    """``submitted | viewed -> accepted``."""
    return await _owner_transition(db, bid_id, owner_id, BidStatus.ACCEPTED)


async def reject_bid(db: AsyncSession, bid_id: uuid.UUID, owner_id: uuid.UUID) -> Bid:
    """``submitted | viewed | accepted -> rejected``."""
    return await _owner_transition(db, bid_id, owner_id, BidStatus.REJECTED)


async def mark_bid_viewed(db: AsyncSession, bid_id: uuid.UUID, owner_id: uuid.UUID) -> bool:
    """Move a submitted bid to ``viewed``.

    Silently does nothing when the bid is in any other status.  Returns
    whether a transition happened.
    """
    async with atomic(db):
        bid, project_owner_id = await _lock_bid(db, bid_id)
        if project_owner_id != owner_id:
            raise BidAccessDeniedError("Unauthorized: you do not own this project.")
        if bid.status != BidStatus.SUBMITTED:
            return False
        await _apply_transition(
            db, bid, BidStatus.VIEWED, actor_type=ActorType.OWNER, actor_id=owner_id,
        )
    return True


async def start_project_from_bid(
    db: AsyncSession,
    bid_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> Bid:
    """``accepted -> started`` and flip the linked project to ``active``."""
    async with atomic(db):
        bid, project_owner_id = await _lock_bid(db, bid_id)
        if project_owner_id != owner_id:
            raise BidAccessDeniedError("Unauthorized: you do not own this project.")
        await _apply_transition(
            db, bid, BidStatus.STARTED, actor_type=ActorType.OWNER, actor_id=owner_id,
        )
        await db.execute(
            update(Project)
            .where(Project.id == bid.project_id)
            .values(status=ProjectStatus.ACTIVE, updated_at=utcnow())
        )

    logger.info("Project started from bid: project=%s bid=%s", bid.project_id, bid_id)
    return bid


# ---------------------------------------------------------------------------
# Either party
# ---------------------------------------------------------------------------

async def delete_bid(db: AsyncSession, bid_id: uuid.UUID, user_id: uuid.UUID) -> None:
    """Hard-delete a bid and its items.  The status log is kept."""
    async with atomic(db):
        bid, project_owner_id = await _lock_bid(db, bid_id)
        if user_id not in (bid.contractor_id, project_owner_id):
            raise BidAccessDeniedError("Unauthorized to delete this bid.")

        await db.execute(delete(BidItem).where(BidItem.bid_id == bid_id))
        await db.execute(delete(Bid).where(Bid.id == bid_id))
        db.expunge(bid)

    logger.info("Bid deleted: bid=%s by user=%s", bid_id, user_id)


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

async def get_project_bids(
    db: AsyncSession,
    project_id: uuid.UUID,
    owner_id: uuid.UUID,
) -> list[ProjectBidRow]:
    """All bids on a project, newest first.  Owner only."""
    project_owner = (
        await db.execute(select(Project.owner_id).where(Project.id == project_id))
    ).scalar_one_or_none()
    if project_owner is None:
        raise ProjectNotFoundError(f"Project '{project_id}' not found")
    if project_owner != owner_id:
        raise BidAccessDeniedError("Unauthorized: you do not own this project.")

    stmt = (
        select(Bid, User)
        .join(User, Bid.contractor_id == User.id)
        .where(Bid.project_id == project_id)
        .order_by(Bid.created_at.desc())
    )
    rows = (await db.execute(stmt)).all()
    return [
        ProjectBidRow(
            bid=bid,
            contractor_name=contractor.full_name,
            contractor_email=contractor.email,
            contractor_company=contractor.company_name,
        )
        for bid, contractor in rows
    ]


async def get_my_bids(db: AsyncSession, contractor_id: uuid.UUID) -> list[MyBidRow]:
    """The contractor's own bids with project context, newest first."""
    items_count = (
        select(func.count(BidItem.id))
        .where(BidItem.bid_id == Bid.id)
        .correlate(Bid)
        .scalar_subquery()
    )
    owner = aliased(User)
    stmt = (
        select(Bid, Project, owner, items_count.label("items_count"))
        .join(Project, Bid.project_id == Project.id)
        .join(owner, Project.owner_id == owner.id)
        .where(Bid.contractor_id == contractor_id)
        .order_by(Bid.created_at.desc())
    )
    rows = (await db.execute(stmt)).all()
    return [
        MyBidRow(
            id=bid.id,
            project_id=project.id,
            status=bid.status,
            amount=bid.total_price,
            project_name=project.name,
            location=project.location,
            project_type=project.project_type,
            client_name=client.full_name,
            items_count=count or 0,
            created_at=bid.created_at,
            updated_at=bid.updated_at,
        )
        for bid, project, client, count in rows
    ]


async def get_bid_detail(
    db: AsyncSession,
    bid_id: uuid.UUID,
    user_id: uuid.UUID,
) -> BidDetail:
    """Bid with items and status history.

    Visible to the contractor and the project owner only.  When the owner
    opens a submitted bid it is marked as viewed first.
    """
    access = (
        await db.execute(
            select(Bid.contractor_id, Project.owner_id)
            .join(Project, Bid.project_id == Project.id)
            .where(Bid.id == bid_id)
        )
    ).one_or_none()
    if access is None:
        raise BidNotFoundError(f"Bid '{bid_id}' not found")

    contractor_id, owner_id = access
    if user_id not in (contractor_id, owner_id):
        raise BidAccessDeniedError("Unauthorized access to bid detail.")

    if user_id == owner_id:
        await mark_bid_viewed(db, bid_id, user_id)

    stmt = (
        select(Bid, Project.name, User)
        .join(Project, Bid.project_id == Project.id)
        .join(User, Bid.contractor_id == User.id)
        .where(Bid.id == bid_id)
        .execution_options(populate_existing=True)
    )
    bid, project_title, contractor = (await db.execute(stmt)).one()

    items = (
        await db.execute(
            select(BidItem)
            .where(BidItem.bid_id == bid_id)
            .order_by(BidItem.created_at.asc())
        )
    ).scalars().all()

    changer = aliased(User)
    history_rows = (
        await db.execute(
            select(BidStatusLog, changer)
            .outerjoin(changer, BidStatusLog.changed_by == changer.id)
            .where(BidStatusLog.bid_id == bid_id)
            .order_by(BidStatusLog.changed_at.desc())
        )
    ).all()
    history = [
        StatusHistoryEntry(
            old_status=log.old_status,
            new_status=log.new_status,
            changed_by=log.changed_by,
            changed_by_name=user.full_name if user is not None else None,
            changed_at=log.changed_at,
        )
        for log, user in history_rows
    ]

    actor = ActorType.OWNER if user_id == owner_id else ActorType.CONTRACTOR
    return BidDetail(
        bid=bid,
        project_title=project_title,
        contractor_name=contractor.full_name,
        items=list(items),
        history=history,
        available_actions=get_valid_transitions(bid.status, actor),
    )
