"""
SQLAlchemy models for bids, bid_items, and bid_status_log.

A bid is a contractor's priced proposal against one project.  Items are
owned by the bid and removed with it.  The status log is append-only and
is the only source of a bid's history; its ``bid_id`` deliberately carries
no cascading foreign key so the trail outlives a hard-deleted bid.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow


class BidStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    STARTED = "started"
    WITHDRAWN = "withdrawn"
    REJECTED = "rejected"


class ContractorType(str, enum.Enum):
    GENERAL_CONTRACTOR = "general_contractor"
    SUBCONTRACTOR = "subcontractor"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Bid(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "bids"
    __table_args__ = (
        UniqueConstraint("project_id", "contractor_id", name="uq_bids_project_contractor"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    contractor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    contractor_type: Mapped[ContractorType] = mapped_column(
        Enum(ContractorType, name="contractor_type", values_callable=_enum_values),
        nullable=False,
        default=ContractorType.GENERAL_CONTRACTOR,
    )

    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Schedule window
    estimated_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    estimated_end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Narrative
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    company_highlights: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    relevant_experience: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    credentials: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[BidStatus] = mapped_column(
        Enum(BidStatus, name="bid_status", values_callable=_enum_values),
        nullable=False,
        default=BidStatus.DRAFT,
        server_default=BidStatus.DRAFT.value,
    )

    # Relationships
    project: Mapped["Project"] = relationship("Project")
    contractor: Mapped["User"] = relationship("User")
    items: Mapped[list["BidItem"]] = relationship(
        "BidItem",
        back_populates="bid",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="BidItem.created_at",
    )

    def __repr__(self) -> str:
        return (
            f"<Bid(id={self.id}, project={self.project_id}, "
            f"contractor={self.contractor_id}, status={self.status})>"
        )


class BidItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "bid_items"
    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_bid_items_price_non_negative"),
    )

    bid_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("bids.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    bid: Mapped["Bid"] = relationship("Bid", back_populates="items")

    def __repr__(self) -> str:
        return f"<BidItem(id={self.id}, bid={self.bid_id}, price={self.price})>"


class BidStatusLog(UUIDPrimaryKeyMixin, Base):
    """Immutable audit row, one per status transition."""

    __tablename__ = "bid_status_log"

    bid_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    old_status: Mapped[Optional[BidStatus]] = mapped_column(
        Enum(BidStatus, name="bid_status", values_callable=_enum_values),
        nullable=True,
    )
    new_status: Mapped[BidStatus] = mapped_column(
        Enum(BidStatus, name="bid_status", values_callable=_enum_values),
        nullable=False,
    )
    changed_by: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<BidStatusLog(bid={self.bid_id}, "
            f"{self.old_status} -> {self.new_status})>"
        )
