"""
Shared pytest fixtures for BidHub backend unit tests.

Provides mock database sessions, a recording broadcaster and sample
domain objects that mirror production ORM models without requiring a live
database connection.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from bidhub.models.bid import Bid, BidStatus, ContractorType
from bidhub.models.project import Project, ProjectStatus
from bidhub.models.user import User, UserRole


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()``,
    ``db.commit()`` and ``db.rollback()`` out of the box.  Individual tests
    configure ``mock_db.execute.return_value`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.expunge = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def result_with(*, one_or_none: Any = None, scalar: Any = None) -> MagicMock:
    """Build a mock ``Result`` for ``db.execute`` return values."""
    result = MagicMock()
    result.one_or_none.return_value = one_or_none
    result.scalar_one_or_none.return_value = scalar
    return result


# ---------------------------------------------------------------------------
# Broadcaster
# ---------------------------------------------------------------------------


class RecordingBroadcaster:
    """In-memory ``Broadcaster`` that records every fan-out call."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str, dict[str, Any]]] = []
        self.evictions: list[tuple[str, str]] = []

    async def to_conversation(self, conversation_id, event, data, *, skip_sid=None) -> None:
        self.events.append(("conversation", str(conversation_id), event, data))

    async def to_user(self, user_id, event, data) -> None:
        self.events.append(("user", str(user_id), event, data))

    async def evict_from_conversation(self, user_id, conversation_id) -> None:
        self.evictions.append((str(user_id), str(conversation_id)))

    def named(self, event: str) -> list[tuple[str, str, str, dict[str, Any]]]:
        return [entry for entry in self.events if entry[2] == event]

    def clear(self) -> None:
        self.events.clear()
        self.evictions.clear()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


# ---------------------------------------------------------------------------
# User fixtures
# ---------------------------------------------------------------------------


def _user(role: UserRole, first: str, last: str, email: str) -> User:
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = email
    user.first_name = first
    user.last_name = last
    user.full_name = f"{first} {last}"
    user.company_name = None
    user.avatar_url = None
    user.role = role
    user.is_active = True
    return user


@pytest.fixture
def sample_owner() -> User:
    """A client who owns projects."""
    return _user(UserRole.CLIENT, "Olivia", "Owner", "owner@example.com")


@pytest.fixture
def sample_contractor() -> User:
    """A general contractor who bids on projects."""
    user = _user(UserRole.GENERAL_CONTRACTOR, "Carl", "Builder", "gc@example.com")
    user.company_name = "Builder & Sons"
    return user


@pytest.fixture
def sample_outsider() -> User:
    """A subcontractor with no relation to the sample project."""
    return _user(UserRole.SUBCONTRACTOR, "Sam", "Stranger", "sc@example.com")


# ---------------------------------------------------------------------------
# Project & bid fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_project(sample_owner) -> Project:
    project = MagicMock(spec=Project)
    project.id = uuid.uuid4()
    project.owner_id = sample_owner.id
    project.name = "Kitchen Remodel"
    project.status = ProjectStatus.OPEN
    return project


@pytest.fixture
def sample_bid(sample_project, sample_contractor) -> Bid:
    """A draft bid on the sample project."""
    bid = MagicMock(spec=Bid)
    bid.id = uuid.uuid4()
    bid.project_id = sample_project.id
    bid.contractor_id = sample_contractor.id
    bid.contractor_type = ContractorType.GENERAL_CONTRACTOR
    bid.total_price = Decimal("12500.00")
    bid.estimated_start_date = None
    bid.estimated_end_date = None
    bid.status = BidStatus.DRAFT
    bid.created_at = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
    bid.updated_at = bid.created_at
    return bid
