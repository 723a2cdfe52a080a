"""
Unit tests for the Bid Service.

Covers input validation, ``BidPatch`` handling, the row lock taken before
every transition, the actor checks and the status log written by each
transition.  The database session is mocked; persistence against a real
engine is exercised by the e2e suite.
"""

import asyncio
import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from bidhub.models.bid import BidStatus, BidStatusLog
from bidhub.services import bidService
from bidhub.services.bidService import (
    BidAccessDeniedError,
    BidItemInput,
    BidNotFoundError,
    BidPatch,
    BidTransitionError,
    DuplicateBidError,
    InvalidBidDataError,
)

from tests.conftest import result_with


pytestmark = pytest.mark.asyncio


def _logged_rows(mock_db) -> list[BidStatusLog]:
    return [
        call.args[0]
        for call in mock_db.add.call_args_list
        if isinstance(call.args[0], BidStatusLog)
    ]


# ---------------------------------------------------------------------------
# Money and patches
# ---------------------------------------------------------------------------


class TestMoney:

    async def test_rounds_half_up_to_cents(self):
        assert bidService._money("10.005") == Decimal("10.01")

    async def test_accepts_floats_without_binary_noise(self):
        assert bidService._money(0.1) == Decimal("0.10")


class TestBidPatch:

    async def test_empty_patch_rejected(self):
        with pytest.raises(InvalidBidDataError):
            BidPatch().to_values()

    async def test_only_set_fields_are_returned(self):
        values = BidPatch(notes="Includes cleanup").to_values()
        assert values == {"notes": "Includes cleanup"}

    async def test_total_price_is_normalised(self):
        values = BidPatch(total_price=Decimal("99.999")).to_values()
        assert values["total_price"] == Decimal("100.00")

    async def test_negative_total_rejected(self):
        with pytest.raises(InvalidBidDataError):
            BidPatch(total_price=Decimal("-1")).to_values()


# ---------------------------------------------------------------------------
# create_bid input validation (rejected before touching the database)
# ---------------------------------------------------------------------------


class TestCreateBidValidation:

    async def test_requires_price_or_items(self, mock_db):
        with pytest.raises(InvalidBidDataError):
            await bidService.create_bid(
                mock_db, project_id=uuid.uuid4(), contractor_id=uuid.uuid4()
            )
        mock_db.execute.assert_not_called()

    async def test_negative_total_rejected(self, mock_db):
        with pytest.raises(InvalidBidDataError):
            await bidService.create_bid(
                mock_db,
                project_id=uuid.uuid4(),
                contractor_id=uuid.uuid4(),
                total_price=Decimal("-50"),
            )

    async def test_end_before_start_rejected(self, mock_db):
        with pytest.raises(InvalidBidDataError):
            await bidService.create_bid(
                mock_db,
                project_id=uuid.uuid4(),
                contractor_id=uuid.uuid4(),
                total_price=Decimal("100"),
                estimated_start_date=date(2026, 5, 10),
                estimated_end_date=date(2026, 5, 1),
            )

    async def test_blank_item_name_rejected(self, mock_db):
        with pytest.raises(InvalidBidDataError):
            await bidService.create_bid(
                mock_db,
                project_id=uuid.uuid4(),
                contractor_id=uuid.uuid4(),
                items=[BidItemInput(name="  ", price=Decimal("10"))],
            )

    async def test_negative_item_price_rejected(self, mock_db):
        with pytest.raises(InvalidBidDataError):
            await bidService.create_bid(
                mock_db,
                project_id=uuid.uuid4(),
                contractor_id=uuid.uuid4(),
                items=[BidItemInput(name="Tiles", price=Decimal("-10"))],
            )


# ---------------------------------------------------------------------------
# Locking
# ---------------------------------------------------------------------------


class TestLockBid:

    async def test_missing_bid_raises_not_found(self, mock_db):
        mock_db.execute.return_value = result_with(one_or_none=None)
        with pytest.raises(BidNotFoundError):
            await bidService._lock_bid(mock_db, uuid.uuid4())

    async def test_select_takes_row_lock(self, mock_db, sample_bid, sample_owner):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))
        bid, owner_id = await bidService._lock_bid(mock_db, sample_bid.id)

        assert bid is sample_bid
        assert owner_id == sample_owner.id
        stmt = mock_db.execute.call_args.args[0]
        sql = str(stmt.compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql


class TestCreateBidIntegrityErrors:

    @staticmethod
    def _prime(mock_db, message: str) -> None:
        mock_db.execute.side_effect = [
            result_with(scalar=uuid.uuid4()),  # project exists
            result_with(scalar=None),  # no earlier bid
        ]
        mock_db.flush.side_effect = IntegrityError("INSERT INTO bids", {}, Exception(message))

    async def test_lost_create_race_is_a_duplicate(self, mock_db):
        self._prime(
            mock_db,
            'duplicate key value violates unique constraint "uq_bids_project_contractor"',
        )

        with pytest.raises(DuplicateBidError):
            await bidService.create_bid(
                mock_db,
                project_id=uuid.uuid4(),
                contractor_id=uuid.uuid4(),
                total_price=Decimal("100"),
            )
        mock_db.rollback.assert_awaited_once()

    async def test_other_integrity_errors_propagate(self, mock_db):
        self._prime(
            mock_db,
            'insert or update on table "bids" violates foreign key constraint '
            '"bids_contractor_id_fkey"',
        )

        with pytest.raises(IntegrityError):
            await bidService.create_bid(
                mock_db,
                project_id=uuid.uuid4(),
                contractor_id=uuid.uuid4(),
                total_price=Decimal("100"),
            )


# ---------------------------------------------------------------------------
# Racing transitions
# ---------------------------------------------------------------------------


class _LockedBidRow:
    """One committed bid row behind an exclusive row lock."""

    def __init__(self, status: BidStatus, contractor_id: uuid.UUID, owner_id: uuid.UUID) -> None:
        self.id = uuid.uuid4()
        self.status = status
        self.contractor_id = contractor_id
        self.owner_id = owner_id
        self.lock = asyncio.Lock()
        self.log: list[BidStatusLog] = []


class _RowLockingSession:
    """Session double: ``execute`` takes the row lock and reads the committed
    row; ``commit`` and ``rollback`` release it."""

    def __init__(self, row: _LockedBidRow) -> None:
        self.row = row
        self.pending: list[BidStatusLog] = []
        self.snapshot = None

    async def execute(self, stmt):
        await self.row.lock.acquire()
        self.snapshot = SimpleNamespace(
            id=self.row.id,
            status=self.row.status,
            contractor_id=self.row.contractor_id,
            updated_at=None,
        )
        return result_with(one_or_none=(self.snapshot, self.row.owner_id))

    def add(self, obj) -> None:
        self.pending.append(obj)

    async def flush(self) -> None:
        # Yield so a racing caller can reach the lock
        await asyncio.sleep(0)

    async def commit(self) -> None:
        self.row.status = self.snapshot.status
        self.row.log.extend(self.pending)
        self._release()

    async def rollback(self) -> None:
        self.pending.clear()
        self._release()

    def _release(self) -> None:
        if self.row.lock.locked():
            self.row.lock.release()


class TestRacingTransitions:

    async def test_withdraw_then_accept_only_one_wins(self, sample_owner, sample_contractor):
        row = _LockedBidRow(BidStatus.SUBMITTED, sample_contractor.id, sample_owner.id)

        withdrawn, accepted = await asyncio.gather(
            bidService.withdraw_bid(_RowLockingSession(row), row.id, sample_contractor.id),
            bidService.accept_bid(_RowLockingSession(row), row.id, sample_owner.id),
            return_exceptions=True,
        )

        assert withdrawn.status == BidStatus.WITHDRAWN
        assert isinstance(accepted, BidTransitionError)
        assert accepted.status_code == 409
        assert row.status == BidStatus.WITHDRAWN
        assert [(r.old_status, r.new_status) for r in row.log] == [
            (BidStatus.SUBMITTED, BidStatus.WITHDRAWN)
        ]

    async def test_double_accept_only_one_wins(self, sample_owner, sample_contractor):
        row = _LockedBidRow(BidStatus.SUBMITTED, sample_contractor.id, sample_owner.id)

        results = await asyncio.gather(
            bidService.accept_bid(_RowLockingSession(row), row.id, sample_owner.id),
            bidService.accept_bid(_RowLockingSession(row), row.id, sample_owner.id),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, BidTransitionError)]
        assert len(errors) == 1
        assert row.status == BidStatus.ACCEPTED
        assert len(row.log) == 1

    async def test_loser_reads_the_committed_status(self, sample_owner, sample_contractor):
        row = _LockedBidRow(BidStatus.SUBMITTED, sample_contractor.id, sample_owner.id)
        loser = _RowLockingSession(row)

        await asyncio.gather(
            bidService.withdraw_bid(_RowLockingSession(row), row.id, sample_contractor.id),
            bidService.accept_bid(loser, row.id, sample_owner.id),
            return_exceptions=True,
        )

        assert loser.snapshot.status == BidStatus.WITHDRAWN
        assert loser.pending == []
        assert not row.lock.locked()


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestContractorTransitions:

    async def test_submit_moves_draft_to_submitted(
        self, mock_db, sample_bid, sample_owner, sample_contractor
    ):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        bid = await bidService.submit_bid(mock_db, sample_bid.id, sample_contractor.id)

        assert bid.status == BidStatus.SUBMITTED
        logged = _logged_rows(mock_db)
        assert len(logged) == 1
        assert logged[0].old_status == BidStatus.DRAFT
        assert logged[0].new_status == BidStatus.SUBMITTED
        assert logged[0].changed_by == sample_contractor.id
        mock_db.commit.assert_awaited_once()

    async def test_submit_by_someone_else_denied(
        self, mock_db, sample_bid, sample_owner, sample_outsider
    ):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidAccessDeniedError):
            await bidService.submit_bid(mock_db, sample_bid.id, sample_outsider.id)

        assert sample_bid.status == BidStatus.DRAFT
        assert _logged_rows(mock_db) == []
        mock_db.rollback.assert_awaited_once()
        mock_db.commit.assert_not_awaited()

    async def test_double_submit_is_a_transition_error(
        self, mock_db, sample_bid, sample_owner, sample_contractor
    ):
        sample_bid.status = BidStatus.SUBMITTED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidTransitionError):
            await bidService.submit_bid(mock_db, sample_bid.id, sample_contractor.id)
        assert _logged_rows(mock_db) == []

    async def test_withdraw_accepted_bid(
        self, mock_db, sample_bid, sample_owner, sample_contractor
    ):
        sample_bid.status = BidStatus.ACCEPTED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        bid = await bidService.withdraw_bid(mock_db, sample_bid.id, sample_contractor.id)
        assert bid.status == BidStatus.WITHDRAWN


class TestOwnerTransitions:

    async def test_accept_submitted_bid(self, mock_db, sample_bid, sample_owner):
        sample_bid.status = BidStatus.SUBMITTED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        bid = await bidService.accept_bid(mock_db, sample_bid.id, sample_owner.id)

        assert bid.status == BidStatus.ACCEPTED
        assert _logged_rows(mock_db)[0].changed_by == sample_owner.id

    async def test_contractor_cannot_accept_own_bid(
        self, mock_db, sample_bid, sample_owner, sample_contractor
    ):
        sample_bid.status = BidStatus.SUBMITTED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidAccessDeniedError):
            await bidService.accept_bid(mock_db, sample_bid.id, sample_contractor.id)

    async def test_reject_draft_is_a_transition_error(self, mock_db, sample_bid, sample_owner):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidTransitionError):
            await bidService.reject_bid(mock_db, sample_bid.id, sample_owner.id)

    async def test_start_requires_accepted(self, mock_db, sample_bid, sample_owner):
        sample_bid.status = BidStatus.VIEWED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidTransitionError):
            await bidService.start_project_from_bid(mock_db, sample_bid.id, sample_owner.id)


class TestMarkViewed:

    async def test_submitted_bid_becomes_viewed(self, mock_db, sample_bid, sample_owner):
        sample_bid.status = BidStatus.SUBMITTED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        changed = await bidService.mark_bid_viewed(mock_db, sample_bid.id, sample_owner.id)

        assert changed is True
        assert sample_bid.status == BidStatus.VIEWED

    @pytest.mark.parametrize(
        "status",
        [BidStatus.DRAFT, BidStatus.VIEWED, BidStatus.ACCEPTED, BidStatus.REJECTED],
    )
    async def test_other_statuses_are_left_alone(
        self, mock_db, sample_bid, sample_owner, status
    ):
        sample_bid.status = status
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        changed = await bidService.mark_bid_viewed(mock_db, sample_bid.id, sample_owner.id)

        assert changed is False
        assert sample_bid.status == status
        assert _logged_rows(mock_db) == []


# ---------------------------------------------------------------------------
# Draft-only edits and deletion
# ---------------------------------------------------------------------------


class TestDraftOnlyEdits:

    async def test_items_cannot_change_after_submit(
        self, mock_db, sample_bid, sample_owner, sample_contractor
    ):
        sample_bid.status = BidStatus.SUBMITTED
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidTransitionError):
            await bidService.update_bid_items(
                mock_db,
                sample_bid.id,
                sample_contractor.id,
                [BidItemInput(name="Labour", price=Decimal("500"))],
            )

    async def test_patch_rejected_for_owner(
        self, mock_db, sample_bid, sample_owner
    ):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidAccessDeniedError):
            await bidService.update_bid(
                mock_db, sample_bid.id, sample_owner.id, BidPatch(notes="nope")
            )

    async def test_patch_cannot_invert_schedule(
        self, mock_db, sample_bid, sample_owner, sample_contractor
    ):
        sample_bid.estimated_start_date = date(2026, 6, 1)
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(InvalidBidDataError):
            await bidService.update_bid(
                mock_db,
                sample_bid.id,
                sample_contractor.id,
                BidPatch(estimated_end_date=date(2026, 5, 1)),
            )


class TestDeleteBid:

    async def test_outsider_cannot_delete(
        self, mock_db, sample_bid, sample_owner, sample_outsider
    ):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        with pytest.raises(BidAccessDeniedError):
            await bidService.delete_bid(mock_db, sample_bid.id, sample_outsider.id)
        mock_db.expunge.assert_not_called()

    async def test_owner_can_delete(self, mock_db, sample_bid, sample_owner):
        mock_db.execute.return_value = result_with(one_or_none=(sample_bid, sample_owner.id))

        await bidService.delete_bid(mock_db, sample_bid.id, sample_owner.id)

        # lock + delete items + delete bid
        assert mock_db.execute.await_count == 3
        mock_db.expunge.assert_called_once_with(sample_bid)
        mock_db.commit.assert_awaited_once()
