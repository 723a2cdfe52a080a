"""
Unit tests for the Bid State Manager.

Tests the finite state machine governing bid status transitions, the
actor guards, terminal states and the available-actions hint.
"""

import pytest

from bidhub.models.bid import BidStatus
from bidhub.services.bidStateManager import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    ActorType,
    get_valid_transitions,
    validate_transition,
)


# ---------------------------------------------------------------------------
# Valid state transitions (happy path)
# ---------------------------------------------------------------------------


class TestValidTransitions:
    """Documented transitions are allowed for the right actor."""

    def test_draft_to_submitted_by_contractor(self):
        result = validate_transition(BidStatus.DRAFT, BidStatus.SUBMITTED, ActorType.CONTRACTOR)
        assert result.allowed is True

    def test_submitted_to_viewed_by_owner(self):
        result = validate_transition(BidStatus.SUBMITTED, BidStatus.VIEWED, ActorType.OWNER)
        assert result.allowed is True

    def test_submitted_to_accepted_by_owner(self):
        """Owners may accept without having opened the detail view."""
        result = validate_transition(BidStatus.SUBMITTED, BidStatus.ACCEPTED, ActorType.OWNER)
        assert result.allowed is True

    def test_viewed_to_accepted_by_owner(self):
        result = validate_transition(BidStatus.VIEWED, BidStatus.ACCEPTED, ActorType.OWNER)
        assert result.allowed is True

    def test_accepted_to_started_by_owner(self):
        result = validate_transition(BidStatus.ACCEPTED, BidStatus.STARTED, ActorType.OWNER)
        assert result.allowed is True

    @pytest.mark.parametrize(
        "status",
        [BidStatus.SUBMITTED, BidStatus.VIEWED, BidStatus.ACCEPTED],
    )
    def test_owner_can_reject_live_bids(self, status):
        result = validate_transition(status, BidStatus.REJECTED, ActorType.OWNER)
        assert result.allowed is True

    @pytest.mark.parametrize(
        "status",
        [BidStatus.DRAFT, BidStatus.SUBMITTED, BidStatus.VIEWED, BidStatus.ACCEPTED],
    )
    def test_contractor_can_withdraw_live_bids(self, status):
        result = validate_transition(status, BidStatus.WITHDRAWN, ActorType.CONTRACTOR)
        assert result.allowed is True


# ---------------------------------------------------------------------------
# Invalid state transitions
# ---------------------------------------------------------------------------


class TestInvalidTransitions:
    """Structurally invalid transitions are rejected with a reason."""

    def test_draft_to_accepted_rejected(self):
        result = validate_transition(BidStatus.DRAFT, BidStatus.ACCEPTED, ActorType.OWNER)
        assert result.allowed is False
        assert "draft" in result.reason

    def test_submitted_to_started_rejected(self):
        """A bid must be accepted before the project can start."""
        result = validate_transition(BidStatus.SUBMITTED, BidStatus.STARTED, ActorType.OWNER)
        assert result.allowed is False

    def test_resubmitting_a_submitted_bid_rejected(self):
        result = validate_transition(
            BidStatus.SUBMITTED, BidStatus.SUBMITTED, ActorType.CONTRACTOR
        )
        assert result.allowed is False

    def test_viewed_to_draft_rejected(self):
        result = validate_transition(BidStatus.VIEWED, BidStatus.DRAFT, ActorType.CONTRACTOR)
        assert result.allowed is False

    def test_draft_cannot_be_rejected(self):
        """Owners never see drafts, so they cannot reject them."""
        result = validate_transition(BidStatus.DRAFT, BidStatus.REJECTED, ActorType.OWNER)
        assert result.allowed is False

    @pytest.mark.parametrize(
        "terminal",
        [BidStatus.STARTED, BidStatus.WITHDRAWN, BidStatus.REJECTED],
    )
    def test_terminal_statuses_allow_nothing(self, terminal):
        for target in BidStatus:
            for actor in ActorType:
                assert validate_transition(terminal, target, actor).allowed is False

    def test_terminal_reason_names_current_status(self):
        result = validate_transition(
            BidStatus.WITHDRAWN, BidStatus.SUBMITTED, ActorType.CONTRACTOR
        )
        assert result.reason == "Bid is already withdrawn."


# ---------------------------------------------------------------------------
# Actor guards
# ---------------------------------------------------------------------------


class TestActorGuards:
    """Each transition belongs to exactly one party."""

    def test_owner_cannot_submit(self):
        result = validate_transition(BidStatus.DRAFT, BidStatus.SUBMITTED, ActorType.OWNER)
        assert result.allowed is False
        assert "contractor" in result.reason

    def test_owner_cannot_withdraw(self):
        result = validate_transition(BidStatus.SUBMITTED, BidStatus.WITHDRAWN, ActorType.OWNER)
        assert result.allowed is False

    def test_contractor_cannot_accept_own_bid(self):
        result = validate_transition(
            BidStatus.SUBMITTED, BidStatus.ACCEPTED, ActorType.CONTRACTOR
        )
        assert result.allowed is False
        assert "project owner" in result.reason

    def test_contractor_cannot_start_project(self):
        result = validate_transition(
            BidStatus.ACCEPTED, BidStatus.STARTED, ActorType.CONTRACTOR
        )
        assert result.allowed is False

    def test_contractor_cannot_mark_viewed(self):
        result = validate_transition(
            BidStatus.SUBMITTED, BidStatus.VIEWED, ActorType.CONTRACTOR
        )
        assert result.allowed is False


# ---------------------------------------------------------------------------
# Table shape and available actions
# ---------------------------------------------------------------------------


class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(BidStatus)

    def test_terminal_statuses(self):
        assert TERMINAL_STATUSES == {
            BidStatus.STARTED,
            BidStatus.WITHDRAWN,
            BidStatus.REJECTED,
        }

    def test_nothing_leads_back_to_draft(self):
        for targets in VALID_TRANSITIONS.values():
            assert BidStatus.DRAFT not in targets


class TestGetValidTransitions:

    def test_contractor_actions_on_draft(self):
        assert get_valid_transitions(BidStatus.DRAFT, ActorType.CONTRACTOR) == [
            BidStatus.SUBMITTED,
            BidStatus.WITHDRAWN,
        ]

    def test_owner_has_nothing_to_do_on_draft(self):
        assert get_valid_transitions(BidStatus.DRAFT, ActorType.OWNER) == []

    def test_owner_actions_on_viewed(self):
        assert get_valid_transitions(BidStatus.VIEWED, ActorType.OWNER) == [
            BidStatus.ACCEPTED,
            BidStatus.REJECTED,
        ]

    def test_owner_actions_on_accepted(self):
        assert get_valid_transitions(BidStatus.ACCEPTED, ActorType.OWNER) == [
            BidStatus.REJECTED,
            BidStatus.STARTED,
        ]

    def test_terminal_has_no_actions(self):
        for actor in ActorType:
            assert get_valid_transitions(BidStatus.STARTED, actor) == []
