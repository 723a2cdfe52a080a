"""
Bid State Manager
=================

Finite state machine governing all valid bid status transitions. Every
status change MUST go through ``validate_transition`` before being
persisted.

State machine overview::

    draft --> submitted --> (viewed) --> accepted --> started

    draft | submitted | viewed | accepted --> withdrawn   (contractor)
    submitted | viewed | accepted         --> rejected    (project owner)

    started, withdrawn, rejected are terminal.

Guards enforce that only the correct actor can trigger a transition: the
contractor who owns the bid submits and withdraws it; the project owner
views, accepts, rejects and starts it.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from bidhub.models.bid import BidStatus


# ---------------------------------------------------------------------------
# Actor types for guard enforcement
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    CONTRACTOR = "contractor"
    OWNER = "owner"


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt."""
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

# Owner actions never reach a draft: the owner cannot see it yet, so
# ``draft -> rejected`` is not a transition.  A contractor withdraws a draft.
VALID_TRANSITIONS: dict[BidStatus, set[BidStatus]] = {
    BidStatus.DRAFT: {
        BidStatus.SUBMITTED,
        BidStatus.WITHDRAWN,
    },
    BidStatus.SUBMITTED: {
        BidStatus.VIEWED,
        BidStatus.ACCEPTED,
        BidStatus.REJECTED,
        BidStatus.WITHDRAWN,
    },
    BidStatus.VIEWED: {
        BidStatus.ACCEPTED,
        BidStatus.REJECTED,
        BidStatus.WITHDRAWN,
    },
    BidStatus.ACCEPTED: {
        BidStatus.STARTED,
        BidStatus.REJECTED,
        BidStatus.WITHDRAWN,
    },
    # Terminal states
    BidStatus.STARTED: set(),
    BidStatus.WITHDRAWN: set(),
    BidStatus.REJECTED: set(),
}

TERMINAL_STATUSES: frozenset[BidStatus] = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)

# Who may move a bid INTO each status
_TRANSITION_ACTORS: dict[BidStatus, ActorType] = {
    BidStatus.SUBMITTED: ActorType.CONTRACTOR,
    BidStatus.WITHDRAWN: ActorType.CONTRACTOR,
    BidStatus.VIEWED: ActorType.OWNER,
    BidStatus.ACCEPTED: ActorType.OWNER,
    BidStatus.REJECTED: ActorType.OWNER,
    BidStatus.STARTED: ActorType.OWNER,
}

_ACTOR_LABELS: dict[ActorType, str] = {
    ActorType.CONTRACTOR: "the contractor who owns the bid",
    ActorType.OWNER: "the project owner",
}


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_actor(new_status: BidStatus, actor_type: ActorType) -> TransitionResult:
    required = _TRANSITION_ACTORS.get(new_status)
    if required is not None and required != actor_type:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Only {_ACTOR_LABELS[required]} can move a bid to "
                f"'{new_status.value}'."
            ),
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: BidStatus,
    new_status: BidStatus,
    actor_type: ActorType,
) -> TransitionResult:
    """Validate whether a bid status transition is allowed.

    Checks two layers:
    1. Is the transition structurally valid per the state machine?
    2. Is the actor the party allowed to make it?

    Returns a ``TransitionResult`` with ``allowed=True`` if the transition
    is permitted, or ``allowed=False`` with a human-readable ``reason``.
    """
    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        if current_status in TERMINAL_STATUSES:
            reason = f"Bid is already {current_status.value}."
        else:
            reason = (
                f"Invalid transition: '{current_status.value}' -> '{new_status.value}'. "
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value))}."
            )
        return TransitionResult(allowed=False, reason=reason)

    return _guard_actor(new_status, actor_type)


def get_valid_transitions(
    current_status: BidStatus,
    actor_type: ActorType,
) -> list[BidStatus]:
    """Return the statuses the given actor can move a bid to from
    ``current_status``.  Used for the ``availableActions`` hint on bid
    detail responses.
    """
    candidates = VALID_TRANSITIONS.get(current_status, set())
    valid = [
        target
        for target in candidates
        if validate_transition(current_status, target, actor_type).allowed
    ]
    return sorted(valid, key=lambda s: s.value)
