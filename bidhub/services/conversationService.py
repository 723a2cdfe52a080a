"""
Conversation Service
====================

Creation and membership of conversations, and the per-user inbox view.

Conversation kinds:
  - direct:  two users, at most one per unordered pair (``direct_key``).
             The roster is fixed.
  - group:   titled, created with at least one other participant.
  - project: one per project, titled ``"Project: <name>"``.  Open to the
             project owner and to contractors who bid on the project.

Creation and roster changes commit first and broadcast afterwards:
  - ``conversation:new``    to every initial member's personal room
  - ``participant:added``   to the room and to each added user
  - ``participant:removed`` to the room and to the removed user
Roster changes also append a ``system`` message, which is broadcast like
any other message.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bidhub.core.database import atomic
from bidhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from bidhub.models import (
    Bid,
    Conversation,
    ConversationParticipant,
    ConversationType,
    Message,
    MessageType,
    Project,
    User,
    make_direct_key,
)
from bidhub.realtime.broadcaster import Broadcaster
from bidhub.services.chatService import (
    ConversationNotFoundError,
    MessageDTO,
    UserProfile,
    append_message,
    broadcast_new_message,
    is_participant,
    load_user_profiles,
    require_participant,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class UserNotFoundError(NotFoundError):
    """Raised when a referenced user does not exist or is inactive."""


class ProjectNotFoundError(NotFoundError):
    """Raised when the referenced project does not exist."""


class InvalidConversationError(ValidationError):
    """Raised for malformed creation or roster-change requests."""


class ConversationAccessDeniedError(AuthorizationError):
    """Raised when the caller may not open or modify the conversation."""


# ---------------------------------------------------------------------------
# Data transfer objects
# ---------------------------------------------------------------------------

@dataclass
class ConversationDTO:
    id: uuid.UUID
    type: ConversationType
    title: Optional[str]
    project_id: Optional[uuid.UUID]
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime
    participants: List[UserProfile] = field(default_factory=list)
    last_message: Optional[MessageDTO] = None
    unread_count: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "title": self.title,
            "projectId": str(self.project_id) if self.project_id else None,
            "createdBy": str(self.created_by),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "participants": [p.to_payload() for p in self.participants],
        }


@dataclass
class RosterChange:
    """Outcome of ``add_participants``."""

    conversation_id: uuid.UUID
    added_user_ids: List[uuid.UUID]
    system_message: Optional[MessageDTO] = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def _require_users(db: AsyncSession, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, User]:
    wanted = set(user_ids)
    if not wanted:
        return {}
    result = await db.execute(
        select(User).where(User.id.in_(wanted), User.is_active == True)  # noqa: E712
    )
    users = {user.id: user for user in result.scalars().all()}
    missing = wanted - users.keys()
    if missing:
        raise UserNotFoundError(
            "Users not found: " + ", ".join(sorted(str(uid) for uid in missing))
        )
    return users


async def _insert_conversation(
    db: AsyncSession,
    *,
    conversation_type: ConversationType,
    created_by: uuid.UUID,
    member_ids: Iterable[uuid.UUID],
    title: Optional[str] = None,
    project_id: Optional[uuid.UUID] = None,
    direct_key: Optional[str] = None,
) -> Conversation:
    conversation = Conversation(
        type=conversation_type,
        title=title,
        project_id=project_id,
        direct_key=direct_key,
        created_by=created_by,
    )
    db.add(conversation)
    await db.flush()

    for member_id in member_ids:
        db.add(ConversationParticipant(conversation_id=conversation.id, user_id=member_id))
    await db.flush()
    return conversation


async def _roster(db: AsyncSession, conversation_id: uuid.UUID) -> List[UserProfile]:
    stmt = (
        select(User)
        .join(ConversationParticipant, ConversationParticipant.user_id == User.id)
        .where(ConversationParticipant.conversation_id == conversation_id)
        .order_by(ConversationParticipant.joined_at.asc(), User.last_name.asc())
    )
    return [UserProfile.from_user(u) for u in (await db.execute(stmt)).scalars().all()]


async def _to_dto(db: AsyncSession, conversation: Conversation) -> ConversationDTO:
    return ConversationDTO(
        id=conversation.id,
        type=conversation.type,
        title=conversation.title,
        project_id=conversation.project_id,
        created_by=conversation.created_by,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        participants=await _roster(db, conversation.id),
    )


async def _announce_new(broadcaster: Broadcaster, dto: ConversationDTO) -> None:
    payload = dto.to_payload()
    for member in dto.participants:
        await broadcaster.to_user(member.id, "conversation:new", payload)


def _unread_filter(user_id: uuid.UUID):
    """Messages from others, not deleted, newer than the reader's marker."""
    return and_(
        Message.sender_id != user_id,
        Message.is_deleted == False,  # noqa: E712
        or_(
            ConversationParticipant.last_read_at.is_(None),
            Message.created_at > ConversationParticipant.last_read_at,
        ),
    )


def _display_names(profiles: Sequence[UserProfile]) -> str:
    return ", ".join(p.full_name for p in profiles)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def get_or_create_direct_conversation(
    db: AsyncSession,
    broadcaster: Broadcaster,
    user_id: uuid.UUID,
    partner_id: uuid.UUID,
) -> tuple[ConversationDTO, bool]:
    """Return the direct conversation between two users, creating it if
    needed.  Calling it again, in either order, yields the same row.

    Returns:
        Tuple of (conversation, created).
    """
    if partner_id == user_id:
        raise InvalidConversationError("Cannot start a conversation with yourself")

    key = make_direct_key(user_id, partner_id)
    try:
        async with atomic(db):
            await _require_users(db, [partner_id])
            existing = (
                await db.execute(select(Conversation).where(Conversation.direct_key == key))
            ).scalar_one_or_none()
            if existing is not None:
                return await _to_dto(db, existing), False

            conversation = await _insert_conversation(
                db,
                conversation_type=ConversationType.DIRECT,
                created_by=user_id,
                member_ids=(user_id, partner_id),
                direct_key=key,
            )
            dto = await _to_dto(db, conversation)
    except IntegrityError as exc:
        # A concurrent request created the pair first; return theirs
        existing = (
            await db.execute(select(Conversation).where(Conversation.direct_key == key))
        ).scalar_one_or_none()
        if existing is None:
            raise ConflictError("Could not create the conversation, please retry") from exc
        logger.info("Direct conversation race on key=%s; reusing existing row", key)
        return await _to_dto(db, existing), False

    logger.info(
        "Direct conversation created: id=%s users=%s,%s",
        dto.id, user_id, partner_id,
    )
    await _announce_new(broadcaster, dto)
    return dto, True


async def create_group_conversation(
    db: AsyncSession,
    broadcaster: Broadcaster,
    creator_id: uuid.UUID,
    title: str,
    participant_ids: Iterable[uuid.UUID],
) -> ConversationDTO:
    """Create a titled group with the creator plus ``participant_ids``."""
    clean_title = (title or "").strip()
    if not clean_title:
        raise InvalidConversationError("Group conversations need a title")

    others = set(participant_ids) - {creator_id}
    if not others:
        raise InvalidConversationError("Add at least one other participant")

    async with atomic(db):
        await _require_users(db, others)
        conversation = await _insert_conversation(
            db,
            conversation_type=ConversationType.GROUP,
            created_by=creator_id,
            member_ids=[creator_id, *sorted(others, key=str)],
            title=clean_title,
        )
        dto = await _to_dto(db, conversation)

    logger.info(
        "Group conversation created: id=%s creator=%s members=%d",
        dto.id, creator_id, len(dto.participants),
    )
    await _announce_new(broadcaster, dto)
    return dto


async def get_or_create_project_conversation(
    db: AsyncSession,
    broadcaster: Broadcaster,
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    participant_ids: Iterable[uuid.UUID] = (),
) -> tuple[ConversationDTO, bool]:
    """Open the project's conversation.

    The caller must own the project, have a bid on it, or already be a
    participant.  An owner or bidder who is not yet a member is added.
    ``participant_ids`` only seeds the roster of a new conversation; use
    ``add_participants`` afterwards.

    Returns:
        Tuple of (conversation, created).
    """
    extra_ids = set(participant_ids)
    joined = False

    try:
        async with atomic(db):
            project = (
                await db.execute(select(Project).where(Project.id == project_id))
            ).scalar_one_or_none()
            if project is None:
                raise ProjectNotFoundError(f"Project '{project_id}' not found")

            is_owner = project.owner_id == user_id
            is_bidder = (
                await db.execute(
                    select(Bid.id).where(Bid.project_id == project_id, Bid.contractor_id == user_id)
                )
            ).first() is not None

            existing = (
                await db.execute(
                    select(Conversation).where(Conversation.project_id == project_id)
                )
            ).scalar_one_or_none()

            if existing is not None:
                member = await is_participant(db, existing.id, user_id)
                if not (member or is_owner or is_bidder):
                    raise ConversationAccessDeniedError(
                        "You are not involved in this project"
                    )
                if not member:
                    db.add(ConversationParticipant(conversation_id=existing.id, user_id=user_id))
                    await db.flush()
                    joined = True
                dto = await _to_dto(db, existing)
                created = False
            else:
                if not (is_owner or is_bidder):
                    raise ConversationAccessDeniedError(
                        "Only the project owner or a bidder can open the project conversation"
                    )
                members = {user_id, project.owner_id} | extra_ids
                await _require_users(db, members - {user_id})
                conversation = await _insert_conversation(
                    db,
                    conversation_type=ConversationType.PROJECT,
                    created_by=user_id,
                    member_ids=[user_id, *sorted(members - {user_id}, key=str)],
                    title=f"Project: {project.name}",
                    project_id=project_id,
                )
                dto = await _to_dto(db, conversation)
                created = True
    except IntegrityError as exc:
        raced = (
            await db.execute(select(Conversation.id).where(Conversation.project_id == project_id))
        ).scalar_one_or_none()
        if raced is None:
            raise ConflictError("Could not create the conversation, please retry") from exc
        logger.info("Project conversation race on project=%s; reusing existing row", project_id)
        return await get_or_create_project_conversation(
            db, broadcaster, project_id, user_id, participant_ids
        )

    if created:
        logger.info("Project conversation created: id=%s project=%s", dto.id, project_id)
        await _announce_new(broadcaster, dto)
    elif joined:
        logger.info("User %s joined project conversation %s", user_id, dto.id)
        await broadcaster.to_conversation(
            dto.id,
            "participant:added",
            {"conversationId": str(dto.id), "userIds": [str(user_id)], "addedBy": str(user_id)},
        )
    return dto, created


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

async def list_conversations(db: AsyncSession, user_id: uuid.UUID) -> List[ConversationDTO]:
    """Every conversation the user belongs to, most recently active first,
    with the latest message, the user's unread count and the roster.
    """
    rows = (
        await db.execute(
            select(Conversation)
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Conversation.id,
                    ConversationParticipant.user_id == user_id,
                ),
            )
            .order_by(Conversation.updated_at.desc(), Conversation.id)
        )
    ).scalars().all()
    if not rows:
        return []

    ids = [c.id for c in rows]

    # Latest message per conversation
    rank = (
        func.row_number()
        .over(
            partition_by=Message.conversation_id,
            order_by=(Message.created_at.desc(), Message.id.desc()),
        )
        .label("rank")
    )
    ranked = (
        select(Message.id.label("message_id"), rank)
        .where(Message.conversation_id.in_(ids))
        .subquery()
    )
    latest = (
        await db.execute(
            select(Message)
            .join(ranked, Message.id == ranked.c.message_id)
            .where(ranked.c.rank == 1)
        )
    ).scalars().all()
    latest_by_conversation = {m.conversation_id: m for m in latest}

    # Unread counts
    unread_rows = (
        await db.execute(
            select(Message.conversation_id, func.count(Message.id))
            .join(
                ConversationParticipant,
                and_(
                    ConversationParticipant.conversation_id == Message.conversation_id,
                    ConversationParticipant.user_id == user_id,
                ),
            )
            .where(Message.conversation_id.in_(ids), _unread_filter(user_id))
            .group_by(Message.conversation_id)
        )
    ).all()
    unread = {cid: count for cid, count in unread_rows}

    # Rosters
    roster_rows = (
        await db.execute(
            select(ConversationParticipant.conversation_id, User)
            .join(User, User.id == ConversationParticipant.user_id)
            .where(ConversationParticipant.conversation_id.in_(ids))
            .order_by(ConversationParticipant.joined_at.asc())
        )
    ).all()
    rosters: dict[uuid.UUID, List[UserProfile]] = {}
    profiles: dict[uuid.UUID, UserProfile] = {}
    for cid, user in roster_rows:
        profile = UserProfile.from_user(user)
        profiles[user.id] = profile
        rosters.setdefault(cid, []).append(profile)

    # Senders who have since left the conversation
    missing = {m.sender_id for m in latest} - profiles.keys()
    profiles.update(await load_user_profiles(db, missing))

    results: List[ConversationDTO] = []
    for conversation in rows:
        last = latest_by_conversation.get(conversation.id)
        results.append(
            ConversationDTO(
                id=conversation.id,
                type=conversation.type,
                title=conversation.title,
                project_id=conversation.project_id,
                created_by=conversation.created_by,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
                participants=rosters.get(conversation.id, []),
                last_message=(
                    MessageDTO.from_model(last, profiles.get(last.sender_id)) if last else None
                ),
                unread_count=unread.get(conversation.id, 0),
            )
        )
    return results


async def get_unread_total(db: AsyncSession, user_id: uuid.UUID) -> int:
    """Unread messages across all of the user's conversations."""
    stmt = (
        select(func.count(Message.id))
        .join(
            ConversationParticipant,
            and_(
                ConversationParticipant.conversation_id == Message.conversation_id,
                ConversationParticipant.user_id == user_id,
            ),
        )
        .where(_unread_filter(user_id))
    )
    return (await db.execute(stmt)).scalar() or 0


# ---------------------------------------------------------------------------
# Roster changes
# ---------------------------------------------------------------------------

async def _lock_mutable_conversation(
    db: AsyncSession,
    conversation_id: uuid.UUID,
) -> Conversation:
    conversation = (
        await db.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if conversation is None:
        raise ConversationNotFoundError(f"Conversation '{conversation_id}' not found")
    if conversation.type == ConversationType.DIRECT:
        raise InvalidConversationError("Participants of a direct conversation cannot change")
    return conversation


async def add_participants(
    db: AsyncSession,
    broadcaster: Broadcaster,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    participant_ids: Iterable[uuid.UUID],
) -> RosterChange:
    """Add users to a group or project conversation.

    Users who are already members are skipped; if nobody new remains the
    call is a no-op and nothing is broadcast.
    """
    candidates = set(participant_ids)
    if not candidates:
        raise InvalidConversationError("participantIds must not be empty")

    async with atomic(db):
        await _lock_mutable_conversation(db, conversation_id)
        await require_participant(db, conversation_id, user_id)
        users = await _require_users(db, candidates)

        present = set(
            (
                await db.execute(
                    select(ConversationParticipant.user_id).where(
                        ConversationParticipant.conversation_id == conversation_id,
                        ConversationParticipant.user_id.in_(candidates),
                    )
                )
            ).scalars().all()
        )
        added = sorted(candidates - present, key=str)
        if not added:
            return RosterChange(conversation_id=conversation_id, added_user_ids=[])

        for new_id in added:
            db.add(ConversationParticipant(conversation_id=conversation_id, user_id=new_id))
        await db.flush()

        actor = (await load_user_profiles(db, [user_id]))[user_id]
        names = _display_names([UserProfile.from_user(users[uid]) for uid in added])
        system = await append_message(
            db,
            conversation_id=conversation_id,
            sender_id=user_id,
            content=f"{actor.full_name} added {names}",
            message_type=MessageType.SYSTEM,
        )

    system_dto = MessageDTO.from_model(system, actor)
    logger.info(
        "Participants added: conversation=%s by=%s users=%s",
        conversation_id, user_id, [str(uid) for uid in added],
    )

    event = {
        "conversationId": str(conversation_id),
        "userIds": [str(uid) for uid in added],
        "addedBy": str(user_id),
    }
    await broadcaster.to_conversation(conversation_id, "participant:added", event)
    for new_id in added:
        await broadcaster.to_user(new_id, "participant:added", event)
    await broadcast_new_message(broadcaster, system_dto)

    return RosterChange(
        conversation_id=conversation_id,
        added_user_ids=list(added),
        system_message=system_dto,
    )


async def remove_participant(
    db: AsyncSession,
    broadcaster: Broadcaster,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    target_id: uuid.UUID,
) -> MessageDTO:
    """Remove ``target_id`` from a group or project conversation.

    Anyone may leave; removing somebody else requires being the
    conversation's creator.  Returns the system message that records it.
    """
    async with atomic(db):
        conversation = await _lock_mutable_conversation(db, conversation_id)
        await require_participant(db, conversation_id, user_id)

        if target_id != user_id and conversation.created_by != user_id:
            raise ConversationAccessDeniedError(
                "Only the conversation creator can remove other participants"
            )

        target = await db.get(ConversationParticipant, (conversation_id, target_id))
        if target is None:
            raise UserNotFoundError("User is not a participant of this conversation")
        await db.delete(target)
        await db.flush()

        profiles = await load_user_profiles(db, {user_id, target_id})
        actor = profiles[user_id]
        if target_id == user_id:
            text = f"{actor.full_name} left the conversation"
        else:
            text = f"{actor.full_name} removed {profiles[target_id].full_name}"
        system = await append_message(
            db,
            conversation_id=conversation_id,
            sender_id=user_id,
            content=text,
            message_type=MessageType.SYSTEM,
        )

    system_dto = MessageDTO.from_model(system, actor)
    logger.info(
        "Participant removed: conversation=%s user=%s by=%s",
        conversation_id, target_id, user_id,
    )

    event = {
        "conversationId": str(conversation_id),
        "userId": str(target_id),
        "removedBy": str(user_id),
    }
    await broadcaster.to_conversation(conversation_id, "participant:removed", event)
    await broadcaster.to_user(target_id, "participant:removed", event)
    await broadcaster.evict_from_conversation(target_id, conversation_id)
    await broadcast_new_message(broadcaster, system_dto)
    return system_dto
