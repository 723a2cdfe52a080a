"""
Chat Service
============

Message persistence, history retrieval, soft delete and read tracking for
conversations.  HTTP routes and Socket.IO handlers both call into this
module, so authorization guards, persistence and fan-out are identical on
both transports.

Business rules:
  - Only participants may read, post to, or mark a conversation read.
  - A message needs content or at least one attachment; content is capped
    at ``settings.message_max_length`` characters.
  - Clients cannot post ``system`` messages; those are written by the
    conversation service when the roster changes.
  - Deleting is a soft delete by the original sender only; the row stays
    so ordering and unread counts stay stable.
  - Events are broadcast only after the transaction has committed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bidhub.core.config import settings
from bidhub.core.database import atomic
from bidhub.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from bidhub.models import Conversation, ConversationParticipant, Message, MessageType, User
from bidhub.models.base import utcnow
from bidhub.realtime.broadcaster import Broadcaster

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConversationNotFoundError(NotFoundError):
    """Raised when the conversation does not exist."""


class NotParticipantError(AuthorizationError):
    """Raised when the user is not a participant of the conversation."""


class MessageNotFoundError(NotFoundError):
    """Raised when the message does not exist."""


class MessageAccessDeniedError(AuthorizationError):
    """Raised when someone other than the sender tries to delete a message."""


class InvalidMessageError(ValidationError):
    """Raised for empty, oversized or otherwise malformed messages."""


# ---------------------------------------------------------------------------
# Data transfer objects
# ---------------------------------------------------------------------------

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass
class UserProfile:
    """Public profile fields attached to messages and rosters."""

    id: uuid.UUID
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None
    company_name: Optional[str] = None
    role: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserProfile":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            avatar_url=user.avatar_url,
            company_name=user.company_name,
            role=user.role.value if user.role is not None else None,
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "firstName": self.first_name,
            "lastName": self.last_name,
            "avatarUrl": self.avatar_url,
            "companyName": self.company_name,
            "role": self.role,
        }


@dataclass
class MessageDTO:
    """Flat representation of a message for API responses and socket events."""

    id: int
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    content: Optional[str]
    message_type: MessageType
    attachments: List[dict[str, Any]]
    is_deleted: bool
    created_at: datetime
    deleted_at: Optional[datetime] = None
    sender: Optional[UserProfile] = None

    @classmethod
    def from_model(cls, message: Message, sender: Optional[UserProfile] = None) -> "MessageDTO":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=None if message.is_deleted else message.content,
            message_type=message.message_type,
            attachments=[] if message.is_deleted else list(message.attachments or []),
            is_deleted=message.is_deleted,
            created_at=message.created_at,
            deleted_at=message.deleted_at,
            sender=sender,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversationId": str(self.conversation_id),
            "senderId": str(self.sender_id),
            "content": self.content,
            "messageType": self.message_type.value,
            "attachments": self.attachments,
            "isDeleted": self.is_deleted,
            "createdAt": _iso(self.created_at),
            "deletedAt": _iso(self.deleted_at),
            "sender": self.sender.to_payload() if self.sender else None,
        }


@dataclass
class MessagePage:
    """One page of history, oldest first.

    ``next_cursor``/``next_before_id`` point at the oldest message returned
    and are ``None`` when there is nothing older.
    """

    items: List[MessageDTO] = field(default_factory=list)
    next_cursor: Optional[datetime] = None
    next_before_id: Optional[int] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


# ---------------------------------------------------------------------------
# Shared helpers (also used by the conversation service)
# ---------------------------------------------------------------------------

async def require_participant(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
) -> ConversationParticipant:
    """Return the caller's participant row.

    Raises:
        ConversationNotFoundError: If the conversation does not exist.
        NotParticipantError: If the user is not a member.
    """
    participant = await db.get(ConversationParticipant, (conversation_id, user_id))
    if participant is not None:
        return participant

    exists = (
        await db.execute(select(Conversation.id).where(Conversation.id == conversation_id))
    ).scalar_one_or_none()
    if exists is None:
        raise ConversationNotFoundError(f"Conversation '{conversation_id}' not found")
    raise NotParticipantError("You are not a participant of this conversation")


async def is_participant(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
) -> bool:
    stmt = select(ConversationParticipant.user_id).where(
        ConversationParticipant.conversation_id == conversation_id,
        ConversationParticipant.user_id == user_id,
    )
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def load_user_profiles(
    db: AsyncSession,
    user_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, UserProfile]:
    """Resolve profiles in bulk."""
    ids = list(set(user_ids))
    if not ids:
        return {}
    result = await db.execute(select(User).where(User.id.in_(ids)))
    return {user.id: UserProfile.from_user(user) for user in result.scalars().all()}


async def append_message(
    db: AsyncSession,
    *,
    conversation_id: uuid.UUID,
    sender_id: uuid.UUID,
    content: Optional[str],
    message_type: MessageType = MessageType.TEXT,
    attachments: Optional[List[dict[str, Any]]] = None,
) -> Message:
    """Insert a message and bump the conversation's ``updated_at``.

    Runs inside the caller's transaction; no validation or broadcast.
    """
    now = utcnow()
    message = Message(
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        message_type=message_type,
        attachments=attachments or [],
        created_at=now,
        updated_at=now,
    )
    db.add(message)
    await db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(updated_at=now)
    )
    await db.flush()
    return message


def conversation_updated_payload(
    conversation_id: uuid.UUID,
    updated_at: datetime,
    **extra: Any,
) -> dict[str, Any]:
    payload = {"conversationId": str(conversation_id), "updatedAt": _iso(updated_at)}
    payload.update(extra)
    return payload


async def broadcast_new_message(broadcaster: Broadcaster, message: MessageDTO) -> None:
    """Fan out ``message:new`` followed by ``conversation:updated``."""
    await broadcaster.to_conversation(
        message.conversation_id, "message:new", message.to_payload()
    )
    await broadcaster.to_conversation(
        message.conversation_id,
        "conversation:updated",
        conversation_updated_payload(
            message.conversation_id,
            message.created_at,
            lastMessage=message.to_payload(),
        ),
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _normalise_attachments(attachments: Optional[Iterable[Any]]) -> List[dict[str, Any]]:
    normalised: List[dict[str, Any]] = []
    for attachment in attachments or []:
        if not isinstance(attachment, dict):
            raise InvalidMessageError("Each attachment must be an object")
        url = attachment.get("url")
        if not isinstance(url, str) or not url.strip():
            raise InvalidMessageError("Each attachment needs a url")
        normalised.append(dict(attachment))
    return normalised


def _parse_message_type(message_type: MessageType | str) -> MessageType:
    try:
        parsed = MessageType(message_type)
    except ValueError:
        valid = ", ".join(t.value for t in MessageType if t is not MessageType.SYSTEM)
        raise InvalidMessageError(f"Invalid messageType. Must be one of: {valid}")
    if parsed is MessageType.SYSTEM:
        raise InvalidMessageError("System messages cannot be sent by clients")
    return parsed


# ---------------------------------------------------------------------------
# Public service functions
# ---------------------------------------------------------------------------

async def send_message(
    db: AsyncSession,
    broadcaster: Broadcaster,
    conversation_id: uuid.UUID,
    sender_id: uuid.UUID,
    content: Optional[str] = None,
    attachments: Optional[Iterable[Any]] = None,
    message_type: MessageType | str = MessageType.TEXT,
) -> MessageDTO:
    """Persist a message and broadcast it to the conversation room.

    Returns:
        MessageDTO of the stored message, enriched with the sender profile.

    Raises:
        InvalidMessageError: Empty, too long, bad attachments or type.
        ConversationNotFoundError / NotParticipantError: Membership guard.
    """
    if content is not None and not isinstance(content, str):
        raise InvalidMessageError("content must be a string")
    text = content.strip() if content else None
    files = _normalise_attachments(attachments)
    parsed_type = _parse_message_type(message_type)

    if not text and not files:
        raise InvalidMessageError("Message must have content or attachments")
    if text and len(text) > settings.message_max_length:
        raise InvalidMessageError(
            f"Message exceeds maximum length of {settings.message_max_length} characters"
        )

    async with atomic(db):
        await require_participant(db, conversation_id, sender_id)
        message = await append_message(
            db,
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=text or None,
            message_type=parsed_type,
            attachments=files,
        )
        profiles = await load_user_profiles(db, [sender_id])

    dto = MessageDTO.from_model(message, profiles.get(sender_id))
    logger.info(
        "Message sent: id=%s conversation=%s sender=%s type=%s len=%d attachments=%d",
        dto.id, conversation_id, sender_id, parsed_type.value, len(text or ""), len(files),
    )
    await broadcast_new_message(broadcaster, dto)
    return dto


async def get_messages(
    db: AsyncSession,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    cursor: Optional[datetime] = None,
    before_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> MessagePage:
    """Retrieve a page of history, returned oldest first.

    Args:
        cursor: Only messages created before this instant.  With
            ``before_id`` the comparison becomes ``(created_at, id) <
            (cursor, before_id)`` so messages sharing a timestamp are not
            skipped.
        limit: Page size; defaults to ``settings.message_page_size`` and is
            clamped to ``settings.message_max_page_size``.
    """
    await require_participant(db, conversation_id, user_id)

    page_size = limit if limit is not None else settings.message_page_size
    page_size = max(1, min(page_size, settings.message_max_page_size))

    conditions = [Message.conversation_id == conversation_id]
    if cursor is not None:
        if before_id is not None:
            conditions.append(
                or_(
                    Message.created_at < cursor,
                    and_(Message.created_at == cursor, Message.id < before_id),
                )
            )
        else:
            conditions.append(Message.created_at < cursor)

    stmt = (
        select(Message)
        .where(*conditions)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(page_size + 1)
    )
    rows = list((await db.execute(stmt)).scalars().all())

    has_more = len(rows) > page_size
    rows = rows[:page_size]
    rows.reverse()

    profiles = await load_user_profiles(db, (m.sender_id for m in rows))
    items = [MessageDTO.from_model(m, profiles.get(m.sender_id)) for m in rows]

    page = MessagePage(items=items)
    if has_more and items:
        page.next_cursor = items[0].created_at
        page.next_before_id = items[0].id
    return page


async def delete_message(
    db: AsyncSession,
    broadcaster: Broadcaster,
    message_id: int,
    user_id: uuid.UUID,
) -> MessageDTO:
    """Soft-delete a message.  Only the sender may do this.

    Deleting an already deleted message changes nothing and emits nothing.
    """
    async with atomic(db):
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        message = (await db.execute(stmt)).scalar_one_or_none()
        if message is None:
            raise MessageNotFoundError(f"Message '{message_id}' not found")
        if message.sender_id != user_id:
            raise MessageAccessDeniedError("You can only delete your own messages")

        already_deleted = message.is_deleted
        if not already_deleted:
            message.content = None
            message.attachments = []
            message.is_deleted = True
            message.deleted_at = utcnow()
            await db.flush()

    dto = MessageDTO.from_model(message)
    if already_deleted:
        return dto

    logger.info(
        "Message deleted: id=%s conversation=%s by user=%s",
        message_id, message.conversation_id, user_id,
    )
    await broadcaster.to_conversation(
        message.conversation_id,
        "message:deleted",
        {
            "messageId": message.id,
            "conversationId": str(message.conversation_id),
            "deletedAt": _iso(message.deleted_at),
        },
    )
    return dto


async def mark_conversation_read(
    db: AsyncSession,
    broadcaster: Broadcaster,
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
) -> datetime:
    """Set the caller's ``last_read_at`` to now and return it.

    Works whether or not there is anything new to read.
    """
    async with atomic(db):
        participant = await require_participant(db, conversation_id, user_id)
        now = utcnow()
        participant.last_read_at = now
        await db.flush()

    logger.debug("Conversation read: conversation=%s user=%s", conversation_id, user_id)
    await broadcaster.to_conversation(
        conversation_id,
        "conversation:updated",
        conversation_updated_payload(
            conversation_id,
            now,
            readBy=str(user_id),
            lastReadAt=_iso(now),
        ),
    )
    return now
