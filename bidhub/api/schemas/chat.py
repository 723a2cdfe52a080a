"""
Pydantic v2 schemas for the Chat API.

Request/response schemas for the REST conversation and message endpoints.
Output models validate straight from the service DTOs
(``from_attributes``), so REST bodies and socket payloads carry the same
field names.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from bidhub.models.chat import ConversationType, MessageType

from .common import CamelModel


# ---------------------------------------------------------------------------
# Shared output
# ---------------------------------------------------------------------------

class UserProfileOut(CamelModel):
    id: uuid.UUID
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None
    company_name: Optional[str] = None
    role: Optional[str] = None


class MessageOut(CamelModel):
    """Single message.  ``content`` is null and ``attachments`` empty once
    the message has been deleted."""

    id: int
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    content: Optional[str] = None
    message_type: MessageType
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    is_deleted: bool
    created_at: datetime
    deleted_at: Optional[datetime] = None
    sender: Optional[UserProfileOut] = None


class ConversationOut(CamelModel):
    id: uuid.UUID
    type: ConversationType
    title: Optional[str] = None
    project_id: Optional[uuid.UUID] = None
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime
    participants: list[UserProfileOut] = Field(default_factory=list)
    last_message: Optional[MessageOut] = None
    unread_count: int = 0


class MessagePageOut(CamelModel):
    """One page of history, oldest first.

    Pass ``nextCursor`` as ``cursor`` and ``nextBeforeId`` as ``beforeId``
    to fetch the page before this one.
    """

    items: list[MessageOut]
    next_cursor: Optional[datetime] = None
    next_before_id: Optional[int] = None
    has_more: bool


class UnreadCountOut(CamelModel):
    count: int = Field(ge=0)


class ReadMarkerOut(CamelModel):
    conversation_id: uuid.UUID
    last_read_at: datetime


class ParticipantsAddedOut(CamelModel):
    conversation_id: uuid.UUID
    added_user_ids: list[uuid.UUID]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class AttachmentIn(CamelModel):
    url: str = Field(min_length=1)
    name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)


class SendMessageRequest(CamelModel):
    """Request body for sending a message.  Length and type rules are
    enforced by the chat service so REST and socket behave the same."""

    content: Optional[str] = None
    attachments: list[AttachmentIn] = Field(default_factory=list)
    message_type: MessageType = MessageType.TEXT


class DirectConversationRequest(CamelModel):
    participant_id: uuid.UUID


class GroupConversationRequest(CamelModel):
    title: str = Field(min_length=1, max_length=255)
    participant_ids: list[uuid.UUID] = Field(min_length=1)


class ProjectConversationRequest(CamelModel):
    participant_ids: list[uuid.UUID] = Field(default_factory=list)


class AddParticipantsRequest(CamelModel):
    participant_ids: list[uuid.UUID] = Field(min_length=1)
