"""
Chat API Routes
===============

REST endpoints for conversations and messages.  These complement the
Socket.IO handlers in ``bidhub/realtime/handlers/chatHandler.py``; both
call the same service functions and broadcast through the same
broadcaster, so a message posted here reaches socket listeners at once.

Routes:
  GET    /api/v1/conversations                              -- Inbox
  GET    /api/v1/conversations/unread-count                 -- Unread total
  POST   /api/v1/conversations/direct                       -- Get/create 1:1
  POST   /api/v1/conversations/group                        -- Create group
  POST   /api/v1/projects/{project_id}/conversation         -- Get/create project chat
  GET    /api/v1/conversations/{conversation_id}/messages   -- History (cursor)
  POST   /api/v1/conversations/{conversation_id}/messages   -- Send
  DELETE /api/v1/messages/{message_id}                      -- Soft delete
  POST   /api/v1/conversations/{conversation_id}/read       -- Mark read
  POST   /api/v1/conversations/{conversation_id}/participants          -- Add
  DELETE /api/v1/conversations/{conversation_id}/participants/{user_id} -- Remove

All endpoints require a valid Bearer token.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Query, Response, status

from bidhub.api.deps import CurrentUser, DBSession, EventBroadcaster
from bidhub.api.schemas.chat import (
    AddParticipantsRequest,
    ConversationOut,
    DirectConversationRequest,
    GroupConversationRequest,
    MessageOut,
    MessagePageOut,
    ParticipantsAddedOut,
    ProjectConversationRequest,
    ReadMarkerOut,
    SendMessageRequest,
    UnreadCountOut,
)
from bidhub.api.schemas.common import ERROR_RESPONSES, ApiResponse
from bidhub.services import chatService, conversationService

router = APIRouter(tags=["Chat"], responses=ERROR_RESPONSES)


def _created_status(response: Response, created: bool) -> None:
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

@router.get(
    "/conversations",
    response_model=ApiResponse[list[ConversationOut]],
    summary="List the caller's conversations",
    description=(
        "Most recently active first, each with its latest message, the "
        "caller's unread count and the participant roster."
    ),
)
async def list_conversations(db: DBSession, current_user: CurrentUser) -> ApiResponse[list[ConversationOut]]:
    conversations = await conversationService.list_conversations(db, current_user.id)
    return ApiResponse[list[ConversationOut]](
        data=[ConversationOut.model_validate(c) for c in conversations]
    )


@router.get(
    "/conversations/unread-count",
    response_model=ApiResponse[UnreadCountOut],
    summary="Unread messages across all conversations",
)
async def get_unread_count(db: DBSession, current_user: CurrentUser) -> ApiResponse[UnreadCountOut]:
    count = await conversationService.get_unread_total(db, current_user.id)
    return ApiResponse[UnreadCountOut](data=UnreadCountOut(count=count))


@router.post(
    "/conversations/direct",
    response_model=ApiResponse[ConversationOut],
    summary="Get or create a direct conversation",
    description="Returns 201 when the conversation was created, 200 when it already existed.",
)
async def get_or_create_direct(
    body: DirectConversationRequest,
    response: Response,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[ConversationOut]:
    conversation, created = await conversationService.get_or_create_direct_conversation(
        db, broadcaster, current_user.id, body.participant_id
    )
    _created_status(response, created)
    return ApiResponse[ConversationOut](data=ConversationOut.model_validate(conversation))


@router.post(
    "/conversations/group",
    response_model=ApiResponse[ConversationOut],
    status_code=status.HTTP_201_CREATED,
    summary="Create a group conversation",
)
async def create_group(
    body: GroupConversationRequest,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[ConversationOut]:
    conversation = await conversationService.create_group_conversation(
        db, broadcaster, current_user.id, body.title, body.participant_ids
    )
    return ApiResponse[ConversationOut](data=ConversationOut.model_validate(conversation))


@router.post(
    "/projects/{project_id}/conversation",
    response_model=ApiResponse[ConversationOut],
    summary="Get or create the project conversation",
)
async def get_or_create_project_conversation(
    project_id: uuid.UUID,
    response: Response,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
    body: Optional[ProjectConversationRequest] = Body(default=None),
) -> ApiResponse[ConversationOut]:
    conversation, created = await conversationService.get_or_create_project_conversation(
        db,
        broadcaster,
        project_id,
        current_user.id,
        body.participant_ids if body else (),
    )
    _created_status(response, created)
    return ApiResponse[ConversationOut](data=ConversationOut.model_validate(conversation))


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ApiResponse[MessagePageOut],
    summary="Get message history",
    description=(
        "Returns messages oldest first. Pass the previous page's nextCursor "
        "(and nextBeforeId) to load older messages."
    ),
)
async def get_messages(
    conversation_id: uuid.UUID,
    db: DBSession,
    current_user: CurrentUser,
    cursor: Optional[datetime] = Query(
        default=None,
        description="Only return messages created before this ISO timestamp",
    ),
    before_id: Optional[int] = Query(
        default=None,
        alias="beforeId",
        description="Tiebreak for messages sharing the cursor timestamp",
    ),
    limit: Optional[int] = Query(
        default=None,
        ge=1,
        description="Page size (default 50, capped at 100)",
    ),
) -> ApiResponse[MessagePageOut]:
    page = await chatService.get_messages(
        db,
        conversation_id,
        current_user.id,
        cursor=cursor,
        before_id=before_id,
        limit=limit,
    )
    return ApiResponse[MessagePageOut](data=MessagePageOut.model_validate(page))


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=ApiResponse[MessageOut],
    status_code=status.HTTP_201_CREATED,
    summary="Send a message",
)
async def send_message(
    conversation_id: uuid.UUID,
    body: SendMessageRequest,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[MessageOut]:
    message = await chatService.send_message(
        db,
        broadcaster,
        conversation_id,
        current_user.id,
        content=body.content,
        attachments=[a.model_dump(by_alias=True, exclude_none=True) for a in body.attachments],
        message_type=body.message_type,
    )
    return ApiResponse[MessageOut](data=MessageOut.model_validate(message))


@router.delete(
    "/messages/{message_id}",
    response_model=ApiResponse[MessageOut],
    summary="Delete a message (sender only)",
)
async def delete_message(
    message_id: int,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[MessageOut]:
    message = await chatService.delete_message(db, broadcaster, message_id, current_user.id)
    return ApiResponse[MessageOut](data=MessageOut.model_validate(message), message="Message deleted")


@router.post(
    "/conversations/{conversation_id}/read",
    response_model=ApiResponse[ReadMarkerOut],
    summary="Mark a conversation as read",
)
async def mark_read(
    conversation_id: uuid.UUID,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[ReadMarkerOut]:
    read_at = await chatService.mark_conversation_read(
        db, broadcaster, conversation_id, current_user.id
    )
    return ApiResponse[ReadMarkerOut](
        data=ReadMarkerOut(conversation_id=conversation_id, last_read_at=read_at)
    )


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

@router.post(
    "/conversations/{conversation_id}/participants",
    response_model=ApiResponse[ParticipantsAddedOut],
    summary="Add participants",
)
async def add_participants(
    conversation_id: uuid.UUID,
    body: AddParticipantsRequest,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[ParticipantsAddedOut]:
    change = await conversationService.add_participants(
        db, broadcaster, conversation_id, current_user.id, body.participant_ids
    )
    return ApiResponse[ParticipantsAddedOut](data=ParticipantsAddedOut.model_validate(change))


@router.delete(
    "/conversations/{conversation_id}/participants/{user_id}",
    response_model=ApiResponse[MessageOut],
    summary="Remove a participant (or leave)",
)
async def remove_participant(
    conversation_id: uuid.UUID,
    user_id: uuid.UUID,
    db: DBSession,
    broadcaster: EventBroadcaster,
    current_user: CurrentUser,
) -> ApiResponse[MessageOut]:
    system_message = await conversationService.remove_participant(
        db, broadcaster, conversation_id, current_user.id, user_id
    )
    return ApiResponse[MessageOut](
        data=MessageOut.model_validate(system_message),
        message="Participant removed",
    )
