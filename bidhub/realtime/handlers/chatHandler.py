"""
Chat Handler
============

Socket.IO events for messaging.  Send, delete and read go through the
same ``chatService`` functions as the REST routes, so guards, persistence
and fan-out are shared; only the transport differs.

Events received FROM clients:
  message:send        { conversationId, content, attachments, messageType }
  message:delete      { messageId }
  conversation:read   { conversationId }
  typing:start        { conversationId }
  typing:stop         { conversationId }

Events emitted TO clients (via the broadcaster):
  message:new, message:deleted, conversation:updated
  user:typing         { conversationId, userId }
  user:stopped_typing { conversationId, userId }
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING, Any

from bidhub.models import MessageType
from bidhub.services import chatService

from ..payloads import require_int, require_uuid

if TYPE_CHECKING:
    from ..socketServer import RealtimeGateway

logger = logging.getLogger(__name__)


class ChatHandler:
    def __init__(self, gateway: "RealtimeGateway") -> None:
        self.gateway = gateway
        self.database = gateway.database
        self.broadcaster = gateway.broadcaster

    def register(self) -> None:
        self.gateway.handle("message:send", self.send_message)
        self.gateway.handle("message:delete", self.delete_message)
        self.gateway.handle("conversation:read", self.mark_read)
        self.gateway.handle("typing:start", self.typing_start)
        self.gateway.handle("typing:stop", self.typing_stop)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send_message(
        self, sid: str, user_id: uuid.UUID, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Persist and broadcast a message.  The sender receives
        ``message:new`` like everyone else in the room; the ack carries
        the stored message too so the client can reconcile optimistic UI.
        """
        conversation_id = require_uuid(data, "conversationId")
        async with self.database.session() as db:
            message = await chatService.send_message(
                db,
                self.broadcaster,
                conversation_id,
                user_id,
                content=data.get("content"),
                attachments=data.get("attachments"),
                message_type=data.get("messageType") or MessageType.TEXT,
            )
        return {"message": message.to_payload()}

    async def delete_message(
        self, sid: str, user_id: uuid.UUID, data: dict[str, Any]
    ) -> dict[str, Any]:
        message_id = require_int(data, "messageId")
        async with self.database.session() as db:
            await chatService.delete_message(db, self.broadcaster, message_id, user_id)
        return {"messageId": message_id}

    async def mark_read(
        self, sid: str, user_id: uuid.UUID, data: dict[str, Any]
    ) -> dict[str, Any]:
        conversation_id = require_uuid(data, "conversationId")
        async with self.database.session() as db:
            read_at = await chatService.mark_conversation_read(
                db, self.broadcaster, conversation_id, user_id
            )
        return {"lastReadAt": read_at.isoformat()}

    # ------------------------------------------------------------------
    # Typing indicators (not persisted)
    # ------------------------------------------------------------------

    async def _relay_typing(
        self, sid: str, user_id: uuid.UUID, data: dict[str, Any], event: str
    ) -> None:
        conversation_id = require_uuid(data, "conversationId")
        async with self.database.session() as db:
            await chatService.require_participant(db, conversation_id, user_id)

        await self.broadcaster.to_conversation(
            conversation_id,
            event,
            {"conversationId": str(conversation_id), "userId": str(user_id)},
            skip_sid=sid,
        )

    async def typing_start(self, sid: str, user_id: uuid.UUID, data: dict[str, Any]) -> None:
        await self._relay_typing(sid, user_id, data, "user:typing")

    async def typing_stop(self, sid: str, user_id: uuid.UUID, data: dict[str, Any]) -> None:
        await self._relay_typing(sid, user_id, data, "user:stopped_typing")
