"""
Realtime broadcaster
====================

The messaging services never talk to Socket.IO directly.  They receive a
``Broadcaster`` and push events through it after their transaction has
committed.  The application builds exactly one ``SocketBroadcaster`` and
hands the same instance to the HTTP dependencies and to the Socket.IO
gateway, so an HTTP-triggered message reaches socket listeners the same
way a socket-triggered one does.

Rooms:
  - ``user:<user_id>``                 every socket of one user
  - ``conversation:<conversation_id>`` every socket subscribed to a chat
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

import socketio

logger = logging.getLogger(__name__)


def user_room(user_id: uuid.UUID | str) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: uuid.UUID | str) -> str:
    return f"conversation:{conversation_id}"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class Broadcaster(Protocol):
    """What the messaging services need from the realtime layer."""

    async def to_conversation(
        self,
        conversation_id: uuid.UUID | str,
        event: str,
        data: dict[str, Any],
        *,
        skip_sid: str | None = None,
    ) -> None: ...

    async def to_user(
        self,
        user_id: uuid.UUID | str,
        event: str,
        data: dict[str, Any],
    ) -> None: ...

    async def evict_from_conversation(
        self,
        user_id: uuid.UUID | str,
        conversation_id: uuid.UUID | str,
    ) -> None: ...


# ---------------------------------------------------------------------------
# Connection registry: user_id -> sids (one user, many devices) and
# sid -> user_id for quick lookup from event handlers.
# ---------------------------------------------------------------------------

class ConnectionRegistry:
    """In-process map of live socket connections."""

    def __init__(self) -> None:
        self._user_sids: dict[str, set[str]] = {}
        self._sid_users: dict[str, str] = {}

    def register(self, sid: str, user_id: uuid.UUID | str) -> None:
        key = str(user_id)
        self._user_sids.setdefault(key, set()).add(sid)
        self._sid_users[sid] = key

    def unregister(self, sid: str) -> str | None:
        """Forget a connection.  Returns the user id it belonged to, if any."""
        user_id = self._sid_users.pop(sid, None)
        if user_id is None:
            return None
        sids = self._user_sids.get(user_id)
        if sids:
            sids.discard(sid)
            if not sids:
                del self._user_sids[user_id]
        return user_id

    def user_for(self, sid: str) -> str | None:
        return self._sid_users.get(sid)

    def sids_for(self, user_id: uuid.UUID | str) -> set[str]:
        return set(self._user_sids.get(str(user_id), ()))

    def __len__(self) -> int:
        return len(self._sid_users)


# ---------------------------------------------------------------------------
# Socket.IO implementation
# ---------------------------------------------------------------------------

class SocketBroadcaster:
    """``Broadcaster`` backed by a python-socketio ``AsyncServer``.

    Emit failures happen after the data is already committed; they are
    logged and do not fail the originating request.
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        self.sio = sio
        self.registry = registry or ConnectionRegistry()

    async def _emit(
        self,
        event: str,
        data: dict[str, Any],
        room: str,
        skip_sid: str | None = None,
    ) -> None:
        try:
            await self.sio.emit(event, data, to=room, skip_sid=skip_sid)
        except Exception:
            logger.exception("Failed to emit %s to room=%s", event, room)
            return
        logger.debug("Broadcast %s to room=%s", event, room)

    async def to_conversation(
        self,
        conversation_id: uuid.UUID | str,
        event: str,
        data: dict[str, Any],
        *,
        skip_sid: str | None = None,
    ) -> None:
        await self._emit(event, data, conversation_room(conversation_id), skip_sid)

    async def to_user(
        self,
        user_id: uuid.UUID | str,
        event: str,
        data: dict[str, Any],
    ) -> None:
        await self._emit(event, data, user_room(user_id))

    async def evict_from_conversation(
        self,
        user_id: uuid.UUID | str,
        conversation_id: uuid.UUID | str,
    ) -> None:
        """Drop every local socket of ``user_id`` from the conversation room."""
        room = conversation_room(conversation_id)
        for sid in self.registry.sids_for(user_id):
            await self.sio.leave_room(sid, room)
            logger.info("sid=%s evicted from %s", sid, room)
