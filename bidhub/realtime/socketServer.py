"""
WebSocket Server
================

Socket.IO server for BidHub chat.  Handles realtime delivery of messages,
deletions, read markers, roster changes and typing indicators.

Architecture:
  - python-socketio AsyncServer mounted as an ASGI app on FastAPI
  - Optional Redis manager for fan-out across several workers
  - JWT authentication at handshake, same token as the REST API
  - Room-based routing: ``user:<id>`` and ``conversation:<id>``

Connection lifecycle:
  1. Client connects with ``auth: { token: "<jwt>" }`` (or an
     ``Authorization: Bearer`` header, or a ``token`` cookie)
  2. Server validates the token and loads the user; failure refuses the
     connection before any event is handled
  3. Server joins the socket to the user's room and to every conversation
     the user belongs to at that moment
  4. Conversations joined later need an explicit ``conversation:join``,
     which is checked against current membership
  5. On disconnect the socket is dropped from the connection registry

Every event handler acknowledges with ``{"ok": true, ...}`` or
``{"ok": false, "error": "..."}``; failures additionally emit ``error``
to the originating socket, which stays connected.
"""

from __future__ import annotations

import logging
import uuid
from http.cookies import CookieError, SimpleCookie
from typing import Any, Awaitable, Callable, Optional

import socketio
from socketio.exceptions import ConnectionRefusedError
from sqlalchemy import select

from bidhub.core.config import Settings, settings
from bidhub.core.database import Database
from bidhub.core.exceptions import AppError, AuthenticationError
from bidhub.models import ConversationParticipant
from bidhub.services import auth_service, chatService

from .broadcaster import Broadcaster, ConnectionRegistry, conversation_room, user_room
from .handlers.chatHandler import ChatHandler
from .payloads import require_uuid

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, uuid.UUID, dict[str, Any]], Awaitable[Optional[dict[str, Any]]]]


# ---------------------------------------------------------------------------
# Socket.IO server instance
# ---------------------------------------------------------------------------

def _cors_origins(raw: str) -> str | list[str]:
    if raw.strip() == "*":
        return "*"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_socket_server(app_settings: Settings = settings) -> socketio.AsyncServer:
    """Build the AsyncServer.  A Redis manager is used when ``redis_url``
    is configured, otherwise fan-out stays in this process."""
    client_manager = None
    if app_settings.redis_url:
        client_manager = socketio.AsyncRedisManager(app_settings.redis_url, write_only=False)

    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=_cors_origins(app_settings.ws_cors_allowed_origins),
        client_manager=client_manager,
        logger=False,
        engineio_logger=False,
        ping_timeout=app_settings.ws_ping_timeout,
        ping_interval=app_settings.ws_ping_interval,
        max_http_buffer_size=1_000_000,  # 1 MB
    )


def create_socket_app(sio: socketio.AsyncServer) -> socketio.ASGIApp:
    """ASGI app for mounting onto FastAPI at ``/ws``."""
    return socketio.ASGIApp(
        socketio_server=sio,
        socketio_path="/ws/socket.io",
    )


# ---------------------------------------------------------------------------
# Handshake token extraction
# ---------------------------------------------------------------------------

def extract_token(environ: dict[str, Any], auth: Any = None) -> str | None:
    """Find the bearer token of a connecting client.

    Priority: ``auth.token`` payload, then the ``Authorization: Bearer``
    header, then the ``token`` cookie.
    """
    if isinstance(auth, dict):
        token = auth.get("token")
        if isinstance(token, str) and token.strip():
            return token.strip()

    header = environ.get("HTTP_AUTHORIZATION", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()

    raw_cookie = environ.get("HTTP_COOKIE")
    if raw_cookie:
        cookie = SimpleCookie()
        try:
            cookie.load(raw_cookie)
        except CookieError:
            logger.warning("Ignoring malformed cookie header on handshake")
            return None
        morsel = cookie.get("token")
        if morsel is not None and morsel.value:
            return morsel.value

    return None


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class RealtimeGateway:
    """Binds the Socket.IO server to the database and the broadcaster.

    ``registry`` is the source of truth for which user a sid belongs to;
    pass the one the broadcaster uses so evictions reach live sockets.
    """

    def __init__(
        self,
        sio: socketio.AsyncServer,
        database: Database,
        broadcaster: Broadcaster,
        registry: Optional[ConnectionRegistry] = None,
    ) -> None:
        self.sio = sio
        self.database = database
        self.broadcaster = broadcaster
        self.registry = registry or ConnectionRegistry()

    def register(self) -> None:
        """Attach every event handler to the server."""
        self.sio.on("connect", handler=self.connect)
        self.sio.on("disconnect", handler=self.disconnect)
        self.handle("conversation:join", self.join_conversation)
        self.handle("conversation:leave", self.leave_conversation)
        ChatHandler(self).register()

    # -- event plumbing --

    def user_id_for(self, sid: str) -> uuid.UUID:
        user_id = self.registry.user_for(sid)
        if user_id is None:
            raise AuthenticationError("Not authenticated")
        return uuid.UUID(user_id)

    def handle(self, event: str, callback: EventCallback) -> None:
        """Register ``callback`` for ``event`` with uniform error handling.

        The callback receives ``(sid, user_id, payload)`` and may return
        extra fields for the acknowledgement.
        """

        async def handler(sid: str, data: Any = None) -> dict[str, Any]:
            payload = data if isinstance(data, dict) else {}
            try:
                user_id = self.user_id_for(sid)
                result = await callback(sid, user_id, payload)
            except AppError as exc:
                logger.warning("Event %s failed for sid=%s: %s", event, sid, exc.message)
                await self.sio.emit("error", {"message": exc.message}, to=sid)
                return {"ok": False, "error": exc.message}
            except Exception:
                logger.exception("Unhandled error in event %s for sid=%s", event, sid)
                message = "Internal server error"
                await self.sio.emit("error", {"message": message}, to=sid)
                return {"ok": False, "error": message}
            return {"ok": True, **(result or {})}

        self.sio.on(event, handler=handler)

    # -- connection lifecycle --

    async def connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        """Authenticate the handshake and join the user's rooms.

        Raises ``ConnectionRefusedError`` to reject the connection.
        """
        token = extract_token(environ, auth)
        if token is None:
            logger.warning("Connection rejected for sid=%s -- no token", sid)
            raise ConnectionRefusedError("Authentication required")

        async with self.database.session() as db:
            try:
                user = await auth_service.authenticate_token(db, token)
            except AuthenticationError as exc:
                logger.warning("Connection rejected for sid=%s -- %s", sid, exc.message)
                raise ConnectionRefusedError(exc.message) from exc

            conversation_ids = (
                await db.execute(
                    select(ConversationParticipant.conversation_id).where(
                        ConversationParticipant.user_id == user.id
                    )
                )
            ).scalars().all()

        self.registry.register(sid, user.id)
        await self.sio.enter_room(sid, user_room(user.id))
        for conversation_id in conversation_ids:
            await self.sio.enter_room(sid, conversation_room(conversation_id))

        logger.info(
            "Connected: sid=%s user_id=%s conversations=%d",
            sid, user.id, len(conversation_ids),
        )

    async def disconnect(self, sid: str, reason: Any = None) -> None:
        user_id = self.registry.unregister(sid)
        if user_id:
            logger.info("Disconnected: sid=%s user_id=%s", sid, user_id)
        else:
            logger.info("Disconnected: sid=%s (no registered user)", sid)

    # -- room management (client-initiated) --

    async def join_conversation(
        self, sid: str, user_id: uuid.UUID, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Payload: ``{ "conversationId": "<uuid>" }``.  Membership is
        re-checked so guessing an id does not grant access."""
        conversation_id = require_uuid(data, "conversationId")
        async with self.database.session() as db:
            await chatService.require_participant(db, conversation_id, user_id)

        room = conversation_room(conversation_id)
        await self.sio.enter_room(sid, room)
        logger.info("sid=%s joined room %s", sid, room)
        return {"room": room}

    async def leave_conversation(
        self, sid: str, user_id: uuid.UUID, data: dict[str, Any]
    ) -> dict[str, Any]:
        conversation_id = require_uuid(data, "conversationId")
        room = conversation_room(conversation_id)
        await self.sio.leave_room(sid, room)
        logger.info("sid=%s left room %s", sid, room)
        return {"room": room}
