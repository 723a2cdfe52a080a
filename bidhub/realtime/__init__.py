"""
BidHub Real-time Module
=======================

Socket.IO server, gateway and broadcaster for chat.

Usage in the application factory::

    from bidhub.realtime.broadcaster import SocketBroadcaster
    from bidhub.realtime.socketServer import (
        RealtimeGateway, create_socket_app, create_socket_server,
    )

    sio = create_socket_server(settings)
    broadcaster = SocketBroadcaster(sio)
    RealtimeGateway(sio, database, broadcaster).register()
    app.mount("/ws", create_socket_app(sio))

Only the broadcaster is re-exported here.  The services import this
package, so it must not import the gateway.
"""

from __future__ import annotations

from .broadcaster import (
    Broadcaster,
    ConnectionRegistry,
    SocketBroadcaster,
    conversation_room,
    user_room,
)

__all__ = [
    "Broadcaster",
    "ConnectionRegistry",
    "SocketBroadcaster",
    "conversation_room",
    "user_room",
]
