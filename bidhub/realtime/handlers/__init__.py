"""
BidHub realtime handlers.

Handlers are classes bound to a ``RealtimeGateway``; nothing registers on
import.  ``RealtimeGateway.register()`` wires them onto the server.
"""

from __future__ import annotations

from .chatHandler import ChatHandler

__all__ = ["ChatHandler"]
