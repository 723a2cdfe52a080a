"""
Error taxonomy shared by the services, the HTTP layer and the Socket.IO
gateway.

Services raise subclasses of ``AppError``; the FastAPI exception handler in
``bidhub.main`` maps them to ``{"success": false, "message": ...}`` with the
class's ``status_code``.  Socket handlers emit the message as an ``error``
event instead.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for every expected, user-facing failure."""

    status_code: int = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    """Malformed or missing input."""

    status_code = 400


class AuthenticationError(AppError):
    """Missing, expired or invalid credentials."""

    status_code = 401


class AuthorizationError(AppError):
    """The caller is authenticated but lacks rights on the resource."""

    status_code = 403


class NotFoundError(AppError):
    """A referenced entity does not exist."""

    status_code = 404


class ConflictError(AppError):
    """The request collides with existing state (duplicates)."""

    status_code = 409


class InvalidTransitionError(ConflictError):
    """A state machine guard rejected the requested transition."""
