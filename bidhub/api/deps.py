"""
Shared FastAPI dependencies for the BidHub backend.

Provides the request-scoped database session, the broadcaster shared with
the Socket.IO gateway, and authentication dependencies that resolve the
current user from a JWT Bearer token.

The ``Database`` and the broadcaster are created by ``create_app`` and
stored on ``app.state``; nothing here opens connections at import time.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated, Callable, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bidhub.core.database import Database
from bidhub.core.exceptions import AuthenticationError, AuthorizationError
from bidhub.models.user import User, UserRole
from bidhub.realtime.broadcaster import Broadcaster
from bidhub.services import auth_service


# ---------------------------------------------------------------------------
# Application-held resources
# ---------------------------------------------------------------------------

def get_database(request: Request) -> Database:
    return request.app.state.database


def get_broadcaster(request: Request) -> Broadcaster:
    return request.app.state.broadcaster


async def get_db(
    database: Annotated[Database, Depends(get_database)],
) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session scoped to one request.

    Services commit their own units of work through ``atomic()``; the
    session is rolled back on error and always closed, which returns its
    connection to the pool.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with database.session() as session:
        yield session


# ---------------------------------------------------------------------------
# Annotated type aliases for convenience
# ---------------------------------------------------------------------------
DBSession = Annotated[AsyncSession, Depends(get_db)]
EventBroadcaster = Annotated[Broadcaster, Depends(get_broadcaster)]


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

# auto_error=False so a missing header becomes our 401 envelope
_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Annotated[
        Optional[HTTPAuthorizationCredentials], Depends(_bearer_scheme)
    ],
    db: DBSession,
) -> User:
    """Extract and validate a Bearer token from the Authorization header.

    Returns the authenticated ``User`` ORM instance.  Raises
    ``AuthenticationError`` (401) if the token is missing, invalid,
    expired, or belongs to an inactive account.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    return await auth_service.authenticate_token(db, credentials.credentials)


CurrentUser = Annotated[User, Depends(get_current_user)]


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory restricting a route to the given roles.

    Usage::

        @router.post("/bids")
        async def create(user: Annotated[User, Depends(require_roles(UserRole.SUBCONTRACTOR))]):
            ...
    """
    allowed = frozenset(roles)

    async def _check(current_user: CurrentUser) -> User:
        if current_user.role not in allowed:
            raise AuthorizationError(
                "This action requires one of the roles: "
                + ", ".join(sorted(role.value for role in allowed))
            )
        return current_user

    return _check


ContractorUser = Annotated[
    User,
    Depends(require_roles(UserRole.GENERAL_CONTRACTOR, UserRole.SUBCONTRACTOR)),
]
ProjectOwnerUser = Annotated[
    User,
    Depends(require_roles(UserRole.CLIENT, UserRole.GENERAL_CONTRACTOR)),
]
