"""
Shared Pydantic v2 building blocks for the REST API.

All JSON bodies use camelCase field names via the alias generator; input
models accept either spelling.  Every successful response is wrapped in
``{"success": true, "data": ..., "message"?: ...}``.
"""

from __future__ import annotations

from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict

DataT = TypeVar("DataT")


def _to_camel(snake: str) -> str:
    """Convert a snake_case string to camelCase."""
    parts = snake.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class CamelModel(BaseModel):
    """Base model that serializes field names to camelCase in JSON."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=_to_camel,
    )


class ApiResponse(CamelModel, Generic[DataT]):
    """Success envelope."""

    success: bool = True
    data: DataT
    message: Optional[str] = None


class MessageResponse(CamelModel):
    """Success envelope for endpoints with nothing to return."""

    success: bool = True
    message: str


class ErrorResponse(CamelModel):
    success: bool = False
    message: str


# Documented on every router; the handlers in ``bidhub.main`` produce it.
ERROR_RESPONSES: dict[int | str, dict] = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    401: {"model": ErrorResponse, "description": "Missing or invalid token"},
    403: {"model": ErrorResponse, "description": "Not allowed for this user"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
    409: {"model": ErrorResponse, "description": "Conflicting state"},
}
