"""
Helpers for reading client event payloads.

Socket.IO payloads arrive as plain JSON objects with camelCase keys.
Failures raise ``ValidationError`` so the gateway reports them through
the usual ``error`` event.
"""

from __future__ import annotations

import uuid
from typing import Any

from bidhub.core.exceptions import ValidationError


def require_uuid(data: dict[str, Any], key: str) -> uuid.UUID:
    value = data.get(key)
    if not value:
        raise ValidationError(f"{key} is required")
    try:
        return uuid.UUID(str(value))
    except ValueError as exc:
        raise ValidationError(f"{key} must be a valid UUID") from exc


def require_int(data: dict[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{key} is required")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer") from exc
