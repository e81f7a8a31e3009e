"""ID helpers."""

from __future__ import annotations

import uuid


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 hex string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def new_uuid() -> str:
    """Canonical dashed UUID4, used for job and issue identifiers."""
    return str(uuid.uuid4())
