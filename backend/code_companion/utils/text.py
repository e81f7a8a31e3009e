"""Text processing helpers."""

from __future__ import annotations


def truncate(text: str, limit: int, marker: str = "") -> str:
    """Cut ``text`` to ``limit`` characters, appending ``marker`` when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker


def join_nonempty(parts: list[str], sep: str = "\n") -> str:
    return sep.join(part for part in parts if part)


__all__ = ["join_nonempty", "truncate"]
