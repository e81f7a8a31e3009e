"""Error taxonomy shared across services."""

from __future__ import annotations


class CodeCompanionError(Exception):
    """Base class for application errors."""


class ConfigurationError(CodeCompanionError):
    """A required credential or setting is missing; retrying cannot help."""


class DimensionMismatchError(CodeCompanionError, ValueError):
    """Two embedding vectors of different length were compared."""


class GitHubAPIError(CodeCompanionError):
    """GitHub responded with an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreError(CodeCompanionError):
    """A write succeeded but the row could not be read back."""


class LLMResponseError(CodeCompanionError):
    """Model output could not be parsed into the expected shape."""


__all__ = [
    "CodeCompanionError",
    "ConfigurationError",
    "DimensionMismatchError",
    "GitHubAPIError",
    "LLMResponseError",
    "StoreError",
]
