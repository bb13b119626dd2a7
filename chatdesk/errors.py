from __future__ import annotations

from typing import Any, Optional


class ChatError(Exception):
    """Base exception for chatdesk."""

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class AuthRequired(ChatError):
    """No authenticated user context."""

    pass


class StoreError(ChatError):
    """The message store failed to create, read or delete."""

    pass


class PersistenceWarning(ChatError):
    """A best-effort write (append or rename) did not reach the store."""

    pass


class GenerationError(ChatError):
    """The response generator could not produce a reply."""

    pass


class ValidationError(ChatError):
    """Input rejected at the boundary."""

    pass


class PageAnalysisError(ChatError):
    """The page-analysis collaborator failed."""

    pass


__all__ = [
    "ChatError",
    "AuthRequired",
    "StoreError",
    "PersistenceWarning",
    "GenerationError",
    "ValidationError",
    "PageAnalysisError",
]
