# mindbreakers/core/errors.py
"""Error types shared by the data-access layer and its callers.

Read paths degrade silently when the backend is not configured; write
paths raise NotConfiguredError. Requests that reach a configured backend
and fail raise ApiError carrying the backend's message.
"""

from typing import Any


class MindbreakersError(Exception):
    """Base class for all service errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotConfiguredError(MindbreakersError):
    """Raised by write operations when backend credentials are missing."""

    def __init__(
        self,
        message: str = "Supabase is not configured. Please check your environment variables.",
    ) -> None:
        super().__init__(message)


class NotAuthenticatedError(MindbreakersError):
    """Raised when an operation needs a session and none is active."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class ValidationError(MindbreakersError):
    """Raised for empty or malformed input before any network call."""


class ApiError(MindbreakersError):
    """A configured backend or external API rejected the request.

    Attributes:
        message: Human-readable summary.
        details: Backend-supplied payload (error message, code, hint).
    """

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.details = details

    def __str__(self) -> str:
        detail = getattr(self.details, "message", None)
        if detail:
            return f"{self.message}: {detail}"
        return self.message
