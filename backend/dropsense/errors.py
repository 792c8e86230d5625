"""Exception hierarchy for the DropSense personalization engine."""

from __future__ import annotations

from typing import Any


class DropSenseError(Exception):
    """Base exception for all DropSense errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "details": self.details}


class ValidationError(DropSenseError):
    """Malformed event or assessment input. Surfaced to the caller as a 400."""


class InsufficientDataError(DropSenseError):
    """Too little history to compute a pattern. Callers fall back to defaults."""


class AdvisoryUnavailable(DropSenseError):
    """The remote text advisory timed out, failed, or is not configured."""


class PersistenceError(DropSenseError):
    """A profile write failed. The previously stored profile stays authoritative."""
