"""Exception hierarchy for idea outcome tracking.

Arithmetic edge cases (no losses, no decisive trades, empty populations)
are not errors: they resolve to sentinel values in the statistics code.
"""

from __future__ import annotations

from typing import Any


class IdeaTrackerError(Exception):
    """Base class for all idea tracker errors."""

    error_code: str = "IDEA_TRACKER_ERROR"
    is_recoverable: bool = False

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.error_code}] {self.message}"
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base = f"{base} ({ctx})"
        return base


class QuoteUnavailable(IdeaTrackerError):
    """No usable price for a symbol. The idea stays open until the next sweep."""

    error_code = "QUOTE_UNAVAILABLE"
    is_recoverable = True

    def __init__(self, symbol: str, reason: str = "no price returned") -> None:
        super().__init__(f"quote unavailable for {symbol}: {reason}", {"symbol": symbol})
        self.symbol = symbol


class InvalidManualOutcome(IdeaTrackerError):
    """A manual outcome was rejected. No state was changed."""

    error_code = "INVALID_MANUAL_OUTCOME"


class IdeaNotFound(InvalidManualOutcome):
    error_code = "IDEA_NOT_FOUND"

    def __init__(self, idea_id: str) -> None:
        super().__init__(f"idea {idea_id} does not exist", {"idea_id": idea_id})
        self.idea_id = idea_id


class ConflictingTransition(IdeaTrackerError):
    """Another writer closed the idea first."""

    error_code = "CONFLICTING_TRANSITION"
    is_recoverable = True

    def __init__(self, idea_id: str) -> None:
        super().__init__(f"idea {idea_id} is no longer open", {"idea_id": idea_id})
        self.idea_id = idea_id


class LeaseUnavailable(IdeaTrackerError):
    """The sweep lease is held by another instance."""

    error_code = "LEASE_UNAVAILABLE"
    is_recoverable = True

    def __init__(self, name: str, holder: str | None = None) -> None:
        super().__init__(f"lease {name} is held", {"lease": name, "holder": holder})
        self.name = name
        self.holder = holder
