"""Application-level exception types.

This module defines domain errors used across the accountant, store adapters
and HTTP layer, enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from rate_limiter.core.accountant import RateLimitDecision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional so each error only carries what it knows.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    interval_seconds: int
    operation: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class StoreUnavailableError(AppError):
    """Raised by counter store adapters when the backend cannot be reached."""


@dataclass
class RateLimitExceeded(AppError):
    """Raised when a count strictly exceeds its threshold.

    Attributes:
        decision: The evaluated decision, including any rate-limit headers
            requested for the response.
    """

    code: str = "rate_limit_exceeded"
    message: str = "Rate limit exceeded."
    details: ErrorDetails | None = None
    decision: RateLimitDecision | None = None
