"""
Typed failure outcomes shared by the captcha, entitlement and checkout layers.
Services return these instead of raising; only adapters raise UpstreamUnavailableError.
"""
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    NOT_FOUND = "not_found"  # absent or already consumed
    EXPIRED = "expired"
    CONFLICT = "conflict"  # duplicate completion, resolved with the prior record
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"  # store / provider unreachable, retryable
    INVALID_INPUT = "invalid_input"
    PAYMENT_INCOMPLETE = "payment_incomplete"  # provider session not paid / cancelled
    FORBIDDEN = "forbidden"
    REJECTED = "rejected"  # answer graded and found wrong


class UpstreamUnavailableError(Exception):
    """Raised by store and provider adapters when the backing service cannot be reached."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.detail = detail or {}


# HTTP status for each failure when surfaced by the API layer.
HTTP_STATUS_BY_FAILURE: dict[FailureKind, int] = {
    FailureKind.NOT_FOUND: 404,
    FailureKind.EXPIRED: 410,
    FailureKind.CONFLICT: 409,
    FailureKind.UPSTREAM_UNAVAILABLE: 503,
    FailureKind.INVALID_INPUT: 400,
    FailureKind.PAYMENT_INCOMPLETE: 402,
    FailureKind.FORBIDDEN: 403,
    FailureKind.REJECTED: 400,
}
