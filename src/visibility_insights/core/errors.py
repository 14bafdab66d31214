"""Error taxonomy for upstream failures.

Only genuinely unrecoverable conditions are raised. Permission and
availability gaps are absorbed by the fallback chain and never reach callers.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureClass(str, Enum):
    """How an upstream failure should be treated."""

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    MALFORMED_REQUEST = "malformed_request"
    AUTH_FAILURE = "auth_failure"
    OTHER = "other"


RETRYABLE = {FailureClass.TIMEOUT, FailureClass.RATE_LIMITED, FailureClass.SERVER_ERROR}


def classify_status(status_code: int) -> Optional[FailureClass]:
    """Map an HTTP status to its failure class. Success statuses map to None."""
    if status_code < 400:
        return None
    if status_code == 408:
        return FailureClass.TIMEOUT
    if status_code == 429:
        return FailureClass.RATE_LIMITED
    if 500 <= status_code < 600:
        return FailureClass.SERVER_ERROR
    if status_code == 401:
        return FailureClass.AUTH_FAILURE
    if status_code == 403:
        return FailureClass.PERMISSION_DENIED
    if status_code == 404:
        return FailureClass.UNAVAILABLE
    if status_code == 400:
        return FailureClass.MALFORMED_REQUEST
    return FailureClass.OTHER


class InsightsError(Exception):
    """Base class for errors surfaced to callers."""


class AuthFailureError(InsightsError):
    """The bearer credential is missing, invalid or expired."""

    def __init__(self, message: str = "Authentication failed - token expired or invalid. Refresh credentials and retry."):
        super().__init__(message)


class TransportSSLError(InsightsError):
    """SSL/TLS handshake or read failure."""

    def __init__(self, url: str, cause: BaseException):
        super().__init__(
            f"SSL connection failed for {url}: {cause}. "
            "This may be due to network configuration or API access issues."
        )
        self.url = url


class RetryExhaustedError(InsightsError):
    """A transient failure persisted through every attempt."""

    def __init__(
        self,
        url: str,
        attempts: int,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        reason = f"HTTP {status_code}" if status_code is not None else f"{type(cause).__name__}: {cause}"
        super().__init__(f"Request to {url} failed after {attempts} attempts ({reason})")
        self.url = url
        self.attempts = attempts
        self.status_code = status_code
        self.cause = cause


class UpstreamError(InsightsError):
    """Non-success status that no fallback strategy can absorb."""

    def __init__(self, url: str, status_code: int, body: str = ""):
        super().__init__(f"Upstream request to {url} failed: {status_code} - {body[:500]}")
        self.url = url
        self.status_code = status_code
        self.body = body
