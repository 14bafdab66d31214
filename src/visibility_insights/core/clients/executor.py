"""Request executor with bounded retries and exponential backoff.

The only component that touches the network. Each call carries its own
credentials so one executor can serve many locations and tenants.
"""

from __future__ import annotations

import asyncio
import logging
import random
import ssl
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from ...config import Settings, get_settings
from ..errors import (
    RETRYABLE,
    AuthFailureError,
    FailureClass,
    RetryExhaustedError,
    TransportSSLError,
    classify_status,
)
from ..models import Credentials

logger = logging.getLogger(__name__)

_SSL_MARKERS = ("SSL", "TLS", "ssl3_read_bytes", "CERTIFICATE_VERIFY_FAILED")


class RetryPolicy(BaseModel):
    """Attempt budget and backoff curve: min(base * 2^(n-1) + jitter, cap)."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 5.0
    jitter: float = 0.25

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds before retrying after the given 1-based attempt."""
        delay = self.base_delay * (2 ** (attempt - 1)) + random.uniform(0, self.jitter)
        return min(delay, self.max_delay)


def _is_ssl_error(exc: BaseException) -> bool:
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ssl.SSLError):
            return True
        if any(marker in str(current) for marker in _SSL_MARKERS):
            return True
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return False


class RequestExecutor:
    """Issues one HTTP call with retries for transient failures.

    Retries 408, 429, 5xx and network timeouts/resets. 401 raises
    AuthFailureError, SSL failures raise TransportSSLError, and other
    non-success statuses are returned for the caller to interpret.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        timeout: Optional[httpx.Timeout] = None,
        user_agent: str = "VisibilityInsights/0.1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self.user_agent = user_agent
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> RequestExecutor:
        settings = settings or get_settings()
        return cls(
            policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_delay=settings.backoff_base,
                max_delay=settings.backoff_cap,
                jitter=settings.backoff_jitter,
            ),
            timeout=httpx.Timeout(settings.request_timeout, connect=settings.connect_timeout),
            user_agent=settings.user_agent,
            **kwargs,
        )

    def _headers(self, credentials: Credentials) -> dict:
        return {
            "Authorization": f"Bearer {credentials.access_token}",
            "Accept": "application/json",
            "User-Agent": self.user_agent,
        }

    async def execute(
        self,
        method: str,
        url: str,
        credentials: Credentials,
        params: Any = None,
        json: Any = None,
    ) -> httpx.Response:
        if not credentials.access_token:
            raise AuthFailureError("No access token available - reconnect the account to obtain credentials.")

        headers = self._headers(credentials)
        max_attempts = max(1, self.policy.max_attempts)

        for attempt in range(1, max_attempts + 1):
            logger.debug("%s %s (attempt %d/%d)", method, url, attempt, max_attempts)
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    response = await client.request(method, url, params=params, json=json, headers=headers)
            except ssl.SSLError as exc:
                logger.error("SSL/TLS error for %s: %s", url, exc)
                raise TransportSSLError(url, exc) from exc
            except (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError) as exc:
                if _is_ssl_error(exc):
                    logger.error("SSL/TLS error for %s: %s", url, exc)
                    raise TransportSSLError(url, exc) from exc
                if attempt >= max_attempts:
                    raise RetryExhaustedError(url, attempt, cause=exc) from exc
                delay = self.policy.backoff_delay(attempt)
                logger.warning(
                    "Network/timeout error for %s: %s. Retrying in %.2fs (attempt %d/%d)",
                    url, exc, delay, attempt, max_attempts,
                )
                await asyncio.sleep(delay)
                continue

            failure = classify_status(response.status_code)
            if failure is FailureClass.AUTH_FAILURE:
                logger.error("Received 401 Unauthorized from %s", url)
                raise AuthFailureError()
            if failure in RETRYABLE:
                if attempt >= max_attempts:
                    raise RetryExhaustedError(url, attempt, status_code=response.status_code)
                delay = self.policy.backoff_delay(attempt)
                logger.warning(
                    "Transient HTTP %d for %s. Retrying in %.2fs (attempt %d/%d)",
                    response.status_code, url, delay, attempt, max_attempts,
                )
                await asyncio.sleep(delay)
                continue
            return response

        raise RuntimeError("unreachable: retry loop exited without a result")


_default_executor: Optional[RequestExecutor] = None


def get_executor() -> RequestExecutor:
    """Shared executor configured from settings. Holds no credentials."""
    global _default_executor
    if _default_executor is None:
        _default_executor = RequestExecutor.from_settings()
    return _default_executor
