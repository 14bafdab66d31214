"""Shared fixtures: mocked HTTP transport and zero-delay executors.

No test touches the network; every request is answered by an
httpx.MockTransport handler.
"""

from __future__ import annotations

import os
from typing import Callable

import httpx
import pytest

from visibility_insights.config import get_settings
from visibility_insights.core.clients.executor import RequestExecutor, RetryPolicy
from visibility_insights.core.models import Credentials

LOCATION = "accounts/111/locations/222"


class RecordingHandler:
    """Wraps a handler and keeps every request it saw."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def make_executor(handler, max_attempts: int = 3) -> RequestExecutor:
    policy = RetryPolicy(max_attempts=max_attempts, base_delay=0, max_delay=0, jitter=0)
    return RequestExecutor(policy=policy, transport=httpx.MockTransport(handler))


def series_response(metric: str, values: dict[str, object]) -> dict:
    """Time series body for one metric, keyed by ISO date."""
    dated = []
    for iso, value in values.items():
        year, month, day = (int(p) for p in iso.split("-"))
        dated.append({"date": {"year": year, "month": month, "day": day}, "value": value})
    return {"dailyMetric": metric, "timeSeries": {"datedValues": dated}}


def batched_response(series: dict[str, dict[str, object]]) -> dict:
    return {
        "multiDailyMetricTimeSeries": [
            {"dailyMetricTimeSeries": [series_response(m, v) for m, v in series.items()]}
        ]
    }


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(access_token="test-token")


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch):
    for name in list(os.environ):
        if name.startswith("VISIBILITY_"):
            monkeypatch.delenv(name)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
