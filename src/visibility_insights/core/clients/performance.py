"""Performance-metrics API client with an endpoint fallback chain.

API docs: https://developers.google.com/my-business/reference/performance/rest
Permission and availability gaps are common on this API; they degrade to
zero-valued data instead of failing the caller.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from ..aggregator import aggregate_insights, empty_insights
from ..errors import FailureClass, UpstreamError, classify_status
from ..models import (
    AggregatedInsights,
    BatchedMetricsPayload,
    Credentials,
    DailyMetricRecord,
    DataStrategy,
    LegacyKeywordPayload,
    SearchKeyword,
    SingleMetricPayload,
    location_id_from_name,
)
from ..normalizer import normalize, normalize_many, normalize_search_keywords, zero_filled_records
from .executor import RequestExecutor, get_executor

logger = logging.getLogger(__name__)

API_BASE = "https://businessprofileperformance.googleapis.com/v1"

# Core metric set requested from the batched endpoint
CORE_METRICS = [
    "WEBSITE_CLICKS",
    "CALL_CLICKS",
    "BUSINESS_DIRECTION_REQUESTS",
    "BUSINESS_IMPRESSIONS_DESKTOP_SEARCH",
    "BUSINESS_IMPRESSIONS_MOBILE_SEARCH",
    "BUSINESS_IMPRESSIONS_DESKTOP_MAPS",
    "BUSINESS_IMPRESSIONS_MOBILE_MAPS",
]

# Per-metric failures that drop the metric instead of failing the request
_DROPPABLE = {FailureClass.PERMISSION_DENIED, FailureClass.UNAVAILABLE, FailureClass.MALFORMED_REQUEST}


class BatchedFetch(BaseModel):
    """Outcome of the batched strategy."""

    records: list[DailyMetricRecord] = Field(default_factory=list)
    removed_metrics: list[str] = Field(default_factory=list)
    permission_denied: bool = False


def _validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValueError(f"Invalid date range: start_date={start_date} is after end_date={end_date}")


def _daily_range_params(start_date: date, end_date: date) -> list[tuple[str, str]]:
    return [
        ("dailyRange.start_date.year", str(start_date.year)),
        ("dailyRange.start_date.month", str(start_date.month)),
        ("dailyRange.start_date.day", str(start_date.day)),
        ("dailyRange.end_date.year", str(end_date.year)),
        ("dailyRange.end_date.month", str(end_date.month)),
        ("dailyRange.end_date.day", str(end_date.day)),
    ]


def unsupported_metrics(error_text: str, requested: list[str]) -> list[str]:
    """Requested metrics named in a 400 error body."""
    return [m for m in requested if re.search(rf"\b{re.escape(m)}\b", error_text)]


async def fetch_multi_daily_metrics(
    location_name: str,
    metrics: list[str],
    start_date: date,
    end_date: date,
    credentials: Credentials,
    executor: Optional[RequestExecutor] = None,
) -> BatchedFetch:
    """Fetch several metrics from the batched endpoint.

    A 400 naming unsupported metrics removes exactly those and retries with
    the reduced set. Each retry strictly shrinks the set, so the loop ends
    once no named metric remains to remove or the set is empty. A 403
    yields zero-valued records for every day in range.
    """
    _validate_range(start_date, end_date)
    executor = executor or get_executor()
    location_id = location_id_from_name(location_name)
    url = f"{API_BASE}/locations/{location_id}:fetchMultiDailyMetricsTimeSeries"

    requested = list(metrics)
    removed: set[str] = set()

    while requested:
        params = [("dailyMetrics", m) for m in requested] + _daily_range_params(start_date, end_date)
        response = await executor.execute("GET", url, credentials, params=params)

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError:
                logger.warning("Batched metrics response for %s was not valid JSON", location_name)
                data = {}
            records = normalize(BatchedMetricsPayload.from_response(data), location_name)
            logger.info("Batched metrics: %d daily records for %s", len(records), location_name)
            return BatchedFetch(records=records, removed_metrics=sorted(removed))

        failure = classify_status(response.status_code)
        if failure is FailureClass.PERMISSION_DENIED:
            logger.warning(
                "Performance API permission denied for %s; returning zero values for %s to %s",
                location_name, start_date, end_date,
            )
            records = zero_filled_records(location_name, start_date, end_date, requested)
            return BatchedFetch(records=records, removed_metrics=sorted(removed), permission_denied=True)

        if failure is FailureClass.UNAVAILABLE:
            logger.warning("Batched metrics endpoint not found for %s. API may not be enabled.", location_name)
            break

        if failure is FailureClass.MALFORMED_REQUEST:
            offending = [m for m in unsupported_metrics(response.text, requested) if m not in removed]
            if not offending:
                logger.warning("Batched metrics request rejected for %s: %s", location_name, response.text[:300])
                break
            removed.update(offending)
            requested = [m for m in requested if m not in removed]
            logger.info(
                "Removed unsupported metrics %s; retrying with %d metrics",
                offending, len(requested),
            )
            continue

        raise UpstreamError(url, response.status_code, response.text)

    return BatchedFetch(removed_metrics=sorted(removed))


async def fetch_daily_metric_series(
    location_name: str,
    metric: str,
    start_date: date,
    end_date: date,
    credentials: Credentials,
    executor: Optional[RequestExecutor] = None,
) -> Optional[SingleMetricPayload]:
    """Fetch one metric's series. Returns None when the metric is unavailable."""
    _validate_range(start_date, end_date)
    executor = executor or get_executor()
    location_id = location_id_from_name(location_name)
    url = f"{API_BASE}/locations/{location_id}:getDailyMetricsTimeSeries"
    params = [("dailyMetric", metric)] + _daily_range_params(start_date, end_date)

    response = await executor.execute("GET", url, credentials, params=params)
    if response.status_code == 200:
        try:
            data = response.json()
        except ValueError:
            logger.warning("Series response for %s/%s was not valid JSON", location_name, metric)
            return None
        return SingleMetricPayload.from_response(metric, data)

    failure = classify_status(response.status_code)
    if failure in _DROPPABLE:
        logger.warning("Metric %s unavailable for %s (HTTP %d), skipping", metric, location_name, response.status_code)
        return None
    raise UpstreamError(url, response.status_code, response.text)


async def fetch_insights(
    location_name: str,
    start_date: date,
    end_date: date,
    credentials: Credentials,
    executor: Optional[RequestExecutor] = None,
) -> AggregatedInsights:
    """Best-available insights for a location and date range.

    Tries the batched endpoint, then each metric's own endpoint, then
    returns zeroed insights. Never raises for permission or availability
    gaps; raises AuthFailureError, TransportSSLError, RetryExhaustedError or
    UpstreamError for unrecoverable failures.
    """
    _validate_range(start_date, end_date)
    location_id_from_name(location_name)
    executor = executor or get_executor()

    batched = await fetch_multi_daily_metrics(
        location_name, CORE_METRICS, start_date, end_date, credentials, executor,
    )
    if batched.permission_denied:
        return aggregate_insights(
            location_name, batched.records, start_date, end_date, DataStrategy.PERMISSION_DEGRADED,
        )
    if batched.records:
        return aggregate_insights(location_name, batched.records, start_date, end_date, DataStrategy.BATCHED)

    logger.info("Batched metrics unavailable for %s, trying individual metrics", location_name)
    payloads = []
    for metric in CORE_METRICS:
        if metric in batched.removed_metrics:
            continue
        payload = await fetch_daily_metric_series(
            location_name, metric, start_date, end_date, credentials, executor,
        )
        if payload is not None and payload.series.dated_values:
            payloads.append(payload)

    records = normalize_many(payloads, location_name)
    if records:
        return aggregate_insights(location_name, records, start_date, end_date, DataStrategy.PER_METRIC)

    logger.info("No performance data available for %s, returning zero values", location_name)
    return empty_insights(location_name, start_date, end_date)


async def fetch_search_keywords(
    location_name: str,
    credentials: Credentials,
    start_year: int,
    start_month: int,
    end_year: int,
    end_month: int,
    executor: Optional[RequestExecutor] = None,
) -> list[SearchKeyword]:
    """Monthly search-keyword impressions. Empty when the API is unavailable."""
    if (start_year, start_month) > (end_year, end_month):
        raise ValueError(f"Invalid month range: {start_year}-{start_month} to {end_year}-{end_month}")
    executor = executor or get_executor()
    location_id = location_id_from_name(location_name)
    url = f"{API_BASE}/locations/{location_id}/searchkeywords/impressions/monthly"
    params = {
        "monthlyRange.start_month.year": str(start_year),
        "monthlyRange.start_month.month": str(start_month),
        "monthlyRange.end_month.year": str(end_year),
        "monthlyRange.end_month.month": str(end_month),
    }

    response = await executor.execute("GET", url, credentials, params=params)
    failure = classify_status(response.status_code)
    if failure in (FailureClass.PERMISSION_DENIED, FailureClass.UNAVAILABLE):
        logger.warning("Search keywords API unavailable for %s (HTTP %d)", location_name, response.status_code)
        return []
    if failure is not None:
        raise UpstreamError(url, response.status_code, response.text)

    try:
        data = response.json()
    except ValueError:
        logger.warning("Search keywords response for %s was not valid JSON", location_name)
        return []
    payload = LegacyKeywordPayload.from_response(data)
    keywords = normalize_search_keywords(payload, location_name, start_year, start_month)
    logger.info("Search keywords: %d records for %s", len(keywords), location_name)
    return keywords
