"""Tests for the performance client's endpoint fallback chain.

All HTTP calls are mocked; handlers route on the endpoint in the URL path.
"""

from __future__ import annotations

from datetime import date

import httpx
import pytest

from conftest import LOCATION, RecordingHandler, batched_response, make_executor, series_response
from visibility_insights.core.clients.performance import (
    CORE_METRICS,
    fetch_insights,
    fetch_multi_daily_metrics,
    fetch_search_keywords,
    unsupported_metrics,
)
from visibility_insights.core.errors import RetryExhaustedError, UpstreamError
from visibility_insights.core.models import DataStrategy

START = date(2024, 1, 1)
END = date(2024, 1, 3)


def _is_batched(request: httpx.Request) -> bool:
    return "fetchMultiDailyMetricsTimeSeries" in request.url.path


def _is_single(request: httpx.Request) -> bool:
    return "getDailyMetricsTimeSeries" in request.url.path


class TestBatchedStrategy:
    async def test_batched_success(self, credentials):
        body = batched_response({
            "CALL_CLICKS": {"2024-01-01": "3", "2024-01-02": "4"},
            "BUSINESS_IMPRESSIONS_MOBILE_MAPS": {"2024-01-01": "100", "2024-01-02": "50"},
        })
        handler = RecordingHandler(lambda request: httpx.Response(200, json=body))
        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(handler))

        assert insights.source is DataStrategy.BATCHED
        assert insights.totals.call_clicks == 7
        assert insights.totals.mobile_maps_impressions == 150
        assert insights.totals.views == 150
        assert insights.totals.actions == 7
        assert len(handler.requests) == 1
        assert handler.requests[0].url.params.get_list("dailyMetrics") == CORE_METRICS
        assert handler.requests[0].url.params["dailyRange.start_date.day"] == "1"

    async def test_permission_denied_degrades_to_zero_values(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(403, json={"error": "forbidden"}))
        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(handler))

        assert insights.source is DataStrategy.PERMISSION_DEGRADED
        assert len(insights.daily_metrics) == 3
        assert all(set(r.metrics.values()) == {0.0} for r in insights.daily_metrics)
        assert insights.totals.views == 0
        assert insights.totals.actions == 0
        # no per-metric fallback after a permission denial
        assert len(handler.requests) == 1

    async def test_unsupported_metric_is_removed_and_retried(self, credentials):
        body = batched_response({"CALL_CLICKS": {"2024-01-01": "2"}})

        def handler(request):
            requested = request.url.params.get_list("dailyMetrics")
            if "BUSINESS_IMPRESSIONS_DESKTOP_MAPS" in requested:
                return httpx.Response(400, text="Invalid metric: BUSINESS_IMPRESSIONS_DESKTOP_MAPS is not supported")
            return httpx.Response(200, json=body)

        recorder = RecordingHandler(handler)
        result = await fetch_multi_daily_metrics(LOCATION, CORE_METRICS, START, END, credentials, make_executor(recorder))

        assert result.removed_metrics == ["BUSINESS_IMPRESSIONS_DESKTOP_MAPS"]
        assert len(recorder.requests) == 2
        assert "BUSINESS_IMPRESSIONS_DESKTOP_MAPS" not in recorder.requests[1].url.params.get_list("dailyMetrics")
        assert result.records[0].metrics == {"call_clicks": 2.0}

    async def test_shrink_loop_terminates_when_every_metric_is_rejected(self, credentials):
        def handler(request):
            if _is_batched(request):
                first = request.url.params.get_list("dailyMetrics")[0]
                return httpx.Response(400, text=f"Unsupported metric {first}")
            return httpx.Response(500)

        recorder = RecordingHandler(handler)
        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(recorder))

        # one request per removed metric, then no per-metric calls for removed metrics
        assert len(recorder.requests) == len(CORE_METRICS)
        assert insights.source is DataStrategy.EMPTY
        assert insights.totals.views == 0

    async def test_400_without_named_metric_falls_through(self, credentials):
        def handler(request):
            if _is_batched(request):
                return httpx.Response(400, text="Request contains an invalid argument.")
            return httpx.Response(404)

        recorder = RecordingHandler(handler)
        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(recorder))

        assert insights.source is DataStrategy.EMPTY
        assert sum(1 for r in recorder.requests if _is_batched(r)) == 1
        assert sum(1 for r in recorder.requests if _is_single(r)) == len(CORE_METRICS)


class TestPerMetricFallback:
    async def test_404_falls_back_to_single_metric_endpoint(self, credentials):
        def handler(request):
            if _is_batched(request):
                return httpx.Response(404)
            metric = request.url.params["dailyMetric"]
            if metric == "CALL_CLICKS":
                return httpx.Response(200, json=series_response(metric, {"2024-01-01": "5", "2024-01-02": "1"}))
            if metric == "WEBSITE_CLICKS":
                return httpx.Response(200, json=series_response(metric, {"2024-01-02": "8"}))
            return httpx.Response(404)

        recorder = RecordingHandler(handler)
        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(recorder))

        assert insights.source is DataStrategy.PER_METRIC
        assert insights.totals.call_clicks == 6
        assert insights.totals.website_clicks == 8
        assert insights.totals.actions == 14
        jan_2 = [r for r in insights.daily_metrics if r.date.day == 2][0]
        assert jan_2.metrics == {"call_clicks": 1.0, "website_clicks": 8.0}
        assert [r.url.params["dailyMetric"] for r in recorder.requests if _is_single(r)] == CORE_METRICS

    async def test_all_strategies_empty_returns_zeroed_insights(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(404))
        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(handler))

        assert insights.source is DataStrategy.EMPTY
        assert insights.daily_metrics == []
        assert insights.totals.model_dump() == dict.fromkeys(insights.totals.model_dump(), 0)

    async def test_empty_batched_body_uses_per_metric_path(self, credentials):
        def handler(request):
            if _is_batched(request):
                return httpx.Response(200, json={})
            return httpx.Response(200, json={"timeSeries": {}})

        insights = await fetch_insights(LOCATION, START, END, credentials, make_executor(handler))
        assert insights.source is DataStrategy.EMPTY


class TestUnrecoverableErrors:
    async def test_retry_exhaustion_propagates(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(503))
        with pytest.raises(RetryExhaustedError):
            await fetch_insights(LOCATION, START, END, credentials, make_executor(handler, max_attempts=2))
        assert len(handler.requests) == 2

    async def test_unexpected_status_raises_upstream_error(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(409, text="conflict"))
        with pytest.raises(UpstreamError) as exc_info:
            await fetch_insights(LOCATION, START, END, credentials, make_executor(handler))
        assert exc_info.value.status_code == 409

    async def test_reversed_range_is_rejected(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(200, json={}))
        with pytest.raises(ValueError):
            await fetch_insights(LOCATION, END, START, credentials, make_executor(handler))
        assert handler.requests == []

    async def test_malformed_location_is_rejected(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(200, json={}))
        with pytest.raises(ValueError):
            await fetch_insights("accounts/1/stores/2", START, END, credentials, make_executor(handler))


def test_unsupported_metrics_matches_whole_names():
    text = "Metric CALL_CLICKS is not available"
    assert unsupported_metrics(text, ["WEBSITE_CLICKS", "CALL_CLICKS"]) == ["CALL_CLICKS"]


class TestSearchKeywords:
    async def test_monthly_keywords(self, credentials):
        body = {
            "searchKeywordsCounts": [
                {
                    "searchKeyword": "coffee near me",
                    "monthlySearchCounts": [
                        {"month": {"year": 2024, "month": 1}, "searchCount": "120", "clicks": "12"},
                        {"month": {"year": 2024, "month": 2}, "searchCount": "80"},
                    ],
                },
                {"searchKeyword": "espresso", "insightsValue": {"threshold": "15"}},
            ]
        }
        handler = RecordingHandler(lambda request: httpx.Response(200, json=body))
        keywords = await fetch_search_keywords(LOCATION, credentials, 2024, 1, 2024, 2, make_executor(handler))

        assert [(k.keyword, k.month, k.impressions) for k in keywords] == [
            ("coffee near me", 1, 120),
            ("coffee near me", 2, 80),
            ("espresso", 1, 15),
        ]
        assert keywords[0].ctr == pytest.approx(0.1)
        assert keywords[2].is_threshold is True
        assert handler.requests[0].url.params["monthlyRange.end_month.month"] == "2"

    @pytest.mark.parametrize("status", [403, 404])
    async def test_unavailable_returns_empty(self, credentials, status):
        handler = RecordingHandler(lambda request: httpx.Response(status))
        assert await fetch_search_keywords(LOCATION, credentials, 2024, 1, 2024, 2, make_executor(handler)) == []

    async def test_invalid_json_returns_empty(self, credentials):
        handler = RecordingHandler(lambda request: httpx.Response(200, text="<html>not json</html>"))
        assert await fetch_search_keywords(LOCATION, credentials, 2024, 1, 2024, 2, make_executor(handler)) == []
