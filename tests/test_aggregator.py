"""Tests for visibility_insights.core.aggregator."""

from __future__ import annotations

from datetime import date

from visibility_insights.core.aggregator import aggregate_insights, empty_insights, safe_add
from visibility_insights.core.models import DailyMetricRecord, DataStrategy, DateKey

LOCATION = "locations/222"


def _record(day: int, **metrics: float) -> DailyMetricRecord:
    return DailyMetricRecord(location_id=LOCATION, date=DateKey(year=2024, month=5, day=day), metrics=metrics)


def test_views_and_actions_are_channel_sums():
    records = [
        _record(1, desktop_search_impressions=10, mobile_search_impressions=20, call_clicks=2),
        _record(2, desktop_maps_impressions=5, mobile_maps_impressions=15, website_clicks=3, direction_requests=4),
    ]
    insights = aggregate_insights(LOCATION, records, date(2024, 5, 1), date(2024, 5, 2))
    totals = insights.totals

    assert totals.views == 50
    assert totals.actions == 9
    assert totals.call_clicks == 2
    assert totals.direction_requests == 4
    assert insights.source is DataStrategy.BATCHED
    assert len(insights.daily_metrics) == 2


def test_invalid_terms_are_skipped():
    records = [_record(1, call_clicks=-3.0), _record(2, call_clicks=4.0), _record(3, call_clicks=5_000_000.0)]
    insights = aggregate_insights(LOCATION, records, date(2024, 5, 1), date(2024, 5, 3))

    assert insights.totals.call_clicks == 4


def test_safe_add():
    assert safe_add(1.0, "2") == 3.0
    assert safe_add(1.0, "abc") == 1.0
    assert safe_add(1.0, None) == 1.0
    assert safe_add(1.0, -1) == 1.0


def test_no_records_gives_zero_totals():
    insights = aggregate_insights(LOCATION, [], date(2024, 5, 1), date(2024, 5, 31), DataStrategy.PER_METRIC)

    assert insights.totals.views == 0
    assert insights.totals.actions == 0
    assert insights.source is DataStrategy.PER_METRIC


def test_empty_insights():
    insights = empty_insights(LOCATION, date(2024, 5, 1), date(2024, 5, 31))

    assert insights.source is DataStrategy.EMPTY
    assert insights.daily_metrics == []
    assert insights.period.end == date(2024, 5, 31)


def test_totals_round_half_up():
    records = [_record(1, call_clicks=1.25, website_clicks=0.5), _record(2, call_clicks=1.25)]
    totals = aggregate_insights(LOCATION, records, date(2024, 5, 1), date(2024, 5, 2)).totals

    assert totals.call_clicks == 3
    assert totals.website_clicks == 1
    assert totals.actions == 4
