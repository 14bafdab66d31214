"""Metrics aggregator: daily records to period totals."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Iterable

from .models import (
    AggregatedInsights,
    DailyMetricRecord,
    DataStrategy,
    InsightsPeriod,
    InsightsTotals,
    parse_metric_value,
    round_half_up,
)

logger = logging.getLogger(__name__)

CHANNEL_FIELDS = [
    "desktop_search_impressions",
    "mobile_search_impressions",
    "desktop_maps_impressions",
    "mobile_maps_impressions",
]
ACTION_FIELDS = ["website_clicks", "call_clicks", "direction_requests"]


def safe_add(total: float, value: Any) -> float:
    """Add a term unless it is non-numeric, negative or out of range."""
    parsed = parse_metric_value(value)
    if parsed is None:
        logger.warning("Skipping invalid metric term during aggregation: %r", value)
        return total
    return total + parsed


def aggregate_insights(
    location_id: str,
    records: Iterable[DailyMetricRecord],
    start: date,
    end: date,
    source: DataStrategy = DataStrategy.BATCHED,
) -> AggregatedInsights:
    daily = list(records)
    sums = {field: 0.0 for field in CHANNEL_FIELDS + ACTION_FIELDS}
    for record in daily:
        for field in sums:
            sums[field] = safe_add(sums[field], record.metrics.get(field))

    totals = {field: round_half_up(value) for field, value in sums.items()}
    totals["views"] = sum(totals[f] for f in CHANNEL_FIELDS)
    totals["actions"] = sum(totals[f] for f in ACTION_FIELDS)

    insights = AggregatedInsights(
        location_id=location_id,
        period=InsightsPeriod(start=start, end=end),
        totals=InsightsTotals(**totals),
        daily_metrics=daily,
        source=source,
    )
    logger.info(
        "Insights aggregated for %s (%s): views=%d actions=%d over %d days",
        location_id, source.value, insights.totals.views, insights.totals.actions, len(daily),
    )
    return insights


def empty_insights(location_id: str, start: date, end: date) -> AggregatedInsights:
    """Fully zeroed insights for a period with no data."""
    return AggregatedInsights(
        location_id=location_id,
        period=InsightsPeriod(start=start, end=end),
        source=DataStrategy.EMPTY,
    )
