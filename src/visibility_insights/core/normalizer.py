"""Daily metric normalizer.

Converts the three upstream payload variants into canonical
DailyMetricRecord lists. Records for the same (location, date) are merged
field by field, never replaced wholesale.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable, Iterable

from .models import (
    BatchedMetricsPayload,
    DailyMetricRecord,
    DateKey,
    LegacyKeywordPayload,
    MetricSeries,
    SearchKeyword,
    SingleMetricPayload,
    UpstreamPayload,
    days_in_range,
    parse_metric_value,
)

logger = logging.getLogger(__name__)

METRIC_FIELD_MAP: dict[str, str] = {
    "WEBSITE_CLICKS": "website_clicks",
    "CALL_CLICKS": "call_clicks",
    "BUSINESS_DIRECTION_REQUESTS": "direction_requests",
    "BUSINESS_BOOKINGS": "business_bookings",
    "BUSINESS_FOOD_ORDERS": "business_food_orders",
    "BUSINESS_CONVERSATIONS": "business_conversations",
    "BUSINESS_IMPRESSIONS_DESKTOP_SEARCH": "desktop_search_impressions",
    "BUSINESS_IMPRESSIONS_MOBILE_SEARCH": "mobile_search_impressions",
    "BUSINESS_IMPRESSIONS_DESKTOP_MAPS": "desktop_maps_impressions",
    "BUSINESS_IMPRESSIONS_MOBILE_MAPS": "mobile_maps_impressions",
}

SEARCH_KEYWORD_FIELD = "search_keyword_impressions"


def canonical_metric_name(metric_type: str) -> str:
    """Canonical field for an upstream metric id; unknown ids are lower-cased."""
    return METRIC_FIELD_MAP.get(metric_type, metric_type.lower())


def sanitize_metric_value(raw: Any, metric: str = "") -> float:
    """Parse a raw value; corrupt or out-of-range values become 0 with a warning."""
    value = parse_metric_value(raw)
    if value is None:
        logger.warning("Invalid or out-of-range value for %s: %r, using 0", metric or "metric", raw)
        return 0.0
    return value


def merge_records(records: Iterable[DailyMetricRecord]) -> list[DailyMetricRecord]:
    """Union the metric maps of records sharing (location_id, date), sorted by date."""
    merged: dict[tuple[str, DateKey], DailyMetricRecord] = {}
    for record in records:
        existing = merged.get(record.key)
        if existing is None:
            merged[record.key] = DailyMetricRecord(
                location_id=record.location_id,
                date=record.date,
                metrics=dict(record.metrics),
            )
        else:
            existing.metrics.update(record.metrics)
    return sorted(merged.values(), key=lambda r: (r.date.sort_key, r.location_id))


def _series_records(series: MetricSeries, location_id: str) -> list[DailyMetricRecord]:
    field = canonical_metric_name(series.metric_type)
    return [
        DailyMetricRecord(
            location_id=location_id,
            date=dv.date,
            metrics={field: sanitize_metric_value(dv.value, series.metric_type)},
        )
        for dv in series.sorted_values()
    ]


def _normalize_batched(payload: BatchedMetricsPayload, location_id: str) -> list[DailyMetricRecord]:
    records: list[DailyMetricRecord] = []
    for series in payload.series:
        records.extend(_series_records(series, location_id))
    return merge_records(records)


def _normalize_single(payload: SingleMetricPayload, location_id: str) -> list[DailyMetricRecord]:
    return merge_records(_series_records(payload.series, location_id))


def _keyword_count_value(value: Any, threshold: Any, keyword: str) -> tuple[float, bool]:
    if value not in (None, ""):
        return sanitize_metric_value(value, keyword), False
    if threshold not in (None, ""):
        return sanitize_metric_value(threshold, keyword), True
    return 0.0, False


def _normalize_legacy_keyword(payload: LegacyKeywordPayload, location_id: str) -> list[DailyMetricRecord]:
    # Keyword counts are monthly; each month is bucketed on its first day.
    totals: dict[DateKey, float] = {}
    for count in payload.counts:
        if count.year is None or count.month is None:
            continue
        try:
            key = DateKey(year=count.year, month=count.month, day=1)
        except ValueError:
            logger.warning("Skipping keyword %r with invalid month %s-%s", count.keyword, count.year, count.month)
            continue
        value, _ = _keyword_count_value(count.value, count.threshold, count.keyword)
        totals[key] = totals.get(key, 0.0) + value
    return merge_records(
        DailyMetricRecord(location_id=location_id, date=key, metrics={SEARCH_KEYWORD_FIELD: total})
        for key, total in totals.items()
    )


_NORMALIZERS: dict[str, Callable[[Any, str], list[DailyMetricRecord]]] = {
    "batched": _normalize_batched,
    "single": _normalize_single,
    "legacy_keyword": _normalize_legacy_keyword,
}


def normalize(payload: UpstreamPayload, location_id: str) -> list[DailyMetricRecord]:
    """Normalize one upstream payload into daily records ascending by date."""
    return _NORMALIZERS[payload.kind](payload, location_id)


def normalize_many(payloads: Iterable[UpstreamPayload], location_id: str) -> list[DailyMetricRecord]:
    """Normalize several partial payloads and merge them by date."""
    records: list[DailyMetricRecord] = []
    for payload in payloads:
        records.extend(normalize(payload, location_id))
    return merge_records(records)


def normalize_search_keywords(
    payload: LegacyKeywordPayload,
    location_id: str,
    default_year: int,
    default_month: int,
) -> list[SearchKeyword]:
    """Per-keyword rows of a legacy keyword payload.

    Rows without their own month are attributed to the start of the
    requested range.
    """
    keywords = []
    for count in payload.counts:
        impressions, is_threshold = _keyword_count_value(count.value, count.threshold, count.keyword)
        clicks = sanitize_metric_value(count.clicks, count.keyword) if count.clicks is not None else 0.0
        position = parse_metric_value(count.average_position) or 0.0
        keywords.append(SearchKeyword(
            location_id=location_id,
            keyword=count.keyword,
            impressions=int(impressions),
            year=count.year or default_year,
            month=count.month or default_month,
            is_threshold=is_threshold,
            clicks=int(clicks),
            ctr=clicks / impressions if impressions > 0 else 0.0,
            position=position,
        ))
    return keywords


def zero_filled_records(
    location_id: str,
    start: date,
    end: date,
    metric_types: Iterable[str],
) -> list[DailyMetricRecord]:
    """One all-zero record per day in range for the given metrics."""
    fields = [canonical_metric_name(m) for m in metric_types]
    return [
        DailyMetricRecord(location_id=location_id, date=day, metrics={f: 0.0 for f in fields})
        for day in days_in_range(start, end)
    ]
