"""Pydantic data models — the shared business objects.

The acquisition pipeline, the scoring engine and the MCP server all use
these models as the common interface. Upstream payloads are modeled as a
tagged union so each response shape gets its own normalizer.
"""

from __future__ import annotations

import math
from datetime import date as dt_date
from datetime import datetime, timedelta
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_METRIC_VALUE = 1_000_000


def parse_metric_value(raw: Any) -> Optional[float]:
    """Parse a raw upstream value into a bounded number.

    Returns None when the value is not numeric, is NaN/infinite, negative or
    larger than MAX_METRIC_VALUE. Missing values (None, "") parse as 0.
    """
    if raw is None or raw == "":
        return 0.0
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    if value < 0 or value > MAX_METRIC_VALUE:
        return None
    return value


def round_half_up(value: float) -> int:
    """Round .5 upwards, unlike Python's round-half-to-even."""
    return int(math.floor(value + 0.5))


class DataStrategy(str, Enum):
    """Which acquisition strategy produced an insights result."""

    BATCHED = "batched"
    PER_METRIC = "per_metric"
    PERMISSION_DEGRADED = "permission_degraded"
    EMPTY = "empty"


class Grade(str, Enum):
    """Letter bands for the visibility score."""

    A_PLUS = "A+"
    A = "A"
    B_PLUS = "B+"
    B = "B"
    C_PLUS = "C+"
    C = "C"
    D_PLUS = "D+"
    D = "D"
    F = "F"


class Credentials(BaseModel):
    """Bearer credential supplied by the caller. Only access_token is read."""

    access_token: str = ""


def location_id_from_name(location_name: str) -> str:
    """Extract the location id from 'accounts/{a}/locations/{l}', 'locations/{l}' or a bare id."""
    parts = location_name.strip().strip("/").split("/")
    if len(parts) == 4 and parts[0] == "accounts" and parts[2] == "locations" and parts[1] and parts[3]:
        return parts[3]
    if len(parts) == 2 and parts[0] == "locations" and parts[1]:
        return parts[1]
    if len(parts) == 1 and parts[0]:
        return parts[0]
    raise ValueError(
        f"Invalid location name format: {location_name}. "
        "Expected accounts/{accountId}/locations/{locationId}"
    )


def split_location_name(location_name: str) -> tuple[str, str]:
    """(account_id, location_id) from a full 'accounts/{a}/locations/{l}' name."""
    parts = location_name.strip().strip("/").split("/")
    if len(parts) != 4 or parts[0] != "accounts" or parts[2] != "locations" or not parts[1] or not parts[3]:
        raise ValueError(
            f"Invalid location name format: {location_name}. "
            "Expected accounts/{accountId}/locations/{locationId}"
        )
    return parts[1], parts[3]


class DateKey(BaseModel):
    """Calendar date without timezone, the identity key of a daily record."""

    model_config = ConfigDict(frozen=True)

    year: int
    month: int
    day: int

    @model_validator(mode="after")
    def _check_calendar_date(self) -> DateKey:
        self.to_date()
        return self

    @classmethod
    def from_date(cls, value: dt_date) -> DateKey:
        return cls(year=value.year, month=value.month, day=value.day)

    def to_date(self) -> dt_date:
        return dt_date(self.year, self.month, self.day)

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.year, self.month, self.day)

    def isoformat(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"


def days_in_range(start: dt_date, end: dt_date) -> list[DateKey]:
    """Every calendar day from start to end, inclusive."""
    days = []
    current = start
    while current <= end:
        days.append(DateKey.from_date(current))
        current += timedelta(days=1)
    return days


class DailyMetricRecord(BaseModel):
    """Canonical metrics for one location on one day."""

    location_id: str
    date: DateKey
    metrics: dict[str, float] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, DateKey]:
        return (self.location_id, self.date)


class DatedValue(BaseModel):
    """One raw observation. The value is kept as sent by the upstream API."""

    date: DateKey
    value: Any = None


class MetricSeries(BaseModel):
    """One upstream metric's raw time series, ascending by date."""

    metric_type: str
    dated_values: list[DatedValue] = Field(default_factory=list)

    def sorted_values(self) -> list[DatedValue]:
        return sorted(self.dated_values, key=lambda v: v.date.sort_key)


# ─── Upstream payload variants ───────────────────────────────────────────────


class BatchedMetricsPayload(BaseModel):
    """Response of the batched multi-metric time-series endpoint."""

    kind: Literal["batched"] = "batched"
    series: list[MetricSeries] = Field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict) -> BatchedMetricsPayload:
        series = []
        for multi in data.get("multiDailyMetricTimeSeries") or []:
            for item in multi.get("dailyMetricTimeSeries") or []:
                metric_type = item.get("dailyMetric")
                if not metric_type:
                    continue
                series.append(MetricSeries(
                    metric_type=metric_type,
                    dated_values=_dated_values(item.get("timeSeries") or {}),
                ))
        return cls(series=series)


class SingleMetricPayload(BaseModel):
    """Response of the single-metric time-series endpoint."""

    kind: Literal["single"] = "single"
    series: MetricSeries

    @classmethod
    def from_response(cls, metric_type: str, data: dict) -> SingleMetricPayload:
        return cls(series=MetricSeries(
            metric_type=metric_type,
            dated_values=_dated_values(data.get("timeSeries") or {}),
        ))


class KeywordCount(BaseModel):
    """One keyword row of the legacy keyword response."""

    keyword: str
    year: Optional[int] = None
    month: Optional[int] = None
    value: Any = None
    threshold: Any = None
    clicks: Any = None
    average_position: Any = None


class LegacyKeywordPayload(BaseModel):
    """Legacy keyword response: counts are exact values or lower-bound thresholds."""

    kind: Literal["legacy_keyword"] = "legacy_keyword"
    counts: list[KeywordCount] = Field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict) -> LegacyKeywordPayload:
        counts = []
        for item in data.get("searchKeywordsCounts") or []:
            keyword = item.get("searchKeyword")
            if not keyword:
                continue
            monthly = item.get("monthlySearchCounts")
            if isinstance(monthly, list):
                for entry in monthly:
                    month = entry.get("month") or {}
                    counts.append(KeywordCount(
                        keyword=keyword,
                        year=month.get("year"),
                        month=month.get("month"),
                        value=entry.get("searchCount"),
                        clicks=entry.get("clicks"),
                        average_position=entry.get("averagePosition"),
                    ))
            elif isinstance(item.get("insightsValue"), dict):
                insights_value = item["insightsValue"]
                counts.append(KeywordCount(
                    keyword=keyword,
                    value=insights_value.get("value"),
                    threshold=insights_value.get("threshold"),
                ))
        return cls(counts=counts)


UpstreamPayload = Annotated[
    Union[BatchedMetricsPayload, SingleMetricPayload, LegacyKeywordPayload],
    Field(discriminator="kind"),
]


def _dated_values(time_series: dict) -> list[DatedValue]:
    values = []
    for dv in time_series.get("datedValues") or []:
        raw_date = dv.get("date") or {}
        try:
            key = DateKey(year=raw_date["year"], month=raw_date["month"], day=raw_date["day"])
        except (KeyError, TypeError, ValueError):
            continue
        values.append(DatedValue(date=key, value=dv.get("value")))
    return values


# ─── Aggregated insights ─────────────────────────────────────────────────────


class InsightsPeriod(BaseModel):
    start: dt_date
    end: dt_date


class InsightsTotals(BaseModel):
    """Period totals. views and actions are derived from the channels."""

    views: int = 0
    actions: int = 0
    call_clicks: int = 0
    website_clicks: int = 0
    direction_requests: int = 0
    desktop_search_impressions: int = 0
    mobile_search_impressions: int = 0
    desktop_maps_impressions: int = 0
    mobile_maps_impressions: int = 0


class AggregatedInsights(BaseModel):
    """Best-available insights for a location and period. Never None."""

    location_id: str
    period: InsightsPeriod
    totals: InsightsTotals = Field(default_factory=InsightsTotals)
    daily_metrics: list[DailyMetricRecord] = Field(default_factory=list)
    source: DataStrategy = DataStrategy.EMPTY


class SearchKeyword(BaseModel):
    """Monthly search impressions for one keyword."""

    location_id: str
    keyword: str
    impressions: int
    year: int
    month: int
    is_threshold: bool = Field(False, description="True when impressions is a lower bound")
    clicks: int = 0
    ctr: float = 0.0
    position: float = 0.0


# ─── Review / profile side ───────────────────────────────────────────────────


class Review(BaseModel):
    """A review from the legacy review host."""

    review_id: str
    location_id: str
    star_rating: int = Field(0, ge=0, le=5)
    comment: str = ""
    reviewer_name: str = "Anonymous"
    create_time: Optional[datetime] = None
    update_time: Optional[datetime] = None
    reply_comment: Optional[str] = None

    @property
    def has_reply(self) -> bool:
        return self.reply_comment is not None


class Post(BaseModel):
    """A local post from the legacy post host."""

    post_id: str
    location_id: str
    summary: str = ""
    topic_type: Optional[str] = None
    state: Optional[str] = None
    create_time: Optional[datetime] = None


class LocationProfile(BaseModel):
    """The profile fields that feed profile completeness."""

    location_id: str
    name: str = ""
    address: str = ""
    phone_number: Optional[str] = None
    website_url: Optional[str] = None
    categories: list[str] = Field(default_factory=list)


# ─── Scoring ─────────────────────────────────────────────────────────────────

_SCORE_CAPPED_FIELDS = {
    "average_rating": 5.0,
    "profile_completeness": 100.0,
    "market_position": 100.0,
    "consistency": 100.0,
    "trend_direction": 100.0,
}

_OPTIONAL_FIELDS = ("bookings", "market_position", "consistency", "trend_direction")


class ScoringMetrics(BaseModel):
    """Inputs of the visibility score.

    Every number is sanitized on construction: anything non-numeric, NaN,
    negative or above MAX_METRIC_VALUE becomes 0, so scoring never sees
    corrupt input. The optional fields become None instead, so the scorer
    falls back to its defaults.
    """

    average_rating: float = 0.0
    total_reviews: float = 0.0
    recent_reviews: float = Field(0.0, description="Reviews in the last 30 days")
    response_rate: float = Field(0.0, description="Percent of reviews with an owner reply")
    impressions: float = 0.0
    call_clicks: float = 0.0
    website_clicks: float = 0.0
    bookings: Optional[float] = None
    profile_photos: float = 0.0
    recent_posts: float = Field(0.0, description="Posts in the last 30 days")
    profile_completeness: float = Field(0.0, description="0-100, share of profile fields filled")
    qa_activity: float = Field(0.0, description="Questions answered")
    market_position: Optional[float] = None
    consistency: Optional[float] = None
    trend_direction: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def _sanitize(cls, value: Any, info) -> Any:
        optional = info.field_name in _OPTIONAL_FIELDS
        if value is None and optional:
            return None
        parsed = parse_metric_value(value)
        if parsed is None:
            return None if optional else 0.0
        cap = _SCORE_CAPPED_FIELDS.get(info.field_name)
        if cap is not None:
            parsed = min(parsed, cap)
        return parsed


class ScoringBreakdown(BaseModel):
    reviews_score: int = Field(ge=0, le=100)
    performance_score: int = Field(ge=0, le=100)
    profile_score: int = Field(ge=0, le=100)
    competitive_score: int = Field(ge=0, le=100)
    total_score: int = Field(ge=0, le=100)


class KeyRatios(BaseModel):
    call_rate: float = 0.0
    website_rate: float = 0.0
    response_rate: float = 0.0
    recent_review_rate: float = 0.0


class ScoringDetails(BaseModel):
    """Derived score report. Recomputed per request, never cached."""

    breakdown: ScoringBreakdown
    grade: Grade
    interpretation: str
    recommendations: list[str]
    key_ratios: KeyRatios
