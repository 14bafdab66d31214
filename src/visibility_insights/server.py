"""Visibility Insights MCP Server.

FastMCP server exposing performance insights, search keywords and the
visibility score for business locations.
Run: visibility-insights-mcp
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import AsyncIterator, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from .config import get_settings
from .core.clients import business_info, performance, reviews
from .core.errors import InsightsError
from .core.models import AggregatedInsights, Credentials, DataStrategy, ScoringMetrics, split_location_name
from .core.scoring import calculate_visibility_score, extract_scoring_metrics

logger = logging.getLogger(__name__)

READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, idempotentHint=True, openWorldHint=True)

DEFAULT_PERIOD_DAYS = 30


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Configure logging from settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    yield


mcp = FastMCP(
    "Visibility Insights",
    instructions="Ask how a business location is performing in local search: impressions, calls, website clicks, direction requests, search keywords, and a 100-point visibility score with recommendations.",
    lifespan=lifespan,
)


def _credentials(access_token: str = "") -> Credentials:
    token = access_token or get_settings().access_token
    if not token:
        raise ValueError("An access token is required. Pass access_token or set VISIBILITY_ACCESS_TOKEN.")
    return Credentials(access_token=token)


def _date_range(start_date: str, end_date: str) -> tuple[date, date]:
    """Parse ISO dates; defaults to the last 30 days ending yesterday."""
    end = date.fromisoformat(end_date) if end_date else date.today() - timedelta(days=1)
    start = date.fromisoformat(start_date) if start_date else end - timedelta(days=DEFAULT_PERIOD_DAYS - 1)
    return start, end


def _insights_summary(insights: AggregatedInsights) -> str:
    t = insights.totals
    summary = (
        f"{t.views:,} views, {t.actions:,} actions "
        f"({t.call_clicks:,} calls, {t.website_clicks:,} website clicks, {t.direction_requests:,} direction requests) "
        f"from {insights.period.start} to {insights.period.end}."
    )
    if insights.source is DataStrategy.PERMISSION_DEGRADED:
        summary += " Performance API permission denied; values are zero."
    elif insights.source is DataStrategy.EMPTY:
        summary += " No performance data was available."
    return summary


# ─── Tool 1: Performance Insights ────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def visibility_insights(
    location_name: str,
    start_date: str = "",
    end_date: str = "",
    access_token: str = "",
) -> dict:
    """Daily performance metrics and totals for a location — views, calls, website clicks, direction requests.

    Args:
        location_name: 'accounts/{accountId}/locations/{locationId}' or 'locations/{locationId}'.
        start_date: ISO date (YYYY-MM-DD). Default 30 days before end_date.
        end_date: ISO date (YYYY-MM-DD). Default yesterday.
        access_token: OAuth bearer token. Default from VISIBILITY_ACCESS_TOKEN.
    """
    try:
        credentials = _credentials(access_token)
        start, end = _date_range(start_date, end_date)
        insights = await performance.fetch_insights(location_name, start, end, credentials)
    except (InsightsError, ValueError) as exc:
        logger.warning("visibility_insights failed for %s: %s", location_name, exc)
        return {"error": str(exc), "location_name": location_name}

    return {
        "title": "Performance Insights",
        "insights": insights.model_dump(mode="json"),
        "summary": _insights_summary(insights),
    }


# ─── Tool 2: Visibility Score ────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def visibility_score(
    average_rating: float = 0,
    total_reviews: int = 0,
    recent_reviews: int = 0,
    response_rate: float = 0,
    impressions: int = 0,
    call_clicks: int = 0,
    website_clicks: int = 0,
    profile_photos: int = 0,
    recent_posts: int = 0,
    profile_completeness: float = 0,
    qa_activity: int = 0,
    bookings: Optional[int] = None,
    market_position: Optional[float] = None,
    consistency: Optional[float] = None,
    trend_direction: Optional[float] = None,
) -> dict:
    """Score local visibility (0-100) from supplied metrics, with grade and recommendations.

    Args:
        average_rating: Average star rating, 0-5.
        total_reviews: Total number of reviews.
        recent_reviews: Reviews in the last 30 days.
        response_rate: Percent of reviews with an owner reply, 0-100.
        impressions: Search and maps impressions over the period.
        call_clicks: Call button clicks.
        website_clicks: Website link clicks.
        profile_photos: Number of profile photos.
        recent_posts: Posts in the last 30 days.
        profile_completeness: Percent of profile fields filled, 0-100.
        qa_activity: Questions answered.
        bookings: Bookings, if the business takes them.
        market_position: Competitive position 0-100. Default 75.
        consistency: Performance consistency 0-100. Default 70.
        trend_direction: Trend 0-100. Default 80.
    """
    metrics = ScoringMetrics(
        average_rating=average_rating,
        total_reviews=total_reviews,
        recent_reviews=recent_reviews,
        response_rate=response_rate,
        impressions=impressions,
        call_clicks=call_clicks,
        website_clicks=website_clicks,
        profile_photos=profile_photos,
        recent_posts=recent_posts,
        profile_completeness=profile_completeness,
        qa_activity=qa_activity,
        bookings=bookings,
        market_position=market_position,
        consistency=consistency,
        trend_direction=trend_direction,
    )
    details = calculate_visibility_score(metrics)
    return {
        "title": "Visibility Score",
        "score": details.model_dump(mode="json"),
        "summary": f"Visibility score {details.breakdown.total_score}/100 ({details.grade.value}). {details.interpretation}",
    }


# ─── Tool 3: Search Keywords ─────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def visibility_search_keywords(
    location_name: str,
    start_month: str = "",
    end_month: str = "",
    access_token: str = "",
    limit: int = 50,
) -> dict:
    """Monthly search keywords that surfaced the location, ranked by impressions.

    Args:
        location_name: 'accounts/{accountId}/locations/{locationId}' or 'locations/{locationId}'.
        start_month: 'YYYY-MM'. Default two months before end_month.
        end_month: 'YYYY-MM'. Default the previous month.
        access_token: OAuth bearer token. Default from VISIBILITY_ACCESS_TOKEN.
        limit: Maximum keywords to return. Default 50.
    """
    try:
        credentials = _credentials(access_token)
        end_year, end_mon = _parse_month(end_month) if end_month else _previous_month(date.today())
        if start_month:
            start_year, start_mon = _parse_month(start_month)
        else:
            start_year, start_mon = _shift_month(end_year, end_mon, -2)
        keywords = await performance.fetch_search_keywords(
            location_name, credentials, start_year, start_mon, end_year, end_mon,
        )
    except (InsightsError, ValueError) as exc:
        logger.warning("visibility_search_keywords failed for %s: %s", location_name, exc)
        return {"error": str(exc), "location_name": location_name}

    ranked = sorted(keywords, key=lambda k: k.impressions, reverse=True)[:limit]
    return {
        "title": "Search Keywords",
        "location_name": location_name,
        "period": f"{start_year}-{start_mon:02d} to {end_year}-{end_mon:02d}",
        "keywords": [k.model_dump(mode="json") for k in ranked],
        "count": len(keywords),
        "summary": f"{len(keywords)} keyword records"
        + (f"; top keyword '{ranked[0].keyword}' with {ranked[0].impressions:,} impressions." if ranked else "."),
    }


def _parse_month(value: str) -> tuple[int, int]:
    year, _, month = value.partition("-")
    try:
        result = int(year), int(month)
    except ValueError:
        raise ValueError(f"Invalid month '{value}'. Expected YYYY-MM.") from None
    if not 1 <= result[1] <= 12:
        raise ValueError(f"Invalid month '{value}'. Expected YYYY-MM.")
    return result


def _shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def _previous_month(today: date) -> tuple[int, int]:
    return _shift_month(today.year, today.month, -1)


# ─── Tool 4: Location Report ─────────────────────────────────────────────────


@mcp.tool(annotations=READ_ONLY)
async def visibility_location_report(
    location_name: str,
    start_date: str = "",
    end_date: str = "",
    access_token: str = "",
) -> dict:
    """Full visibility report for a location — profile, reviews, posts, insights and the visibility score.

    Args:
        location_name: 'accounts/{accountId}/locations/{locationId}'.
        start_date: ISO date (YYYY-MM-DD). Default 30 days before end_date.
        end_date: ISO date (YYYY-MM-DD). Default yesterday.
        access_token: OAuth bearer token. Default from VISIBILITY_ACCESS_TOKEN.
    """
    try:
        credentials = _credentials(access_token)
        start, end = _date_range(start_date, end_date)
        split_location_name(location_name)
        results = await asyncio.gather(
            business_info.fetch_location(location_name, credentials),
            reviews.fetch_reviews(location_name, credentials),
            reviews.fetch_posts(location_name, credentials),
            performance.fetch_insights(location_name, start, end, credentials),
            return_exceptions=True,
        )
        # every fetch has settled; surface the first failure
        for result in results:
            if isinstance(result, BaseException):
                raise result
        profile, review_list, post_list, insights = results
    except (InsightsError, ValueError) as exc:
        logger.warning("visibility_location_report failed for %s: %s", location_name, exc)
        return {"error": str(exc), "location_name": location_name}

    metrics = extract_scoring_metrics([profile], review_list, post_list, [insights])
    details = calculate_visibility_score(metrics)

    return {
        "title": f"Visibility Report: {profile.name or location_name}",
        "profile": profile.model_dump(mode="json"),
        "insights": insights.model_dump(mode="json"),
        "review_count": len(review_list),
        "post_count": len(post_list),
        "metrics": metrics.model_dump(mode="json"),
        "score": details.model_dump(mode="json"),
        "summary": f"Visibility score {details.breakdown.total_score}/100 ({details.grade.value}). "
        + _insights_summary(insights),
    }


def main():
    """Entry point for the CLI command."""
    mcp.run()


if __name__ == "__main__":
    main()
