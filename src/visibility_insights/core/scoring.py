"""Local business visibility scoring engine (100-point scale).

Evaluates a location across four weighted components:
  1. Rating & reviews (30%)
  2. Performance engagement (40%)
  3. Profile completeness & activity (20%)
  4. Competitive context (10%)

Pure functions only: no I/O, no state, identical input gives identical output.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from .models import (
    AggregatedInsights,
    Grade,
    KeyRatios,
    LocationProfile,
    Post,
    Review,
    ScoringBreakdown,
    ScoringDetails,
    ScoringMetrics,
    round_half_up,
)

logger = logging.getLogger(__name__)

COMPONENT_WEIGHTS = {
    "reviews_score": 0.30,
    "performance_score": 0.40,
    "profile_score": 0.20,
    "competitive_score": 0.10,
}

# Used when no competitor data is available
DEFAULT_MARKET_POSITION = 75.0
DEFAULT_CONSISTENCY = 70.0
DEFAULT_TREND_DIRECTION = 80.0

GRADE_BANDS = [
    (95, Grade.A_PLUS),
    (90, Grade.A),
    (85, Grade.B_PLUS),
    (80, Grade.B),
    (75, Grade.C_PLUS),
    (70, Grade.C),
    (65, Grade.D_PLUS),
    (60, Grade.D),
]

PRIORITY_RECOMMENDATIONS = {
    "reviews_score": "Priority: Focus on review acquisition and management",
    "performance_score": "Priority: Optimize conversion rates and engagement metrics",
    "profile_score": "Priority: Enhance profile completeness and activity",
    "competitive_score": "Priority: Analyze competitor strategies and market positioning",
}

RECENT_WINDOW = timedelta(days=30)


def _bounded(score: float) -> int:
    return max(0, min(100, round_half_up(score)))


def score_reviews(metrics: ScoringMetrics) -> int:
    """Rating (40%), volume (25%), recency (20%) and response rate (15%)."""
    rating_score = (metrics.average_rating / 5) * 100

    n = metrics.total_reviews
    if n <= 10:
        volume_score = 20.0
    elif n <= 50:
        volume_score = 20 + ((n - 10) / 40) * 40
    elif n <= 100:
        volume_score = 60 + ((n - 50) / 50) * 20
    else:
        volume_score = 80 + min((n - 100) / 100, 1) * 20

    if metrics.recent_reviews == 0:
        recency_score = 0.0
    elif metrics.recent_reviews <= 3:
        recency_score = 50.0
    else:
        recency_score = 100.0

    response_score = min(metrics.response_rate, 100)

    return _bounded(
        rating_score * 0.40 + volume_score * 0.25 + recency_score * 0.20 + response_score * 0.15
    )


def impressions_score(impressions: float) -> float:
    """Raw impressions score on a 0-200 scale, logarithmic above 1000."""
    if impressions < 100:
        return impressions
    if impressions < 1000:
        return 100 + ((impressions - 100) / 900) * 50
    return min(150 + math.log10(impressions / 1000) * 50, 200)


def score_performance(metrics: ScoringMetrics) -> int:
    """Impressions (25%), call rate (35%), website rate (25%), bookings (15%).

    No impressions means no measurable engagement, so the component is 0.
    """
    if metrics.impressions == 0:
        return 0

    call_rate = metrics.call_clicks / metrics.impressions * 100
    call_score = min(call_rate * 50, 100)  # 2%+ = 100

    website_rate = metrics.website_clicks / metrics.impressions * 100
    website_score = min(website_rate * 33.33, 100)  # 3%+ = 100

    normalized_impressions = min(impressions_score(metrics.impressions) / 200 * 100, 100)
    bookings_score = min(metrics.bookings * 10, 100) if metrics.bookings else 0.0

    return _bounded(
        normalized_impressions * 0.25 + call_score * 0.35 + website_score * 0.25 + bookings_score * 0.15
    )


def score_profile(metrics: ScoringMetrics) -> int:
    """Photos (25%), recent posts (25%), completeness (35%), Q&A (15%)."""
    photo_score = min(metrics.profile_photos * 10, 100)
    posts_score = min(metrics.recent_posts * 25, 100)
    completeness_score = metrics.profile_completeness
    qa_score = min(metrics.qa_activity * 20, 100)
    return _bounded(photo_score * 0.25 + posts_score * 0.25 + completeness_score * 0.35 + qa_score * 0.15)


def score_competitive(metrics: ScoringMetrics) -> int:
    """Market position (40%), consistency (30%), trend (30%).

    A missing or zero input counts as no competitor data and takes the default.
    """
    market = metrics.market_position or DEFAULT_MARKET_POSITION
    consistency = metrics.consistency or DEFAULT_CONSISTENCY
    trend = metrics.trend_direction or DEFAULT_TREND_DIRECTION
    return _bounded(market * 0.40 + consistency * 0.30 + trend * 0.30)


def score_to_grade(score: int) -> Grade:
    for threshold, grade in GRADE_BANDS:
        if score >= threshold:
            return grade
    return Grade.F


def lowest_component(breakdown: ScoringBreakdown) -> str:
    """Name of the lowest-scoring component.

    The running minimum starts at reviews_score and only a strictly lower
    score replaces it, so reviews wins every tie.
    """
    lowest = "reviews_score"
    for name in ("performance_score", "profile_score", "competitive_score"):
        if getattr(breakdown, name) < getattr(breakdown, lowest):
            lowest = name
    return lowest


def interpret(score: int, breakdown: ScoringBreakdown) -> tuple[str, list[str]]:
    """Canned interpretation and recommendations for the score band."""
    if score >= 90:
        interpretation = "Excellent local visibility - your business is performing exceptionally well in local search and customer engagement."
        recommendations = [
            "Maintain current engagement strategies",
            "Continue responding to all reviews promptly",
            "Keep posting regular content to maintain momentum",
        ]
    elif score >= 80:
        interpretation = "Very good visibility - strong performance with some areas for optimization."
        recommendations = [
            "Focus on increasing review response rate",
            "Boost recent posting frequency",
            "Optimize profile completeness if below 90%",
        ]
    elif score >= 70:
        interpretation = "Good visibility with room for improvement - several optimization opportunities available."
        recommendations = [
            "Increase review volume through customer outreach",
            "Improve conversion rates from impressions to actions",
            "Enhance profile activity and completeness",
            "Develop a consistent posting schedule",
        ]
    elif score >= 60:
        interpretation = "Average visibility - needs attention to improve local search performance."
        recommendations = [
            "Prioritize customer review acquisition",
            "Improve response rates to existing reviews",
            "Increase posting frequency significantly",
            "Complete all profile information",
            "Focus on high-intent action optimization",
        ]
    else:
        interpretation = "Poor visibility - requires immediate action to improve local search presence."
        recommendations = [
            "Launch aggressive review acquisition campaign",
            "Respond to all reviews within 24 hours",
            "Post content at least 3 times per week",
            "Complete 100% of profile information",
            "Optimize for local keywords and categories",
            "Consider professional local SEO consultation",
        ]

    recommendations.append(PRIORITY_RECOMMENDATIONS[lowest_component(breakdown)])
    return interpretation, recommendations


def key_ratios(metrics: ScoringMetrics) -> KeyRatios:
    has_impressions = metrics.impressions > 0
    return KeyRatios(
        call_rate=metrics.call_clicks / metrics.impressions * 100 if has_impressions else 0.0,
        website_rate=metrics.website_clicks / metrics.impressions * 100 if has_impressions else 0.0,
        response_rate=metrics.response_rate,
        recent_review_rate=metrics.recent_reviews / metrics.total_reviews * 100 if metrics.total_reviews > 0 else 0.0,
    )


def calculate_visibility_score(metrics: ScoringMetrics) -> ScoringDetails:
    """Compute the complete visibility score report.

    Total function: every ScoringMetrics yields a valid report, since inputs
    are sanitized on construction and every division is zero-guarded.
    """
    components = {
        "reviews_score": score_reviews(metrics),
        "performance_score": score_performance(metrics),
        "profile_score": score_profile(metrics),
        "competitive_score": score_competitive(metrics),
    }
    total = _bounded(sum(components[name] * weight for name, weight in COMPONENT_WEIGHTS.items()))
    breakdown = ScoringBreakdown(total_score=total, **components)
    logger.debug("Visibility score %d from components %s", total, components)

    interpretation, recommendations = interpret(total, breakdown)
    return ScoringDetails(
        breakdown=breakdown,
        grade=score_to_grade(total),
        interpretation=interpretation,
        recommendations=recommendations,
        key_ratios=key_ratios(metrics),
    )


# ─── Extraction from fetched data ────────────────────────────────────────────


def profile_completeness(locations: Iterable[LocationProfile]) -> float:
    """Average share of filled profile fields: 20 points each for name,
    address, phone, website and categories."""
    locations = list(locations)
    if not locations:
        return 0.0
    total = 0
    for location in locations:
        total += 20 if location.name else 0
        total += 20 if location.address else 0
        total += 20 if location.phone_number else 0
        total += 20 if location.website_url else 0
        total += 20 if location.categories else 0
    return total / len(locations)


def _is_recent(timestamp: Optional[datetime], cutoff: datetime) -> bool:
    if timestamp is None:
        return False
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp >= cutoff


def extract_scoring_metrics(
    locations: list[LocationProfile],
    reviews: list[Review],
    posts: list[Post],
    insights: list[AggregatedInsights],
    now: Optional[datetime] = None,
) -> ScoringMetrics:
    """Build scoring inputs from fetched profile, review, post and insights data.

    Photo counts are not exposed by the APIs in use, so they are estimated
    at three per location. Q&A activity is not available and scores 0.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    cutoff = now - RECENT_WINDOW

    total_reviews = len(reviews)
    average_rating = sum(r.star_rating for r in reviews) / total_reviews if total_reviews else 0.0
    recent_reviews = sum(1 for r in reviews if _is_recent(r.create_time, cutoff))
    replied = sum(1 for r in reviews if r.has_reply)
    response_rate = replied / total_reviews * 100 if total_reviews else 0.0

    recent_posts = sum(1 for p in posts if _is_recent(p.create_time, cutoff))

    return ScoringMetrics(
        average_rating=average_rating,
        total_reviews=total_reviews,
        recent_reviews=recent_reviews,
        response_rate=response_rate,
        impressions=sum(i.totals.views for i in insights),
        call_clicks=sum(i.totals.call_clicks for i in insights),
        website_clicks=sum(i.totals.website_clicks for i in insights),
        profile_photos=len(locations) * 3,
        recent_posts=recent_posts,
        profile_completeness=profile_completeness(locations),
        qa_activity=0,
    )
