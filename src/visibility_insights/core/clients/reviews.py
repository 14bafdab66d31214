"""Legacy review/post API client (v4 host).

Reviews are paginated with nextPageToken. The reviews and posts endpoints
need permissions that many projects lack; 403/404 yield empty lists.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..errors import FailureClass, UpstreamError, classify_status
from ..models import Credentials, Post, Review, split_location_name
from .executor import RequestExecutor, get_executor

logger = logging.getLogger(__name__)

API_BASE = "https://mybusiness.googleapis.com/v4"

PAGE_SIZE = 50
MAX_PAGES = 200

STAR_RATINGS = {"ONE": 1, "TWO": 2, "THREE": 3, "FOUR": 4, "FIVE": 5}


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_star_rating(raw) -> int:
    """Star rating from 'FOUR', '4' or 4. Unknown values are 0."""
    if isinstance(raw, bool):
        return 0
    if isinstance(raw, (int, float)):
        rating = int(raw)
    elif isinstance(raw, str):
        rating = STAR_RATINGS.get(raw.strip().upper())
        if rating is None:
            try:
                rating = int(raw)
            except ValueError:
                rating = 0
    else:
        rating = 0
    return rating if 0 <= rating <= 5 else 0


def _parse_review(review: dict, location_name: str) -> Review:
    reply = review.get("reviewReply") or review.get("response")
    reviewer = review.get("reviewer") or {}
    return Review(
        review_id=review.get("name") or review.get("reviewId") or "",
        location_id=location_name,
        star_rating=_parse_star_rating(review.get("starRating")),
        comment=review.get("comment") or "",
        reviewer_name=reviewer.get("displayName") or "Anonymous",
        create_time=_parse_timestamp(review.get("createTime")),
        update_time=_parse_timestamp(review.get("updateTime")),
        reply_comment=(reply.get("comment") or "") if reply else None,
    )


async def fetch_reviews(
    location_name: str,
    credentials: Credentials,
    executor: Optional[RequestExecutor] = None,
) -> list[Review]:
    """Fetch every review for a location, following pagination."""
    account_id, location_id = split_location_name(location_name)
    executor = executor or get_executor()
    url = f"{API_BASE}/accounts/{account_id}/locations/{location_id}/reviews"

    reviews: list[Review] = []
    page_token: Optional[str] = None
    for page in range(1, MAX_PAGES + 1):
        params = {"pageSize": str(PAGE_SIZE)}
        if page_token:
            params["pageToken"] = page_token

        response = await executor.execute("GET", url, credentials, params=params)
        failure = classify_status(response.status_code)
        if failure in (FailureClass.PERMISSION_DENIED, FailureClass.UNAVAILABLE):
            logger.warning(
                "Reviews API not available for %s (HTTP %d). It requires special permissions.",
                location_name, response.status_code,
            )
            return []
        if failure is not None:
            raise UpstreamError(url, response.status_code, response.text)

        data = response.json()
        page_reviews = data.get("reviews") or []
        reviews.extend(_parse_review(r, location_name) for r in page_reviews)
        logger.debug("Reviews page %d: %d reviews (total %d)", page, len(page_reviews), len(reviews))

        page_token = data.get("nextPageToken") or data.get("nextToken")
        if not page_token:
            break
    else:
        logger.warning("Stopped paginating reviews for %s after %d pages", location_name, MAX_PAGES)

    logger.info("Fetched %d reviews for %s", len(reviews), location_name)
    return reviews


async def fetch_posts(
    location_name: str,
    credentials: Credentials,
    executor: Optional[RequestExecutor] = None,
) -> list[Post]:
    """Fetch local posts for a location."""
    account_id, location_id = split_location_name(location_name)
    executor = executor or get_executor()
    url = f"{API_BASE}/accounts/{account_id}/locations/{location_id}/localPosts"

    response = await executor.execute("GET", url, credentials)
    failure = classify_status(response.status_code)
    if failure in (FailureClass.PERMISSION_DENIED, FailureClass.UNAVAILABLE):
        logger.warning("Posts API not available for %s (HTTP %d)", location_name, response.status_code)
        return []
    if failure is not None:
        raise UpstreamError(url, response.status_code, response.text)

    posts = []
    for post in response.json().get("localPosts") or []:
        posts.append(Post(
            post_id=post.get("name") or "",
            location_id=location_name,
            summary=post.get("summary") or "",
            topic_type=post.get("topicType"),
            state=post.get("state"),
            create_time=_parse_timestamp(post.get("createTime")),
        ))
    return posts
