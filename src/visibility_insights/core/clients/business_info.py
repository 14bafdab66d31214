"""Business-information API client.

Only the profile fields that feed profile completeness are read.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import FailureClass, UpstreamError, classify_status
from ..models import Credentials, LocationProfile, location_id_from_name
from .executor import RequestExecutor, get_executor

logger = logging.getLogger(__name__)

API_BASE = "https://mybusinessbusinessinformation.googleapis.com/v1"

READ_MASK = "name,title,phoneNumbers,categories,storefrontAddress,websiteUri"


def format_address(address: Optional[dict]) -> str:
    """Single-line address from a storefrontAddress object."""
    if not address:
        return ""
    parts = list(address.get("addressLines") or [])
    for field in ("locality", "administrativeArea", "postalCode"):
        if address.get(field):
            parts.append(address[field])
    return ", ".join(p for p in parts if p)


async def fetch_location(
    location_name: str,
    credentials: Credentials,
    executor: Optional[RequestExecutor] = None,
) -> LocationProfile:
    """Fetch a single location's profile.

    A 403 or 404 yields a profile with only location_id set, so a missing
    permission scores as an empty profile instead of failing the caller.
    """
    location_id = location_id_from_name(location_name)
    executor = executor or get_executor()
    url = f"{API_BASE}/locations/{location_id}"

    response = await executor.execute("GET", url, credentials, params={"readMask": READ_MASK})
    failure = classify_status(response.status_code)
    if failure in (FailureClass.PERMISSION_DENIED, FailureClass.UNAVAILABLE):
        logger.warning("Business information not available for %s (HTTP %d)", location_name, response.status_code)
        return LocationProfile(location_id=location_name)
    if failure is not None:
        raise UpstreamError(url, response.status_code, response.text)

    data = response.json()
    primary = (data.get("categories") or {}).get("primaryCategory") or {}
    profile = LocationProfile(
        location_id=location_name,
        name=data.get("title") or "",
        address=format_address(data.get("storefrontAddress")),
        phone_number=(data.get("phoneNumbers") or {}).get("primaryPhone"),
        website_url=data.get("websiteUri"),
        categories=[primary["displayName"]] if primary.get("displayName") else [],
    )
    logger.info("Fetched location profile: %s", profile.name or location_name)
    return profile
