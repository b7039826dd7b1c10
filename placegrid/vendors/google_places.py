"""Client utilities for the Google Places Text Search API."""

import logging
from typing import Any, Dict, Optional

import requests

from placegrid.core.errors import UpstreamError
from placegrid.core.geo import Viewport

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
_FIELD_MASK = ",".join(
    (
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.rating",
        "places.userRatingCount",
        "places.types",
        "places.businessStatus",
        "places.websiteUri",
        "places.internationalPhoneNumber",
        "places.nationalPhoneNumber",
        "places.googleMapsUri",
        "nextPageToken",
    )
)
# Raw bodies attached to errors are truncated to keep logs readable.
_MAX_BODY_CHARS = 2000


def build_search_body(
    query: str,
    viewport: Viewport,
    language: str,
    region: Optional[str] = None,
    page_size: int = 20,
    page_token: Optional[str] = None,
) -> Dict[str, Any]:
    """Request body for one page; a continuation page repeats every field of the first call."""
    body: Dict[str, Any] = {
        "textQuery": query,
        "languageCode": language,
        "pageSize": page_size,
        "locationRestriction": {
            "rectangle": {
                "low": {"latitude": viewport.south, "longitude": viewport.west},
                "high": {"latitude": viewport.north, "longitude": viewport.east},
            }
        },
    }
    if region:
        body["regionCode"] = region
    if page_token:
        body["pageToken"] = page_token
    return body


def text_search(
    query: str,
    viewport: Viewport,
    language: str,
    api_key: str,
    *,
    region: Optional[str] = None,
    page_size: int = 20,
    page_token: Optional[str] = None,
    timeout: float = 10,
) -> Dict[str, Any]:
    """Fetch one page of Text Search results restricted to ``viewport``.

    Returns the decoded payload (``places`` plus an optional ``nextPageToken``).
    Any transport failure, non-2xx status or non-JSON body raises
    :class:`UpstreamError` carrying the HTTP status and raw body.
    """
    body = build_search_body(query, viewport, language, region, page_size, page_token)
    headers = {
        "Content-Type": "application/json",
        "X-Goog-Api-Key": api_key,
        "X-Goog-FieldMask": _FIELD_MASK,
    }

    try:
        response = _SESSION.post(_SEARCH_URL, json=body, headers=headers, timeout=timeout)
    except requests.RequestException as exc:
        logger.error("text_search transport failure: %s", exc)
        raise UpstreamError(f"Places request failed: {exc}") from exc

    raw_body = (response.text or "")[:_MAX_BODY_CHARS]
    if not 200 <= response.status_code < 300:
        logger.error("text_search failed: status=%s, body=%s", response.status_code, raw_body[:500])
        raise UpstreamError(
            f"Places API returned HTTP {response.status_code}",
            status_code=response.status_code,
            body=raw_body,
        )

    try:
        payload = response.json()
    except ValueError as exc:
        logger.error("text_search returned a non-JSON body: %s", raw_body[:500])
        raise UpstreamError(
            "Places API returned an unparseable body",
            status_code=response.status_code,
            body=raw_body,
        ) from exc

    if not isinstance(payload, dict):
        raise UpstreamError(
            "Places API returned an unexpected payload",
            status_code=response.status_code,
            body=raw_body,
        )
    return payload
