"""Utilities for transforming provider place entries into canonical records.

Three upstream shapes are understood: Places API (New) ``places`` entries,
legacy Places ``results`` entries and SerpAPI Google Maps ``local_results``.
Normalization never raises; anything unexpected falls back to defaults.
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

from placegrid.core.models import PlaceRecord

logger = logging.getLogger(__name__)

# Joins categories in exports, so it must never appear inside one.
CATEGORY_DELIMITER = "|"


def _first(entry: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = entry.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> Optional[str]:
    """Plain strings, numbers and ``{"text": ...}`` wrappers become stripped text."""
    if isinstance(value, dict):
        value = value.get("text")
    if value is None or isinstance(value, (bool, dict, list, tuple, set)):
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(result):
        return None
    return result


def _safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    if isinstance(value, str):
        # SerpAPI sends review counts like "1,234".
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            return int(digits)
    return None


def _extract_id(entry: Dict[str, Any]) -> str:
    raw = _first(entry, "id", "place_id", "placeId")
    if isinstance(raw, bool) or not isinstance(raw, (str, int)):
        return ""
    return str(raw).strip()


def _extract_location(entry: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    # New API: location.latitude/longitude. Proxied legacy: location.lat/lng.
    location = _as_dict(entry.get("location"))
    if not location:
        location = _as_dict(_as_dict(entry.get("geometry")).get("location"))
    if not location:
        location = _as_dict(entry.get("gps_coordinates"))

    lat = _safe_float(_first(location, "latitude", "lat"))
    lng = _safe_float(_first(location, "longitude", "lng"))
    if lat is not None and not -90.0 <= lat <= 90.0:
        lat = None
    if lng is not None and not -180.0 <= lng <= 180.0:
        lng = None
    return lat, lng


def _extract_categories(entry: Dict[str, Any]) -> List[str]:
    raw = entry.get("types")
    if raw is None:
        raw = entry.get("type")
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return []

    categories: List[str] = []
    for item in raw:
        value = _text(item)
        if not value:
            continue
        value = value.replace(CATEGORY_DELIMITER, " ").strip()
        if value and value not in categories:
            categories.append(value)
    return categories


def normalize(entry: Any) -> PlaceRecord:
    """Map one raw provider entry onto :class:`PlaceRecord`."""
    if not isinstance(entry, dict):
        logger.debug("Normalizing non-object entry of type %s to an empty record", type(entry).__name__)
        return PlaceRecord(id="")

    lat, lng = _extract_location(entry)
    return PlaceRecord(
        id=_extract_id(entry),
        name=_text(_first(entry, "displayName", "name", "title")) or "",
        address=_text(_first(entry, "formattedAddress", "formatted_address", "address", "vicinity")) or "",
        lat=lat,
        lng=lng,
        rating=_safe_float(entry.get("rating")),
        rating_count=_safe_int(_first(entry, "userRatingCount", "user_ratings_total", "reviews_count", "reviews")),
        categories=_extract_categories(entry),
        status=_text(_first(entry, "businessStatus", "business_status")),
        website=_text(_first(entry, "websiteUri", "website")),
        phone=_text(
            _first(
                entry,
                "internationalPhoneNumber",
                "nationalPhoneNumber",
                "international_phone_number",
                "formatted_phone_number",
                "phone",
            )
        ),
        map_uri=_text(_first(entry, "googleMapsUri", "url", "place_id_search")),
    )
