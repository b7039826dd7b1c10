"""Cursor-driven pagination over one tile of a search."""

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterator, List, Optional

from placegrid.core.config import MIN_PAGE_DELAY_SECONDS
from placegrid.core.geo import Viewport
from placegrid.core.models import PageResult, PlaceRecord
from placegrid.etl.transform import normalize
from placegrid.vendors import google_places

logger = logging.getLogger(__name__)

Fetcher = Callable[..., Dict[str, Any]]


def _extract_entries(payload: Dict[str, Any]) -> List[Any]:
    """New API pages carry ``places``; legacy ones carry ``results``."""
    for key in ("places", "results", "local_results"):
        entries = payload.get(key)
        if isinstance(entries, list):
            return entries
    return []


def _extract_token(payload: Dict[str, Any]) -> Optional[str]:
    token = payload.get("nextPageToken") or payload.get("next_page_token")
    if isinstance(token, str) and token.strip():
        return token
    return None


def _wait(seconds: float, cancel_event: Optional[threading.Event]) -> bool:
    """Block for ``seconds``; returns False if cancelled while waiting."""
    if seconds <= 0:
        return True
    if cancel_event is None:
        time.sleep(seconds)
        return True
    return not cancel_event.wait(seconds)


def paginate(
    query: str,
    tile: Viewport,
    language: str,
    *,
    api_key: str,
    region: Optional[str] = None,
    page_size: int = 20,
    page_delay: float = MIN_PAGE_DELAY_SECONDS,
    timeout: float = 10,
    page_token: Optional[str] = None,
    should_continue: Optional[Callable[[], bool]] = None,
    cancel_event: Optional[threading.Event] = None,
    fetch: Optional[Fetcher] = None,
) -> Iterator[PageResult]:
    """Yield normalized pages for ``query`` inside ``tile`` until the cursor runs out.

    A continuation token only becomes valid some time after the provider hands
    it out, so at least ``page_delay`` seconds pass between receiving a token
    and the request that uses it. ``page_token`` resumes an earlier search; its
    age is unknown, so the full delay is applied before the first request.

    ``should_continue`` and ``cancel_event`` are consulted before every request;
    either one stops the iteration without issuing it. Provider failures raise
    :class:`~placegrid.core.errors.UpstreamError` out of the iterator.
    """
    fetch = fetch or google_places.text_search
    page_delay = max(page_delay, MIN_PAGE_DELAY_SECONDS)
    token = page_token
    # Resumed tokens are treated as freshly issued.
    token_received_at = time.monotonic() if token else None
    page_number = 0

    while True:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Pagination cancelled before page %d for query=%s", page_number + 1, query)
            return
        if should_continue is not None and not should_continue():
            logger.info("Pagination stopped by caller before page %d for query=%s", page_number + 1, query)
            return

        if token is not None and token_received_at is not None:
            remaining = page_delay - (time.monotonic() - token_received_at)
            if not _wait(remaining, cancel_event):
                logger.info("Pagination cancelled while waiting for page token on query=%s", query)
                return

        payload = fetch(
            query,
            tile,
            language,
            api_key,
            region=region,
            page_size=page_size,
            page_token=token,
            timeout=timeout,
        )
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Discarding page %d for cancelled query=%s", page_number + 1, query)
            return

        page_number += 1
        records: List[PlaceRecord] = [normalize(entry) for entry in _extract_entries(payload)]
        token = _extract_token(payload)
        token_received_at = time.monotonic() if token else None
        logger.info(
            "Fetched %d results on page %d for query=%s (more=%s)",
            len(records),
            page_number,
            query,
            token is not None,
        )

        yield PageResult(records=records, continuation_token=token)

        if token is None:
            return
