"""Search pipeline: tile a viewport, paginate every tile, aggregate, export.

Preview and full export are the same pipeline. A preview sets ``page_cap``
so pagination stops as soon as enough records are held; an export leaves it
unset and drives every tile to exhaustion.
"""

from __future__ import annotations

import logging
import re
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from placegrid.core.aggregator import Aggregator
from placegrid.core.config import Settings, get_settings
from placegrid.core.errors import InvalidInput, UpstreamError
from placegrid.core.geo import Viewport, filter_in_view, tile
from placegrid.core.models import PageResult, PlaceRecord
from placegrid.core.paginator import Fetcher, paginate
from placegrid.etl import export

logger = logging.getLogger(__name__)

_LANGUAGE_RE = re.compile(r"^([a-zA-Z]{2})(?:[-_]([a-zA-Z]{2}))?$")
_REGION_RE = re.compile(r"^[a-zA-Z]{2}$")

PageCallback = Callable[[int, PageResult, int], None]


def resolve_language(raw: Optional[str], default: str) -> str:
    """Return a normalized language code, falling back to ``default`` when invalid."""
    match = _LANGUAGE_RE.match((raw or "").strip())
    if not match:
        if raw:
            logger.info("Unsupported language code %r; falling back to %s", raw, default)
        return default
    language, suffix = match.groups()
    if suffix:
        return f"{language.lower()}-{suffix.upper()}"
    return language.lower()


def resolve_region(raw: Optional[str], default: str) -> str:
    value = (raw or "").strip()
    if not _REGION_RE.match(value):
        if value:
            logger.info("Unsupported region code %r; falling back to %s", raw, default)
        return default
    return value.upper()


@dataclass(frozen=True)
class SearchRequest:
    query: str
    viewport: Viewport
    language: str
    region: Optional[str] = None
    page_cap: Optional[int] = None
    cell_meters: Optional[float] = None
    page_token: Optional[str] = None


def build_request(
    *,
    query: Optional[str],
    viewport: Viewport,
    language: Optional[str] = None,
    region: Optional[str] = None,
    page_cap: Optional[int] = None,
    cell_meters: Optional[float] = None,
    page_token: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> SearchRequest:
    """Validate caller input and apply language/region defaults.

    Raises :class:`InvalidInput` for an empty query, a non-positive cap or
    cell size, or a page token combined with tiling. A page token must come
    with the query of the search that issued it, since the provider rejects
    continuation calls whose parameters differ from the first call.
    """
    settings = settings or get_settings()
    query = (query or "").strip()
    page_token = (page_token or "").strip() or None

    if not query:
        raise InvalidInput("query is required, including when continuing with a page token")
    if not isinstance(viewport, Viewport):
        raise InvalidInput("viewport is required")
    if page_cap is not None and page_cap < 1:
        raise InvalidInput("page_cap must be positive")
    if cell_meters is not None and cell_meters <= 0:
        raise InvalidInput("cell_meters must be positive")
    if page_token and cell_meters is not None:
        raise InvalidInput("page_token continues a single viewport and cannot be tiled")

    return SearchRequest(
        query=query,
        viewport=viewport,
        language=resolve_language(language, settings.default_language),
        region=resolve_region(region, settings.default_region),
        page_cap=page_cap,
        cell_meters=cell_meters,
        page_token=page_token,
    )


@dataclass
class TileError:
    tile_index: int
    tile: Viewport
    error: UpstreamError

    def to_dict(self) -> dict:
        return {"tile_index": self.tile_index, "tile": self.tile.to_dict(), **self.error.to_dict()}


@dataclass
class _TileRun:
    pages: int = 0
    next_page_token: Optional[str] = None
    error: Optional[TileError] = None


@dataclass
class SearchOutcome:
    records: List[PlaceRecord]
    next_page_token: Optional[str] = None
    errors: List[TileError] = field(default_factory=list)
    cancelled: bool = False
    tiles: int = 1
    pages: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def has_more(self) -> bool:
        return self.next_page_token is not None

    @property
    def error(self) -> Optional[UpstreamError]:
        return self.errors[0].error if self.errors else None


@dataclass
class ExportResult:
    text: str
    filename: str
    outcome: SearchOutcome
    row_count: int


def _run_tile(
    index: int,
    cell: Viewport,
    request: SearchRequest,
    aggregator: Aggregator,
    settings: Settings,
    api_key: str,
    cancel_event: Optional[threading.Event],
    fetch: Optional[Fetcher],
    on_page: Optional[PageCallback],
) -> _TileRun:
    run = _TileRun()
    pages = paginate(
        request.query,
        cell,
        request.language,
        api_key=api_key,
        region=request.region,
        page_size=settings.page_size,
        page_delay=settings.page_delay_seconds,
        timeout=settings.request_timeout,
        page_token=request.page_token,
        should_continue=lambda: not aggregator.is_full,
        cancel_event=cancel_event,
        fetch=fetch,
    )
    try:
        for page in pages:
            added = aggregator.ingest(page)
            run.pages += 1
            run.next_page_token = page.continuation_token
            if on_page is not None:
                on_page(index, page, added)
    except UpstreamError as exc:
        logger.error(
            "Tile %d failed after %d page(s): status=%s error=%s",
            index,
            run.pages,
            exc.status_code,
            exc,
        )
        run.error = TileError(tile_index=index, tile=cell, error=exc)
    return run


def run_search(
    request: SearchRequest,
    *,
    settings: Optional[Settings] = None,
    cancel_event: Optional[threading.Event] = None,
    fetch: Optional[Fetcher] = None,
    on_page: Optional[PageCallback] = None,
) -> SearchOutcome:
    """Run one search operation and return its aggregated outcome.

    A failing tile does not discard what other tiles or earlier pages already
    produced; its :class:`UpstreamError` is reported in ``outcome.errors``.
    """
    settings = settings or get_settings()
    api_key = settings.require_api_key()

    if request.cell_meters is None:
        cells = [request.viewport]
    else:
        cells = tile(request.viewport, request.cell_meters, max_tiles=settings.max_tiles)
    aggregator = Aggregator(cap=request.page_cap)
    logger.info(
        "Starting search query=%s tiles=%d language=%s cap=%s",
        request.query,
        len(cells),
        request.language,
        request.page_cap,
    )

    def work(index: int, cell: Viewport) -> _TileRun:
        return _run_tile(index, cell, request, aggregator, settings, api_key, cancel_event, fetch, on_page)

    workers = min(settings.tile_workers, len(cells))
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(work, index, cell) for index, cell in enumerate(cells)]
            runs = [future.result() for future in futures]
    else:
        runs = [work(index, cell) for index, cell in enumerate(cells)]

    records = aggregator.finalize()
    errors = [run.error for run in runs if run.error is not None]
    # Continuation tokens only make sense when the viewport was not split.
    next_page_token = runs[0].next_page_token if len(runs) == 1 else None
    outcome = SearchOutcome(
        records=records,
        next_page_token=next_page_token,
        errors=errors,
        cancelled=cancel_event is not None and cancel_event.is_set(),
        tiles=len(cells),
        pages=sum(run.pages for run in runs),
    )
    logger.info(
        "Completed search query=%s records=%d pages=%d errors=%d cancelled=%s",
        request.query,
        len(records),
        outcome.pages,
        len(errors),
        outcome.cancelled,
    )
    return outcome


def run_export(
    request: SearchRequest,
    *,
    settings: Optional[Settings] = None,
    cancel_event: Optional[threading.Event] = None,
    fetch: Optional[Fetcher] = None,
    in_view: Optional[Viewport] = None,
    now: Optional[datetime] = None,
) -> ExportResult:
    """Run a search and render its records as CSV.

    ``in_view`` limits the table to records located inside that viewport.
    """
    outcome = run_search(request, settings=settings, cancel_event=cancel_event, fetch=fetch)
    records = outcome.records
    if in_view is not None:
        records = filter_in_view(records, in_view)
    text = export.render(records)
    filename = export.export_filename(now or datetime.now(timezone.utc))
    return ExportResult(text=text, filename=filename, outcome=outcome, row_count=len(records))
