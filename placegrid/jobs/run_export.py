"""CLI job that exports every place matching a query inside a viewport to CSV."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from placegrid.core.config import get_settings
from placegrid.core.errors import ConfigurationError, InvalidInput
from placegrid.core.geo import Viewport
from placegrid.core.notifier import post_search_summary, summarize_export
from placegrid.core.search import ExportResult, build_request, run_export

logger = logging.getLogger(__name__)


def run_export_job(
    *,
    query: str,
    viewport: Viewport,
    language: Optional[str],
    region: Optional[str],
    cell_meters: Optional[float],
    cap: Optional[int],
    output: Optional[str],
    allow_partial: bool = False,
    notify: bool = False,
) -> ExportResult:
    settings = get_settings()
    request = build_request(
        query=query,
        viewport=viewport,
        language=language,
        region=region,
        page_cap=cap,
        cell_meters=cell_meters,
        settings=settings,
    )

    result = run_export(request, settings=settings)
    outcome = result.outcome
    for tile_error in outcome.errors:
        logger.error(
            "Tile %d failed: status=%s body=%s",
            tile_error.tile_index,
            tile_error.error.status_code,
            tile_error.error.body[:200],
        )

    if outcome.ok or allow_partial:
        path = Path(output or result.filename)
        path.write_text(result.text, encoding="utf-8")
        logger.info("Wrote %d rows to %s", result.row_count, path)
    else:
        logger.warning("Skipping CSV output because %d tile(s) failed", len(outcome.errors))

    if notify:
        summary = summarize_export(request, result)
        post_search_summary(summary, result.text if outcome.ok else None, result.filename, settings=settings)

    return result


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Export Google Places results for a viewport to CSV")
    parser.add_argument("--query", required=True, help="Free-text category, e.g. 'bakery'")
    parser.add_argument("--north", type=float, required=True)
    parser.add_argument("--south", type=float, required=True)
    parser.add_argument("--east", type=float, required=True)
    parser.add_argument("--west", type=float, required=True)
    parser.add_argument("--language", default=settings.default_language, help="Output language, e.g. he or en-US")
    parser.add_argument("--region", default=settings.default_region, help="Region code, e.g. IL")
    parser.add_argument(
        "--cell-meters",
        dest="cell_meters",
        type=float,
        default=settings.cell_meters,
        help="Tile size used to split the viewport",
    )
    parser.add_argument(
        "--no-tiling",
        dest="no_tiling",
        action="store_true",
        help="Query the viewport as a single tile",
    )
    parser.add_argument("--cap", type=int, help="Stop after this many unique places")
    parser.add_argument("--output", help="CSV path (defaults to a timestamped name)")
    parser.add_argument(
        "--allow-partial",
        dest="allow_partial",
        action="store_true",
        help="Write the CSV even if some tiles failed",
    )
    parser.add_argument("--notify", action="store_true", help="Post a summary to NOTIFY_WEBHOOK_URL")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    try:
        args = build_parser().parse_args(argv)
        viewport = Viewport.from_bounds(args.north, args.south, args.east, args.west)
        result = run_export_job(
            query=args.query,
            viewport=viewport,
            language=args.language,
            region=args.region,
            cell_meters=None if args.no_tiling else args.cell_meters,
            cap=args.cap,
            output=args.output,
            allow_partial=args.allow_partial,
            notify=args.notify,
        )
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 2
    except InvalidInput as exc:
        logger.error("Invalid input: %s", exc)
        return 2

    return 0 if result.outcome.ok else 1


if __name__ == "__main__":
    sys.exit(main())
