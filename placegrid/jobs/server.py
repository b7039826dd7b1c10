"""HTTP entrypoint for preview searches and CSV exports."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request

from placegrid.core.config import get_settings
from placegrid.core.errors import ConfigurationError, InvalidInput
from placegrid.core.geo import Viewport
from placegrid.core.notifier import post_search_summary, summarize_export
from placegrid.core.search import ExportResult, SearchRequest, build_request, run_export, run_search
from placegrid.etl.export import CSV_CONTENT_TYPE

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# Notifications only; they must never hold up a response.
_executor = ThreadPoolExecutor(max_workers=2)


# ---------- Error handlers ----------


@app.errorhandler(InvalidInput)
def handle_invalid_input(exc: InvalidInput) -> Any:
    return jsonify({"error": str(exc)}), 400


@app.errorhandler(ConfigurationError)
def handle_configuration_error(exc: ConfigurationError) -> Any:
    logger.error("Configuration error: %s", exc)
    return jsonify({"error": str(exc)}), 500


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "api_key_configured": bool(settings.google_api_key),
                "notifications_enabled": bool(settings.notify_webhook_url),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.get("/api/places")
def search_places() -> Any:
    """
    Preview search over one viewport.
    Query params: query, north, south, east, west
    Optional: pagetoken (continue a previous search; resend the same query and
    viewport), language, region, cap (int)
    """
    settings = get_settings()
    args = request.args
    viewport = Viewport.from_bounds(args.get("north"), args.get("south"), args.get("east"), args.get("west"))
    cap = _parse_positive_int(args.get("cap"), "cap")

    search_request = build_request(
        query=args.get("query"),
        viewport=viewport,
        language=args.get("language"),
        region=args.get("region"),
        page_cap=cap or settings.preview_cap,
        page_token=args.get("pagetoken"),
        settings=settings,
    )
    outcome = run_search(search_request, settings=settings)

    body: Dict[str, Any] = {
        "status": "OK" if outcome.ok else "UPSTREAM_ERROR",
        "next_page_token": outcome.next_page_token,
        "count": len(outcome.records),
        "results": [record.to_dict() for record in outcome.records],
    }
    if outcome.error is not None:
        body.update(outcome.error.to_dict())
        return jsonify(body), 502
    return jsonify(body), 200


@app.post("/api/export")
def export_places() -> Any:
    """
    Full export of every place in the viewport as CSV.
    Required JSON fields: query, viewport {north, south, east, west}
    Optional: language, region, cell_meters (number or null to disable tiling),
    cap (int), in_view (viewport), allow_partial (bool), notify (bool)
    """
    settings = get_settings()
    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")

    viewport = Viewport.from_mapping(payload.get("viewport"))
    in_view = Viewport.from_mapping(payload["in_view"]) if payload.get("in_view") else None
    cell_meters = _parse_cell_meters(payload, settings.cell_meters)
    cap = _parse_positive_int(payload.get("cap"), "cap")
    allow_partial = bool(payload.get("allow_partial", False))
    notify = bool(payload.get("notify", False))

    search_request = build_request(
        query=payload.get("query"),
        viewport=viewport,
        language=payload.get("language"),
        region=payload.get("region"),
        page_cap=cap,
        cell_meters=cell_meters,
        settings=settings,
    )
    result = run_export(search_request, settings=settings, in_view=in_view)
    outcome = result.outcome

    if notify:
        _executor.submit(_notify_safe, search_request, result)

    if not outcome.ok and not allow_partial:
        error = outcome.error
        body = {
            "status": "UPSTREAM_ERROR",
            "count": result.row_count,
            "errors": [tile_error.to_dict() for tile_error in outcome.errors],
        }
        if error is not None:
            body.update(error.to_dict())
        return jsonify(body), 502

    response = Response(result.text, status=200, content_type=CSV_CONTENT_TYPE)
    response.headers["Content-Disposition"] = f'attachment; filename="{result.filename}"'
    response.headers["X-Result-Count"] = str(result.row_count)
    response.headers["X-Partial-Results"] = "false" if outcome.ok else "true"
    return response


# ---------- Internals ----------


def _parse_positive_int(raw: Any, name: str) -> Optional[int]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise InvalidInput(f"{name} must be numeric")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"{name} must be numeric") from exc
    if value <= 0:
        raise InvalidInput(f"{name} must be positive")
    return value


def _parse_cell_meters(payload: Dict[str, Any], default: float) -> Optional[float]:
    if "cell_meters" not in payload:
        return default
    raw = payload["cell_meters"]
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise InvalidInput("cell_meters must be numeric")
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput("cell_meters must be numeric") from exc
    if value <= 0:
        raise InvalidInput("cell_meters must be positive")
    return value


def _notify_safe(search_request: SearchRequest, result: ExportResult) -> None:
    try:
        summary = summarize_export(search_request, result)
        post_search_summary(summary, result.text if summary.success else None, result.filename)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Notification job failed: %s", exc)


def main() -> None:
    """Cloud Run injects PORT; fall back to the configured port locally."""
    port = int(os.getenv("PORT") or get_settings().port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
