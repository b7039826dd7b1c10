"""Fire-and-forget webhook notifications about finished searches."""

import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import requests

from placegrid.core.config import Settings, get_settings
from placegrid.core.search import ExportResult, SearchRequest
from placegrid.etl.export import CSV_CONTENT_TYPE

logger = logging.getLogger(__name__)

USER_AGENT = "placegrid/1.0"
REQUEST_TIMEOUT = 10


@dataclass(frozen=True)
class SearchSummary:
    query: str
    language: str
    viewport: Dict[str, float]
    success: bool
    result_count: int
    error: Optional[Dict[str, Any]] = None


def summarize_export(search_request: SearchRequest, result: ExportResult) -> SearchSummary:
    outcome = result.outcome
    return SearchSummary(
        query=search_request.query,
        language=search_request.language,
        viewport=search_request.viewport.to_dict(),
        success=outcome.ok,
        result_count=result.row_count,
        error=outcome.errors[0].to_dict() if outcome.errors else None,
    )


def post_search_summary(
    summary: SearchSummary,
    csv_text: Optional[str] = None,
    filename: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> bool:
    """POST the summary (and, on success, the CSV export) to the notification webhook.

    Never raises: failures are logged and reported through the return value.
    """
    settings = settings or get_settings()
    if not settings.notify_webhook_url:
        logger.debug("NOTIFY_WEBHOOK_URL missing; skipping notification for query=%s", summary.query)
        return False

    data = {"summary": json.dumps(asdict(summary), ensure_ascii=False)}
    files = None
    if summary.success and csv_text is not None:
        files = {
            "attachment": (filename or "results.csv", csv_text.encode("utf-8"), CSV_CONTENT_TYPE),
        }

    try:
        response = requests.post(
            settings.notify_webhook_url,
            data=data,
            files=files,
            timeout=REQUEST_TIMEOUT,
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.exception("Failed to POST search notification for query=%s: %s", summary.query, exc)
        return False
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected notification failure for query=%s: %s", summary.query, exc)
        return False

    logger.info("Posted search notification for query=%s status=%s", summary.query, response.status_code)
    return True
