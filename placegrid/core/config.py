"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from placegrid.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Google rejects a next-page token that is reused sooner than this.
MIN_PAGE_DELAY_SECONDS = 2.0
MAX_PAGE_SIZE = 20


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    default_language: str = "he"
    default_region: str = "IL"
    page_size: int = MAX_PAGE_SIZE
    page_delay_seconds: float = 2.1
    request_timeout: float = 10.0
    preview_cap: int = 20
    cell_meters: float = 1500.0
    tile_workers: int = 4
    max_tiles: int = 400
    notify_webhook_url: str = ""
    port: int = 8080

    def require_api_key(self) -> str:
        if not self.google_api_key:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY is required")
        return self.google_api_key


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_MAPS_API_KEY", "")
    default_language = os.getenv("PLACES_DEFAULT_LANGUAGE", "he").strip() or "he"
    default_region = os.getenv("PLACES_DEFAULT_REGION", "IL").strip().upper() or "IL"
    page_size = _env_number("PLACES_PAGE_SIZE", "20", int)
    page_delay_seconds = _env_number("PLACES_PAGE_DELAY_SECONDS", "2.1", float)
    request_timeout = _env_number("PLACES_REQUEST_TIMEOUT", "10", float)
    preview_cap = _env_number("PLACES_PREVIEW_CAP", "20", int)
    cell_meters = _env_number("TILE_CELL_METERS", "1500", float)
    tile_workers = _env_number("TILE_WORKERS", "4", int)
    max_tiles = _env_number("TILE_MAX_COUNT", "400", int)
    notify_webhook_url = os.getenv("NOTIFY_WEBHOOK_URL", "")
    port = _env_number("PORT", os.getenv("WORKER_PORT", "8080"), int)

    if not 1 <= page_size <= MAX_PAGE_SIZE:
        logger.warning("PLACES_PAGE_SIZE=%d out of range; using %d", page_size, MAX_PAGE_SIZE)
        page_size = MAX_PAGE_SIZE
    if page_delay_seconds < MIN_PAGE_DELAY_SECONDS:
        logger.warning(
            "PLACES_PAGE_DELAY_SECONDS=%.2f is below the provider minimum; using %.2f",
            page_delay_seconds,
            MIN_PAGE_DELAY_SECONDS,
        )
        page_delay_seconds = MIN_PAGE_DELAY_SECONDS
    if cell_meters <= 0:
        raise ConfigurationError("TILE_CELL_METERS must be positive")
    if tile_workers < 1:
        raise ConfigurationError("TILE_WORKERS must be at least 1")
    if max_tiles < 1:
        raise ConfigurationError("TILE_MAX_COUNT must be at least 1")
    if preview_cap < 1:
        raise ConfigurationError("PLACES_PREVIEW_CAP must be at least 1")

    if not google_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; Places requests will fail.")
    if not notify_webhook_url:
        logger.info("NOTIFY_WEBHOOK_URL is not configured; search notifications are disabled.")

    return Settings(
        google_api_key=google_api_key,
        default_language=default_language,
        default_region=default_region,
        page_size=page_size,
        page_delay_seconds=page_delay_seconds,
        request_timeout=request_timeout,
        preview_cap=preview_cap,
        cell_meters=cell_meters,
        tile_workers=tile_workers,
        max_tiles=max_tiles,
        notify_webhook_url=notify_webhook_url,
        port=port,
    )
