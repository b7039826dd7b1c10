"""Error types shared by the search/export pipeline."""

from typing import Optional


class PlaceGridError(Exception):
    """Base exception for placegrid errors."""


class ConfigurationError(PlaceGridError):
    """Raised when required credentials or settings are missing or malformed."""


class InvalidInput(PlaceGridError):
    """Raised when a search request is malformed, before any provider call."""


class UpstreamError(PlaceGridError):
    """Raised when the place-search provider fails or returns a non-success response."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> dict:
        return {"error": str(self), "upstream_status": self.status_code, "upstream_body": self.body}


class SerializationError(PlaceGridError):
    """Raised when an export cannot be serialized."""
