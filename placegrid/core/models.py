"""Core data models shared by the search pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class PlaceRecord:
    """Normalized snapshot of one place returned by the search provider."""

    id: str
    name: str = ""
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    rating: Optional[float] = None
    rating_count: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    status: Optional[str] = None
    website: Optional[str] = None
    phone: Optional[str] = None
    map_uri: Optional[str] = None

    @property
    def has_location(self) -> bool:
        return self.lat is not None and self.lng is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "location": {"lat": self.lat, "lng": self.lng},
            "rating": self.rating,
            "rating_count": self.rating_count,
            "categories": list(self.categories),
            "status": self.status,
            "website": self.website,
            "phone": self.phone,
            "map_uri": self.map_uri,
        }


@dataclass(slots=True)
class PageResult:
    """One provider page; a ``None`` token means the query is exhausted."""

    records: List[PlaceRecord]
    continuation_token: Optional[str] = None
