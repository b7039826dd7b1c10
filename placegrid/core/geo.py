"""Viewport handling and grid tiling.

A viewport is split into cells small enough that a single provider query can
plausibly return everything inside it. Latitude degrees are treated as a
constant ground distance; longitude degrees shrink with ``cos(latitude)``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from placegrid.core.errors import InvalidInput
from placegrid.core.models import PlaceRecord

METERS_PER_LAT_DEGREE = 111_000.0
METERS_PER_LNG_DEGREE_AT_EQUATOR = 111_320.0
# Floor for cos(latitude) so polar viewports do not divide by ~0.
MIN_COS_LATITUDE = 1e-6

_BOUND_KEYS = ("north", "south", "east", "west")


@dataclass(frozen=True)
class Viewport:
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_bounds(cls, north: Any, south: Any, east: Any, west: Any) -> "Viewport":
        """Validate raw bounds and order them so north >= south and east >= west."""
        values = {}
        for key, raw in zip(_BOUND_KEYS, (north, south, east, west)):
            if raw is None or isinstance(raw, bool):
                raise InvalidInput(f"viewport.{key} is required")
            try:
                value = float(raw)
            except (TypeError, ValueError) as exc:
                raise InvalidInput(f"viewport.{key} must be numeric") from exc
            if not math.isfinite(value):
                raise InvalidInput(f"viewport.{key} must be finite")
            values[key] = value

        for key in ("north", "south"):
            if not -90.0 <= values[key] <= 90.0:
                raise InvalidInput(f"viewport.{key} must be between -90 and 90")
        for key in ("east", "west"):
            if not -180.0 <= values[key] <= 180.0:
                raise InvalidInput(f"viewport.{key} must be between -180 and 180")

        return cls(
            north=max(values["north"], values["south"]),
            south=min(values["north"], values["south"]),
            east=max(values["east"], values["west"]),
            west=min(values["east"], values["west"]),
        )

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "Viewport":
        if not isinstance(data, Mapping):
            raise InvalidInput("viewport must be an object with north, south, east and west")
        return cls.from_bounds(*(data.get(key) for key in _BOUND_KEYS))

    @property
    def mid_latitude(self) -> float:
        return (self.north + self.south) / 2

    @property
    def is_degenerate(self) -> bool:
        return self.north == self.south or self.east == self.west

    def contains(self, lat: Optional[float], lng: Optional[float]) -> bool:
        if lat is None or lng is None:
            return False
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def to_dict(self) -> dict:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


def _lng_meters_per_degree(latitude: float) -> float:
    cos_lat = math.cos(math.radians(latitude))
    if cos_lat < MIN_COS_LATITUDE:
        cos_lat = MIN_COS_LATITUDE
    return METERS_PER_LNG_DEGREE_AT_EQUATOR * cos_lat


def approx_dimensions_meters(
    viewport: Viewport, reference_latitude: Optional[float] = None
) -> Tuple[float, float]:
    """Return (height, width) of the viewport in meters.

    Width is measured at ``reference_latitude``, defaulting to the viewport's
    own mid latitude. Pass the parent viewport's mid latitude to measure cells
    on the same scale :func:`tile` used to cut them.
    """
    if reference_latitude is None:
        reference_latitude = viewport.mid_latitude
    height = (viewport.north - viewport.south) * METERS_PER_LAT_DEGREE
    width = (viewport.east - viewport.west) * _lng_meters_per_degree(reference_latitude)
    return height, width


def _edge_count(start: float, stop: float, step: float) -> int:
    # Tolerate float noise so an exact multiple of the step does not add a sliver.
    return max(1, math.ceil((stop - start) / step - 1e-9))


def _edges(start: float, stop: float, step: float, count: int) -> List[float]:
    edges = [start + i * step for i in range(count)]
    edges.append(stop)
    return edges


def tile(
    viewport: Viewport, target_cell_meters: float, max_tiles: Optional[int] = None
) -> List[Viewport]:
    """Split ``viewport`` into row-major cells no larger than ``target_cell_meters``.

    Rows run south to north, columns west to east. The last row and column are
    clamped to the input bounds, so the cells cover the viewport exactly.
    Raises :class:`InvalidInput` when the grid would exceed ``max_tiles``; the
    check runs before any cell is built.
    """
    if target_cell_meters is None or target_cell_meters <= 0:
        raise InvalidInput("target_cell_meters must be positive")

    if viewport.is_degenerate:
        return [viewport]

    lat_step = target_cell_meters / METERS_PER_LAT_DEGREE
    lng_step = target_cell_meters / _lng_meters_per_degree(viewport.mid_latitude)

    rows = _edge_count(viewport.south, viewport.north, lat_step)
    cols = _edge_count(viewport.west, viewport.east, lng_step)
    if max_tiles is not None and rows * cols > max_tiles:
        raise InvalidInput(
            f"{target_cell_meters:g} m cells would split the viewport into {rows * cols} tiles "
            f"(limit {max_tiles}); use a larger cell size or a smaller viewport"
        )
    if rows == 1 and cols == 1:
        return [viewport]

    lat_edges = _edges(viewport.south, viewport.north, lat_step, rows)
    lng_edges = _edges(viewport.west, viewport.east, lng_step, cols)

    cells: List[Viewport] = []
    for south, north in zip(lat_edges, lat_edges[1:]):
        for west, east in zip(lng_edges, lng_edges[1:]):
            cells.append(Viewport(north=north, south=south, east=east, west=west))
    return cells


def filter_in_view(records: Iterable[PlaceRecord], viewport: Viewport) -> List[PlaceRecord]:
    """Keep records located inside ``viewport``; records without coordinates are dropped."""
    return [record for record in records if viewport.contains(record.lat, record.lng)]
