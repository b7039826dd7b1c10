"""First-seen-wins aggregation of place records across pages and tiles."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Union

from placegrid.core.models import PageResult, PlaceRecord

logger = logging.getLogger(__name__)


@dataclass
class AggregateState:
    """Accumulated results of one search operation.

    ``cap`` bounds the number of retained records (preview mode); ``None``
    means unbounded (full export).
    """

    cap: Optional[int] = None
    seen: Set[str] = field(default_factory=set)
    ordered: List[PlaceRecord] = field(default_factory=list)
    dropped: int = 0


def is_full(state: AggregateState) -> bool:
    return state.cap is not None and len(state.ordered) >= state.cap


def ingest(state: AggregateState, page: Union[PageResult, Iterable[PlaceRecord]]) -> AggregateState:
    """Append unseen records from ``page`` to ``state`` and return it.

    Records with an empty id, ids already seen and records arriving after the
    cap is reached are dropped. Earlier records are never replaced.
    """
    records = page.records if isinstance(page, PageResult) else page
    for record in records:
        if not record.id:
            state.dropped += 1
            logger.debug("Dropping record without id: name=%r", record.name)
            continue
        if record.id in state.seen:
            state.dropped += 1
            logger.debug("Dropping duplicate record id=%s", record.id)
            continue
        if is_full(state):
            state.dropped += 1
            continue
        state.seen.add(record.id)
        state.ordered.append(record)
    return state


def finalize(state: AggregateState) -> List[PlaceRecord]:
    return list(state.ordered)


class Aggregator:
    """Owns one :class:`AggregateState` and serializes ingestion across tile workers."""

    def __init__(self, cap: Optional[int] = None) -> None:
        if cap is not None and cap < 1:
            raise ValueError("cap must be positive")
        self._state = AggregateState(cap=cap)
        self._lock = threading.Lock()

    @property
    def is_full(self) -> bool:
        with self._lock:
            return is_full(self._state)

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.ordered)

    def ingest(self, page: Union[PageResult, Iterable[PlaceRecord]]) -> int:
        """Ingest one page; returns how many records were newly retained."""
        with self._lock:
            before = len(self._state.ordered)
            ingest(self._state, page)
            return len(self._state.ordered) - before

    def finalize(self) -> List[PlaceRecord]:
        with self._lock:
            return finalize(self._state)
