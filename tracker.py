#!/usr/bin/env python3
"""
Seen-set tracking.

Each source moves through UNINITIALIZED -> BASELINED -> STEADY. The first
successful observation of a source records every item as seen without
notifying (so a wiped state file never causes a notification storm); every
later observation reports only identifiers that are not in the seen-set yet,
oldest first. Items are marked seen before anyone tries to notify them, so
each item gets at most one notification attempt.

The seen-set is an insertion-ordered dict per source; once it grows past the
cap the oldest markers are dropped first.
"""

from dataclasses import dataclass, field
from enum import Enum
from time import time
from typing import Dict, Iterable, List, Optional, Set

from config import get_logger
from models import Item, Source

logger = get_logger("tracker")


class TrackerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    BASELINED = "baselined"
    STEADY = "steady"


@dataclass
class Observation:
    """Tracker decision for one source and one payload."""

    source_id: str
    baseline: bool = False
    new_items: List[Item] = field(default_factory=list)
    evicted: int = 0


class SeenTracker:
    """Decides which observed items are new, per source.

    Args:
        seen: Mapping ``source_id -> {item_id: marker}`` owned by the caller;
              it is mutated in place so the caller can persist it.
        cap: Maximum markers kept per source.
    """

    def __init__(self, seen: Dict[str, Dict[str, dict]], cap: int = 100):
        self.seen = seen
        self.cap = max(1, int(cap))
        self._steady: Set[str] = set()

    def state_of(self, source_id: str) -> TrackerState:
        if source_id not in self.seen:
            return TrackerState.UNINITIALIZED
        if source_id in self._steady:
            return TrackerState.STEADY
        return TrackerState.BASELINED

    def is_seen(self, source_id: str, item_id: str) -> bool:
        return item_id in self.seen.get(source_id, {})

    def observe(self, source: Source, items: Iterable[Item], now: Optional[float] = None) -> Observation:
        """Record a payload for a source and return what needs notifying.

        ``items`` are in feed order (newest first); ``new_items`` in the
        result are oldest first.
        """
        now = time() if now is None else now
        observed: List[Item] = []
        present: Set[str] = set()
        for item in items:
            if item.item_id and item.item_id not in present:
                present.add(item.item_id)
                observed.append(item)

        if self.state_of(source.id) is TrackerState.UNINITIALIZED:
            markers = self.seen.setdefault(source.id, {})
            for item in reversed(observed):
                markers[item.item_id] = {"time": now, "title": item.title}
            evicted = self._evict(source.id, present)
            logger.info(f"[{source.name}] baseline recorded with {len(observed)} item(s), no notifications")
            return Observation(source_id=source.id, baseline=True, evicted=evicted)

        markers = self.seen[source.id]
        new_items = [item for item in reversed(observed) if item.item_id not in markers]
        for item in new_items:
            markers[item.item_id] = {"time": now, "title": item.title}
        self._steady.add(source.id)
        evicted = self._evict(source.id, present)
        return Observation(source_id=source.id, new_items=new_items, evicted=evicted)

    def _evict(self, source_id: str, protected: Set[str]) -> int:
        """Drop the oldest markers beyond the cap, never ones still in the feed."""
        markers = self.seen[source_id]
        excess = len(markers) - self.cap
        if excess <= 0:
            return 0
        victims: List[str] = []
        for item_id in markers:
            if len(victims) >= excess:
                break
            if item_id not in protected:
                victims.append(item_id)
        for item_id in victims:
            del markers[item_id]
        if victims:
            logger.debug(f"Evicted {len(victims)} seen marker(s) for {source_id}")
        return len(victims)
