#!/usr/bin/env python3
"""
Data records shared by the fetcher, parser, tracker and watcher.

Sources and items are rebuilt every cycle; only the seen-set and error
state (see store.py) outlive a cycle.
"""

from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional


@dataclass(frozen=True)
class Source:
    """A monitored channel feed."""

    id: str
    name: str
    url: str


@dataclass
class Item:
    """A video entry extracted from a feed payload."""

    item_id: str
    title: str
    link: str
    published: str = ""
    thumbnail: str = ""
    source_id: str = ""
    source_name: str = ""


@dataclass
class SourceOutcome:
    """What happened to one source during a cycle."""

    source_id: str
    name: str
    ok: bool = True
    error: Optional[str] = None
    baseline: bool = False
    new_items: int = 0
    notified: int = 0


@dataclass
class CycleRecord:
    """Summary of one pass over all configured sources."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: Dict[str, SourceOutcome] = field(default_factory=dict)
    new_items: int = 0
    notifications_sent: int = 0

    @property
    def elapsed(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def failed_sources(self) -> List[str]:
        return [source_id for source_id, outcome in self.outcomes.items() if not outcome.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "elapsed": round(self.elapsed, 1),
            "new_items": self.new_items,
            "notifications_sent": self.notifications_sent,
            "outcomes": {key: asdict(value) for key, value in self.outcomes.items()},
        }


class ActivityLog:
    """Bounded, newest-first log of human-readable activity lines."""

    def __init__(self, capacity: int = 100):
        self._entries: Deque[Dict[str, str]] = deque(maxlen=capacity)

    def add(self, message: str, kind: str = "info") -> Dict[str, str]:
        entry = {
            "time": datetime.now(timezone.utc).isoformat(),
            "msg": message,
            "type": kind,
        }
        self._entries.appendleft(entry)
        return entry

    def entries(self) -> List[Dict[str, str]]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
