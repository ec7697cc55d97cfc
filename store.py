#!/usr/bin/env python3
"""
JSON state file for the seen-set and per-source error state.

The whole document is replaced on every save (temp file + fsync + move), so
a reader never sees a half-written file and a crash loses at most the write
in flight.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict

from config import get_logger

logger = get_logger("store")


def empty_state() -> Dict[str, Any]:
    return {"seen": {}, "errors": {}}


def _migrate_global_seen(seen: Dict[str, Any]) -> Dict[str, Dict[str, dict]]:
    """Convert the old ``{item_id: {"channelId": ...}}`` layout to per-source keying."""
    migrated: Dict[str, Dict[str, dict]] = {}
    for item_id, marker in seen.items():
        source_id = marker.get("channelId") or "unknown"
        timestamp = marker.get("time")
        # The old layout stored milliseconds
        if isinstance(timestamp, (int, float)) and timestamp > 1e12:
            timestamp = timestamp / 1000.0
        migrated.setdefault(source_id, {})[item_id] = {"time": timestamp, "title": marker.get("title", "")}
    return migrated


def _is_global_layout(seen: Dict[str, Any]) -> bool:
    return any(isinstance(marker, dict) and "channelId" in marker for marker in seen.values())


class StateStore:
    """Load/save the watcher state as one JSON document."""

    def __init__(self, file_path: str):
        self.path = Path(file_path)

    def load(self) -> Dict[str, Any]:
        """Read the state, falling back to an empty one if missing or corrupt."""
        if not self.path.exists():
            return empty_state()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"[State] Could not read {self.path}, starting empty: {e}")
            return empty_state()
        if not isinstance(data, dict):
            logger.error(f"[State] {self.path} does not hold a JSON object, starting empty")
            return empty_state()

        seen = data.get("seen") if isinstance(data.get("seen"), dict) else {}
        errors = data.get("errors") if isinstance(data.get("errors"), dict) else {}
        if _is_global_layout(seen):
            seen = _migrate_global_seen(seen)
            logger.info(f"[State] Migrated global seen-set to per-source layout ({len(seen)} source(s))")
        else:
            seen = {key: value for key, value in seen.items() if isinstance(value, dict)}
        return {"seen": seen, "errors": errors}

    def save(self, state: Dict[str, Any]) -> bool:
        """Atomically replace the state file. Failures are logged, not raised."""
        temp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode='w', encoding='utf-8', suffix='.json', dir=self.path.parent, delete=False
            ) as temp_file:
                temp_path = temp_file.name
                json.dump(state, temp_file, indent=2, ensure_ascii=False)
                temp_file.flush()
                os.fsync(temp_file.fileno())
            shutil.move(temp_path, self.path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"[State] Could not save state to {self.path}: {e}")
            if temp_path and os.path.exists(temp_path):
                try:
                    os.unlink(temp_path)
                except OSError as cleanup_error:
                    logger.warning(f"[State] Could not remove temporary file {temp_path}: {cleanup_error}")
            return False
