#!/usr/bin/env python3

"""
core/refresh_monitor.py - Refresh Event Recorder

Bounded log of refresh scheduling decisions (executed, throttled, skipped for
unsaved data). Purely diagnostic: nothing in the scheduler reads it back, so
it can be disabled at any time without changing behaviour.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 100


@dataclass(frozen=True)
class RefreshLogEntry:
    """One recorded scheduling decision."""

    event_type: str
    consumer_id: str
    was_throttled: bool
    was_skipped_for_unsaved_data: bool
    timestamp: float

    @property
    def status(self) -> str:
        if self.was_throttled:
            return "throttled"
        if self.was_skipped_for_unsaved_data:
            return "skipped"
        return "executed"


class RefreshMonitor:
    """Ring buffer of RefreshLogEntry records with summary statistics."""

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        enabled: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self._events: deque[RefreshLogEntry] = deque(maxlen=max_events)
        self._enabled = enabled
        self._clock = clock or time.time
        self._lock = threading.Lock()

    def log_refresh(
        self,
        event_type: str,
        consumer_id: str,
        was_throttled: bool,
        was_skipped: bool,
    ) -> None:
        """Append one decision; the oldest entry is evicted once full."""
        if not self._enabled:
            return

        entry = RefreshLogEntry(
            event_type=event_type,
            consumer_id=consumer_id,
            was_throttled=was_throttled,
            was_skipped_for_unsaved_data=was_skipped,
            timestamp=self._clock(),
        )
        with self._lock:
            self._events.append(entry)

        if was_throttled:
            label = "⏳ THROTTLED"
        elif was_skipped:
            label = "⏸️ SKIPPED (unsaved data)"
        else:
            label = "✅ EXECUTED"
        logger.debug(f"[RefreshMonitor] {label} - {event_type} in {consumer_id}")

    def get_stats(self) -> dict[str, Any]:
        """Counts by outcome, by trigger type and by consumer."""
        with self._lock:
            events = list(self._events)

        stats: dict[str, Any] = {
            "total": len(events),
            "executed": 0,
            "throttled": 0,
            "skipped": 0,
            "by_type": {},
            "by_consumer": {},
        }
        for event in events:
            stats["by_type"][event.event_type] = stats["by_type"].get(event.event_type, 0) + 1
            stats["by_consumer"][event.consumer_id] = stats["by_consumer"].get(event.consumer_id, 0) + 1
            stats[event.status] += 1
        return stats

    def get_recent_events(self, limit: int = 10) -> list[RefreshLogEntry]:
        """Newest first."""
        with self._lock:
            events = list(self._events)
        if limit <= 0:
            return []
        return list(reversed(events[-limit:]))

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def export_events(self) -> str:
        """JSON dump of all events plus stats, for offline analysis."""
        with self._lock:
            events = [asdict(event) for event in self._events]
        return json.dumps(
            {
                "events": events,
                "stats": self.get_stats(),
                "exported_at": datetime.now(timezone.utc).isoformat(),
            },
            indent=2,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# Module-level monitor instance
_monitor: Optional[RefreshMonitor] = None
_monitor_lock = threading.Lock()


def get_refresh_monitor() -> RefreshMonitor:
    """Get or create the shared RefreshMonitor."""
    global _monitor  # noqa: PLW0603
    with _monitor_lock:
        if _monitor is None:
            _monitor = RefreshMonitor()
        return _monitor


__all__ = ["RefreshLogEntry", "RefreshMonitor", "get_refresh_monitor"]
