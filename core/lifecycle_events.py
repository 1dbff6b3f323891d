#!/usr/bin/env python3

"""
core/lifecycle_events.py - Host-neutral lifecycle event source.

Replaces the browser's ``visibilitychange`` (document) and ``focus`` (window)
events with a small pub/sub object. The host (web shell, desktop client,
test) feeds events in; the refresh scheduler, liveness monitor and activity
tracker subscribe with ``on_became_active`` and get an unsubscribe callable
back.

Listener callbacks may be plain functions or coroutine functions. ``emit``
awaits all returned awaitables together, so listeners belonging to
different consumers interleave freely.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class TriggerKind(str, Enum):
    """Sources that may cause a refresh or liveness check to be considered."""

    VISIBILITY = "visibility"
    FOCUS = "focus"
    MANUAL = "manual"


@dataclass(frozen=True)
class RefreshTrigger:
    """A single lifecycle event."""

    kind: TriggerKind
    timestamp: float = field(default_factory=time.time)


TriggerListener = Callable[[RefreshTrigger], Any]


@dataclass
class _Subscription:
    callback: TriggerListener
    kinds: frozenset[TriggerKind]


class LifecycleEventSource:
    """Publishes "became active" events (tab visible again, window focused)."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.time
        self._subscriptions: list[_Subscription] = []
        self._lock = threading.Lock()
        self._visible = True

    def on_became_active(
        self,
        callback: TriggerListener,
        kinds: Iterable[TriggerKind] = (TriggerKind.VISIBILITY, TriggerKind.FOCUS),
    ) -> Callable[[], None]:
        """Subscribe ``callback`` to the given trigger kinds. Returns an unsubscribe callable."""
        subscription = _Subscription(callback=callback, kinds=frozenset(kinds))
        with self._lock:
            self._subscriptions.append(subscription)

        def _unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return _unsubscribe

    async def emit(self, kind: TriggerKind) -> None:
        """Deliver one trigger to every matching listener."""
        trigger = RefreshTrigger(kind=kind, timestamp=self._clock())
        with self._lock:
            listeners = [s.callback for s in self._subscriptions if kind in s.kinds]

        pending = []
        for listener in listeners:
            try:
                result = listener(trigger)
            except Exception as exc:
                logger.error(f"Lifecycle listener failed on {kind.value}: {exc}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                pending.append(result)

        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error(f"Lifecycle listener failed on {kind.value}: {result}")

    async def notify_visibility_change(self, visible: bool) -> None:
        """Feed a visibility change. Only hidden -> visible transitions are published."""
        was_visible = self._visible
        self._visible = visible
        if visible and not was_visible:
            await self.emit(TriggerKind.VISIBILITY)

    async def notify_focus(self) -> None:
        await self.emit(TriggerKind.FOCUS)

    @property
    def is_visible(self) -> bool:
        return self._visible

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)


# Module-level event source instance
_default_source: Optional[LifecycleEventSource] = None
_source_lock = threading.Lock()


def get_lifecycle_source() -> LifecycleEventSource:
    """Get or create the application's LifecycleEventSource."""
    global _default_source  # noqa: PLW0603
    with _source_lock:
        if _default_source is None:
            _default_source = LifecycleEventSource()
        return _default_source


__all__ = [
    "LifecycleEventSource",
    "RefreshTrigger",
    "TriggerKind",
    "TriggerListener",
    "get_lifecycle_source",
]
