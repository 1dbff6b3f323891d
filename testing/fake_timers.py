#!/usr/bin/env python3

"""
Virtual-time TimerHost for deterministic scheduling tests.

``ManualTimerHost`` never sleeps: ``advance(seconds)`` moves the clock
forward and fires every due callback in deadline order (ties in scheduling
order), awaiting whatever awaitable a callback returns before moving on.

Usage:
    timers = ManualTimerHost()
    scheduler = RefreshScheduler(timer_host=timers, ...)
    await scheduler.trigger("reports")
    await timers.advance(60)
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
from collections.abc import Callable
from typing import Any, Optional

logger = logging.getLogger(__name__)


class ManualTimerHandle:
    def __init__(self, due_at: float, callback: Callable[[], Any]) -> None:
        self.due_at = due_at
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualTimerHost:
    """TimerHost whose clock only moves when the test says so."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._heap: list[tuple[float, int, ManualTimerHandle]] = []
        self._seq = itertools.count()
        self.fired = 0
        self.errors: list[Exception] = []

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], Any]) -> ManualTimerHandle:
        handle = ManualTimerHandle(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._heap, (handle.due_at, next(self._seq), handle))
        return handle

    def _drop_cancelled(self) -> None:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)

    @property
    def pending_count(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)

    def next_due(self) -> Optional[float]:
        self._drop_cancelled()
        return self._heap[0][0] if self._heap else None

    async def advance(self, seconds: float) -> None:
        """Move the clock forward by ``seconds``, firing due callbacks on the way."""
        await self.advance_to(self._now + seconds)

    async def advance_to(self, target: float) -> None:
        while True:
            self._drop_cancelled()
            if not self._heap or self._heap[0][0] > target:
                break
            due_at, _, handle = heapq.heappop(self._heap)
            self._now = max(self._now, due_at)
            await self._fire(handle)
        self._now = max(self._now, target)
        # Let tasks spawned by callbacks run to their next suspension point.
        await asyncio.sleep(0)

    async def _fire(self, handle: ManualTimerHandle) -> None:
        self.fired += 1
        try:
            result = handle.callback()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(f"Timer callback failed: {exc}", exc_info=True)
            self.errors.append(exc)
        await asyncio.sleep(0)


__all__ = ["ManualTimerHandle", "ManualTimerHost"]
