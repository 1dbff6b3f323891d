#!/usr/bin/env python3

"""
core/deferred_task.py - Timer and in-flight primitives for cooperative scheduling.

Everything in the refresh/liveness core runs on one asyncio event loop. The
pieces here make the two recurring patterns explicit:

- InFlightFlag: compare-and-set "already running" flag. ``try_acquire`` either
  claims the flag or reports that someone else holds it.
- DeferredTask: at most one pending deferred callback. Scheduling again
  cancels the previous callback and replaces it.

Timers go through a TimerHost so tests can drive virtual time
(see testing/fake_timers.py) while production uses AsyncioTimerHost.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class TimerHandle(Protocol):
    """Cancellable handle returned by ``TimerHost.call_later``."""

    def cancel(self) -> None: ...


@runtime_checkable
class TimerHost(Protocol):
    """Clock and timer source.

    ``call_later`` callbacks may return an awaitable; the host is responsible
    for running it to completion.
    """

    def time(self) -> float:
        """Current wall-clock time in epoch seconds."""
        ...

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""
        ...


class AsyncioTimerHost:
    """TimerHost backed by the running asyncio loop and ``time.time``."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()

    def time(self) -> float:
        return time.time()

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._get_loop()

        def _fire() -> None:
            try:
                result = callback()
            except Exception as exc:
                logger.error(f"Timer callback failed: {exc}", exc_info=True)
                return
            if inspect.isawaitable(result):
                task = loop.create_task(_await_logged(result))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

        return loop.call_later(max(delay, 0.0), _fire)


async def _await_logged(awaitable: Any) -> None:
    try:
        await awaitable
    except Exception as exc:
        logger.error(f"Deferred coroutine failed: {exc}", exc_info=True)


class InFlightFlag:
    """Atomic compare-and-set flag guarding a non re-entrant operation."""

    def __init__(self, name: str = "operation") -> None:
        self.name = name
        self._held = False
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        """Claim the flag. Returns False if it is already held."""
        with self._lock:
            if self._held:
                return False
            self._held = True
            return True

    def release(self) -> None:
        with self._lock:
            self._held = False

    @property
    def is_held(self) -> bool:
        with self._lock:
            return self._held


class DeferredTask:
    """
    At most one pending deferred callback (cancel-and-replace).

    Used for throttled refresh retries and for debouncing focus/visibility
    triggers. ``cancel`` is idempotent and safe to call from teardown.
    """

    def __init__(self, timer_host: TimerHost, name: str = "deferred") -> None:
        self._timer_host = timer_host
        self.name = name
        self._handle: Optional[TimerHandle] = None
        self._due_at: Optional[float] = None
        self._generation = 0

    def schedule(self, delay: float, callback: Callable[[], Any]) -> None:
        """Cancel any pending callback and schedule ``callback`` in ``delay`` seconds."""
        self.cancel()
        self._generation += 1
        generation = self._generation

        def _run() -> Any:
            # A handle that lost a cancel race must not fire.
            if generation != self._generation:
                return None
            self._handle = None
            self._due_at = None
            return callback()

        self._due_at = self._timer_host.time() + delay
        self._handle = self._timer_host.call_later(delay, _run)
        logger.debug(f"{self.name}: deferred callback scheduled in {delay:.3f}s")

    def cancel(self) -> bool:
        """Cancel the pending callback. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self._due_at = None
        self._generation += 1
        logger.debug(f"{self.name}: pending deferred callback cancelled")
        return True

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def due_at(self) -> Optional[float]:
        return self._due_at


async def timer_sleep(timer_host: TimerHost, delay: float) -> None:
    """Suspend for ``delay`` seconds of ``timer_host`` time."""
    woken: asyncio.Future[None] = asyncio.get_running_loop().create_future()

    def _wake() -> None:
        if not woken.done():
            woken.set_result(None)

    handle = timer_host.call_later(delay, _wake)
    try:
        await woken
    finally:
        handle.cancel()


__all__ = [
    "AsyncioTimerHost",
    "DeferredTask",
    "InFlightFlag",
    "TimerHandle",
    "TimerHost",
    "timer_sleep",
]
