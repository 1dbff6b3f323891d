#!/usr/bin/env python3

"""
core/activity_tracker.py - Activity heartbeat.

Keeps the server's ``last_activity`` current while the user is working, so
the liveness monitor's inactivity test measures real idleness:

- a heartbeat right after ``start()`` and then every ``update_interval_seconds``;
- user interaction posts a heartbeat once the update interval has passed;
- focus / visibility count as interaction, each throttled separately;
- concurrent heartbeats collapse onto the one in flight;
- a 429 answer pauses heartbeats for ``rate_limit_backoff_seconds``;
- a 401 answer stops tracking (the session is gone).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from config.config_manager import get_config_manager
from config.config_schema import ActivityConfig
from core.deferred_task import AsyncioTimerHost, DeferredTask, TimerHost
from core.lifecycle_events import LifecycleEventSource, RefreshTrigger, TriggerKind
from core.protocols import ActivityRecorder, Unsubscribe
from observability.metrics_registry import metrics

logger = logging.getLogger(__name__)


class ActivityTracker:
    """Posts activity heartbeats through an ActivityRecorder."""

    def __init__(
        self,
        recorder: ActivityRecorder,
        timer_host: Optional[TimerHost] = None,
        lifecycle_source: Optional[LifecycleEventSource] = None,
        config: Optional[ActivityConfig] = None,
    ) -> None:
        self._recorder = recorder
        self._timer: TimerHost = timer_host or AsyncioTimerHost()
        self._lifecycle_source = lifecycle_source
        self.config = config or get_config_manager().get_activity_config()

        self._tracking = False
        self._last_update_at: Optional[float] = None
        self._rate_limited_at: Optional[float] = None
        self._last_trigger_at: dict[TriggerKind, float] = {}
        self._pending: Optional[asyncio.Future[Optional[int]]] = None

        self._initial = DeferredTask(self._timer, "activity-initial")
        self._interval = DeferredTask(self._timer, "activity-interval")
        self._unsubscribe: Optional[Unsubscribe] = None

    @property
    def tracking(self) -> bool:
        return self._tracking

    @property
    def last_update_at(self) -> Optional[float]:
        return self._last_update_at

    @property
    def in_backoff(self) -> bool:
        if self._rate_limited_at is None:
            return False
        return self._timer.time() - self._rate_limited_at < self.config.rate_limit_backoff_seconds

    def start(self) -> None:
        if self._tracking or not self.config.enabled:
            return
        self._tracking = True
        self._initial.schedule(0.0, self.send_heartbeat)
        self._schedule_interval()
        if self._lifecycle_source is not None:
            self._unsubscribe = self._lifecycle_source.on_became_active(
                self._on_became_active, (TriggerKind.FOCUS, TriggerKind.VISIBILITY)
            )
        logger.info("✅ Activity tracking started")

    def stop(self) -> None:
        if not self._tracking:
            return
        self._tracking = False
        self._initial.cancel()
        self._interval.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._pending = None
        self._last_trigger_at.clear()
        self._rate_limited_at = None
        logger.info("🛑 Activity tracking stopped")

    def _schedule_interval(self) -> None:
        self._interval.schedule(self.config.update_interval_seconds, self._on_interval)

    def _on_interval(self) -> Optional[object]:
        if not self._tracking:
            return None
        self._schedule_interval()
        return self.send_heartbeat()

    async def note_user_interaction(self) -> Optional[int]:
        """Heartbeat if the update interval has passed since the last one."""
        if not self._tracking:
            return None
        now = self._timer.time()
        if self._last_update_at is not None and now - self._last_update_at < self.config.update_interval_seconds:
            return None
        return await self.send_heartbeat()

    def _on_became_active(self, trigger: RefreshTrigger) -> Optional[object]:
        now = self._timer.time()
        last = self._last_trigger_at.get(trigger.kind)
        if last is not None and now - last < self.config.focus_throttle_seconds:
            return None
        self._last_trigger_at[trigger.kind] = now
        return self.note_user_interaction()

    async def send_heartbeat(self) -> Optional[int]:
        """Post one heartbeat; joins the one in flight if there is one.

        Returns:
            The HTTP status code, or None when skipped or failed
        """
        if self._pending is not None and not self._pending.done():
            return await self._pending
        if not self._tracking:
            return None
        if self.in_backoff:
            logger.debug("Activity update skipped: rate limit backoff in effect")
            return None

        # Claim the slot before the first await so concurrent callers see it.
        self._last_update_at = self._timer.time()
        pending = asyncio.ensure_future(self._post())
        self._pending = pending
        try:
            return await pending
        finally:
            if self._pending is pending:
                self._pending = None

    async def _post(self) -> Optional[int]:
        try:
            status = await self._recorder.record_activity()
        except Exception as exc:
            self._last_update_at = None
            logger.warning(f"⚠️ Error updating activity: {exc}")
            metrics().activity_heartbeats.inc("error")
            return None

        if 200 <= status < 300:
            metrics().activity_heartbeats.inc("ok")
        elif status == 401:
            logger.warning("⚠️ Activity update unauthorized, session may have expired")
            metrics().activity_heartbeats.inc("unauthorized")
            self.stop()
        elif status == 429:
            self._rate_limited_at = self._timer.time()
            self._last_update_at = None
            logger.debug(f"Activity update rate limited; backing off {self.config.rate_limit_backoff_seconds:.0f}s")
            metrics().activity_heartbeats.inc("rate_limited")
        else:
            logger.warning(f"⚠️ Failed to update activity: {status}")
            metrics().activity_heartbeats.inc("failed")
        return status


__all__ = ["ActivityTracker"]
