#!/usr/bin/env python3

"""
core/refresh_scheduler.py - Throttled, unsaved-data-aware refresh scheduling.

Each data-owning view registers a RefreshPolicy. Lifecycle triggers (tab
visible again, window focused, manual) are turned into at most one refresh
per consumer at a time:

1. a refresh already in flight for the consumer wins; the trigger is dropped;
2. unsaved data (the policy's own check or any dirty form) skips the trigger
   without a retry;
3. if ``min_interval`` has elapsed since the last refresh the action runs:
   invalidate the policy's cache keys, await ``custom_refresh``, then await
   ``on_refresh``;
4. otherwise a single deferred retry is scheduled for exactly the remaining
   interval, replacing any earlier pending retry.

Usage:
    scheduler = RefreshScheduler(cache=query_cache, lifecycle_source=source)
    handle = scheduler.register(
        RefreshPolicy(
            consumer_id="staff-reports",
            min_interval_seconds=60,
            invalidation_keys=[("staff", "reports")],
            has_unsaved_data=lambda: editor.is_dirty,
        )
    )
    await handle.trigger()
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from config.config_manager import get_config_manager
from config.config_schema import RefreshConfig
from core.deferred_task import AsyncioTimerHost, DeferredTask, InFlightFlag, TimerHost
from core.dirty_forms import DirtyFormRegistry, get_dirty_form_registry
from core.exceptions import UnknownConsumerError
from core.lifecycle_events import LifecycleEventSource, RefreshTrigger, TriggerKind, get_lifecycle_source
from core.protocols import CacheInvalidator, CacheKey, RefreshCallback, Unsubscribe
from core.query_cache import get_query_cache
from core.refresh_monitor import RefreshMonitor, get_refresh_monitor
from observability.metrics_registry import metrics

logger = logging.getLogger(__name__)


class RefreshOutcome(str, Enum):
    """Result of one trigger."""

    EXECUTED = "executed"
    THROTTLED = "throttled"
    SKIPPED_UNSAVED = "skipped_unsaved"
    IN_PROGRESS = "in_progress"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RefreshPolicy:
    """Per-consumer refresh rules.

    ``min_interval_seconds=None`` means "use the scheduler's configured default".
    """

    consumer_id: str
    min_interval_seconds: Optional[float] = None
    has_unsaved_data: Optional[Callable[[], bool]] = None
    invalidation_keys: Sequence[CacheKey] = field(default_factory=tuple)
    custom_refresh: Optional[RefreshCallback] = None
    on_refresh: Optional[RefreshCallback] = None
    refresh_on_visibility: bool = True
    refresh_on_focus: bool = True

    def __post_init__(self) -> None:
        if not self.consumer_id:
            raise ValueError("consumer_id is required")
        if self.min_interval_seconds is not None and self.min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be non-negative")
        self.invalidation_keys = tuple(
            key if isinstance(key, tuple) else tuple(key) if isinstance(key, list) else (key,)
            for key in self.invalidation_keys
        )


@dataclass
class _ConsumerState:
    policy: RefreshPolicy
    min_interval: float
    in_flight: InFlightFlag
    deferred: DeferredTask
    last_refresh_at: Optional[float] = None
    unsubscribe: Optional[Unsubscribe] = None
    active: bool = True


class RefreshHandle:
    """What a registered consumer holds on to: a manual trigger and teardown."""

    def __init__(self, scheduler: RefreshScheduler, state: _ConsumerState) -> None:
        self._scheduler = scheduler
        self._state = state

    @property
    def consumer_id(self) -> str:
        return self._state.policy.consumer_id

    @property
    def active(self) -> bool:
        return self._state.active

    @property
    def last_refresh_at(self) -> Optional[float]:
        return self._state.last_refresh_at

    async def trigger(self) -> RefreshOutcome:
        """Manual refresh, subject to the same guard and throttle as lifecycle triggers."""
        return await self._scheduler._run_trigger(self._state, TriggerKind.MANUAL)

    def unregister(self) -> None:
        self._scheduler._retire(self._state)


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class RefreshScheduler:
    """Owns every registered consumer's refresh state."""

    def __init__(
        self,
        timer_host: Optional[TimerHost] = None,
        registry: Optional[DirtyFormRegistry] = None,
        cache: Optional[CacheInvalidator] = None,
        lifecycle_source: Optional[LifecycleEventSource] = None,
        monitor: Optional[RefreshMonitor] = None,
        config: Optional[RefreshConfig] = None,
    ) -> None:
        self._timer_host: TimerHost = timer_host or AsyncioTimerHost()
        self._registry = registry if registry is not None else get_dirty_form_registry()
        self._cache = cache
        self._lifecycle_source = lifecycle_source
        self.config = config or get_config_manager().get_refresh_config()
        if not self.config.monitor_enabled:
            # Recording off: leave any shared monitor untouched
            self._monitor = RefreshMonitor(enabled=False)
        else:
            self._monitor = monitor if monitor is not None else get_refresh_monitor()
        self._consumers: dict[str, _ConsumerState] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, policy: RefreshPolicy) -> RefreshHandle:
        """Register ``policy`` and subscribe it to lifecycle triggers."""
        with self._lock:
            previous = self._consumers.get(policy.consumer_id)
        if previous is not None:
            logger.warning(f"⚠️ Refresh consumer '{policy.consumer_id}' re-registered; replacing previous policy")
            self._retire(previous)

        min_interval = (
            policy.min_interval_seconds
            if policy.min_interval_seconds is not None
            else self.config.min_interval_seconds
        )
        state = _ConsumerState(
            policy=policy,
            min_interval=min_interval,
            in_flight=InFlightFlag(f"refresh:{policy.consumer_id}"),
            deferred=DeferredTask(self._timer_host, f"refresh-retry:{policy.consumer_id}"),
        )

        if policy.invalidation_keys and self._cache is None:
            logger.warning(
                f"⚠️ Refresh consumer '{policy.consumer_id}' has invalidation keys but no cache is configured"
            )

        kinds = self._enabled_kinds(policy)
        if self._lifecycle_source is not None and kinds:

            def _on_became_active(trigger: RefreshTrigger) -> Any:
                return self._run_trigger(state, trigger.kind)

            state.unsubscribe = self._lifecycle_source.on_became_active(_on_became_active, kinds)

        with self._lock:
            self._consumers[policy.consumer_id] = state

        logger.debug(
            f"Refresh consumer registered: {policy.consumer_id} "
            f"(min_interval={min_interval:.1f}s, triggers={[k.value for k in kinds]})"
        )
        return RefreshHandle(self, state)

    def _enabled_kinds(self, policy: RefreshPolicy) -> tuple[TriggerKind, ...]:
        kinds = []
        if policy.refresh_on_visibility and self.config.refresh_on_visibility:
            kinds.append(TriggerKind.VISIBILITY)
        if policy.refresh_on_focus and self.config.refresh_on_focus:
            kinds.append(TriggerKind.FOCUS)
        return tuple(kinds)

    def unregister(self, consumer_id: str) -> bool:
        """Tear down ``consumer_id``. Returns False if it was not registered."""
        with self._lock:
            state = self._consumers.get(consumer_id)
        if state is None:
            return False
        self._retire(state)
        return True

    def _retire(self, state: _ConsumerState) -> None:
        if not state.active:
            return
        state.active = False
        state.deferred.cancel()
        if state.unsubscribe is not None:
            state.unsubscribe()
            state.unsubscribe = None
        with self._lock:
            if self._consumers.get(state.policy.consumer_id) is state:
                del self._consumers[state.policy.consumer_id]
        logger.debug(f"Refresh consumer unregistered: {state.policy.consumer_id}")

    def close(self) -> None:
        """Unregister every consumer."""
        with self._lock:
            states = list(self._consumers.values())
        for state in states:
            self._retire(state)

    def consumer_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._consumers)

    def last_refresh_at(self, consumer_id: str) -> Optional[float]:
        with self._lock:
            state = self._consumers.get(consumer_id)
        if state is None:
            raise UnknownConsumerError(consumer_id)
        return state.last_refresh_at

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    async def trigger(self, consumer_id: str, kind: TriggerKind = TriggerKind.MANUAL) -> RefreshOutcome:
        """Consider a refresh of ``consumer_id`` caused by ``kind``.

        Raises:
            UnknownConsumerError: if ``consumer_id`` is not registered
        """
        with self._lock:
            state = self._consumers.get(consumer_id)
        if state is None:
            raise UnknownConsumerError(
                consumer_id,
                recovery_hint="Register a RefreshPolicy before triggering it",
            )
        return await self._run_trigger(state, kind)

    async def _run_trigger(self, state: _ConsumerState, kind: TriggerKind) -> RefreshOutcome:
        consumer_id = state.policy.consumer_id
        event_type = kind.value

        if not state.active:
            logger.debug(f"Refresh trigger ignored for unregistered consumer: {consumer_id}")
            return self._count(consumer_id, event_type, RefreshOutcome.CANCELLED)

        if state.in_flight.is_held:
            logger.debug(f"Refresh already in progress for {consumer_id}; {event_type} trigger dropped")
            return self._count(consumer_id, event_type, RefreshOutcome.IN_PROGRESS)

        if self._has_unsaved_data(state.policy):
            self._monitor.log_refresh(event_type, consumer_id, was_throttled=False, was_skipped=True)
            logger.info(f"⏸️ Refresh skipped for {consumer_id}: unsaved data present")
            return self._count(consumer_id, event_type, RefreshOutcome.SKIPPED_UNSAVED)

        now = self._timer_host.time()
        if state.last_refresh_at is not None:
            elapsed = now - state.last_refresh_at
            if elapsed < state.min_interval:
                delay = state.min_interval - elapsed
                state.deferred.schedule(delay, lambda: self._run_trigger(state, kind))
                self._monitor.log_refresh(event_type, consumer_id, was_throttled=True, was_skipped=False)
                logger.debug(f"⏳ Refresh throttled for {consumer_id}; retry in {delay:.1f}s")
                return self._count(consumer_id, event_type, RefreshOutcome.THROTTLED)

        if not state.in_flight.try_acquire():
            return self._count(consumer_id, event_type, RefreshOutcome.IN_PROGRESS)

        state.deferred.cancel()
        state.last_refresh_at = now
        try:
            await self._execute(state.policy)
        except Exception as exc:
            logger.error(f"❌ Refresh failed for {consumer_id} ({event_type}): {exc}", exc_info=True)
            return self._count(consumer_id, event_type, RefreshOutcome.FAILED)
        finally:
            state.in_flight.release()

        self._monitor.log_refresh(event_type, consumer_id, was_throttled=False, was_skipped=False)
        logger.debug(f"✅ Refresh executed for {consumer_id} ({event_type})")
        return self._count(consumer_id, event_type, RefreshOutcome.EXECUTED)

    def _has_unsaved_data(self, policy: RefreshPolicy) -> bool:
        if policy.has_unsaved_data is not None:
            try:
                if policy.has_unsaved_data():
                    return True
            except Exception as exc:
                # Treat an unknown dirty state as dirty.
                logger.error(f"Unsaved-data check failed for {policy.consumer_id}: {exc}", exc_info=True)
                return True
        return self._registry.has_unsaved_forms()

    async def _execute(self, policy: RefreshPolicy) -> None:
        if self._cache is not None:
            for key in policy.invalidation_keys:
                self._cache.invalidate(key)
        if policy.custom_refresh is not None:
            await _maybe_await(policy.custom_refresh())
        if policy.on_refresh is not None:
            await _maybe_await(policy.on_refresh())

    @staticmethod
    def _count(consumer_id: str, event_type: str, outcome: RefreshOutcome) -> RefreshOutcome:
        metrics().refresh_events.inc(consumer_id, event_type, outcome.value)
        return outcome


# Module-level scheduler instance
_default_scheduler: Optional[RefreshScheduler] = None
_scheduler_lock = threading.Lock()


def get_refresh_scheduler() -> RefreshScheduler:
    """Get or create the application's scheduler, wired to the default collaborators."""
    global _default_scheduler  # noqa: PLW0603
    with _scheduler_lock:
        if _default_scheduler is None:
            _default_scheduler = RefreshScheduler(
                cache=get_query_cache(),
                lifecycle_source=get_lifecycle_source(),
            )
        return _default_scheduler


def set_refresh_scheduler(scheduler: Optional[RefreshScheduler]) -> None:
    global _default_scheduler  # noqa: PLW0603
    with _scheduler_lock:
        _default_scheduler = scheduler


def register_refresh_policy(
    consumer_id: str,
    *,
    scheduler: Optional[RefreshScheduler] = None,
    **policy_options: Any,
) -> RefreshHandle:
    """Register a refresh policy and return its handle.

    Args:
        consumer_id: Unique name of the consuming view
        scheduler: Scheduler to register with (defaults to the application scheduler)
        **policy_options: Remaining ``RefreshPolicy`` fields

    Returns:
        RefreshHandle exposing ``trigger()`` and ``unregister()``
    """
    target = scheduler or get_refresh_scheduler()
    return target.register(RefreshPolicy(consumer_id=consumer_id, **policy_options))


__all__ = [
    "RefreshHandle",
    "RefreshOutcome",
    "RefreshPolicy",
    "RefreshScheduler",
    "get_refresh_scheduler",
    "register_refresh_policy",
    "set_refresh_scheduler",
]
