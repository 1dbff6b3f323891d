#!/usr/bin/env python3

"""
core/session_liveness.py - Session liveness monitor.

Confirms that the current session is still authoritative and terminates it
when it is not. Phases:

    GRACE_PERIOD --(first check after the login grace window)--> MONITORING
    GRACE_PERIOD / MONITORING --(inactive, superseded, no user)--> INVALID

INVALID is terminal; a new login creates a new monitor.

Checks are driven by a recurring timer, one initial check shortly after
``start()``, and focus / visibility events (throttled, then debounced).
While the fresh-login marker is inside its grace window every check is a
no-op, so the page loads right after a login never reach the identity
provider or the activity endpoint.

Usage:
    monitor = start_session_liveness(identity_provider, navigator, activity=client)
    ...
    await monitor.logout()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Any, Optional

from config.config_manager import get_config_manager
from config.config_schema import LivenessConfig
from core.deferred_task import AsyncioTimerHost, DeferredTask, InFlightFlag, TimerHost, timer_sleep
from core.dirty_forms import DirtyFormRegistry, get_dirty_form_registry
from core.exceptions import ActivityCheckError, IdentityProviderError, SessionSupersededError
from core.lifecycle_events import LifecycleEventSource, RefreshTrigger, TriggerKind, get_lifecycle_source
from core.login_marker import LoginMarker, get_login_marker
from core.protocols import (
    ActivityCollaborator,
    Identity,
    IdentityProvider,
    Navigator,
    Notifier,
    ServerSessionTerminator,
    Unsubscribe,
)
from observability.metrics_registry import metrics

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    GRACE_PERIOD = "grace_period"
    MONITORING = "monitoring"
    INVALID = "invalid"


class InvalidationReason(str, Enum):
    """Why a session ended."""

    SESSION_INACTIVE = "SESSION_INACTIVE"
    SESSION_SUPERSEDED = "SESSION_SUPERSEDED"
    NO_AUTHENTICATED_USER = "NO_AUTHENTICATED_USER"
    USER_LOGOUT = "USER_LOGOUT"

    @property
    def message(self) -> str:
        return _REASON_MESSAGES[self]

    @property
    def alerts_user(self) -> bool:
        """Silent reasons redirect without a blocking message."""
        return self in (InvalidationReason.SESSION_INACTIVE, InvalidationReason.SESSION_SUPERSEDED)


_REASON_MESSAGES = {
    InvalidationReason.SESSION_INACTIVE: "Your session has expired due to inactivity. Please log in again.",
    InvalidationReason.SESSION_SUPERSEDED: (
        "You have been logged out because you logged in from another device. "
        "For security reasons, only one active session is allowed at a time."
    ),
    InvalidationReason.NO_AUTHENTICATED_USER: "Please log in to access this page.",
    InvalidationReason.USER_LOGOUT: "You have been logged out.",
}


@dataclass
class SessionState:
    """Snapshot of what the monitor currently believes about the session."""

    is_valid: bool = True
    phase: SessionPhase = SessionPhase.MONITORING
    last_checked_at: Optional[float] = None
    last_activity_at: Optional[float] = None
    login_at: Optional[float] = None
    grace_expires_at: Optional[float] = None
    invalid_reason: Optional[InvalidationReason] = None
    invalidated_at: Optional[float] = None


SessionInvalidCallback = Callable[[InvalidationReason, str], Any]
SleepFunction = Callable[[float], Awaitable[Any]]

_TIMEOUT_MARKERS = ("timeout", "timed out", "took too long")


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    text = str(error).lower()
    return any(marker in text for marker in _TIMEOUT_MARKERS)


async def wait_for_session(
    identity_provider: IdentityProvider,
    max_attempts: int = 3,
    delay_seconds: float = 0.3,
    sleep: Optional[SleepFunction] = None,
) -> Optional[Identity]:
    """
    Ask for the current user until one appears or the attempts run out.

    Right after sign-in the provider can briefly report nobody. Attempts are
    ``delay_seconds`` apart; after a timed-out lookup the wait is doubled.

    Args:
        identity_provider: Provider to query
        max_attempts: Lookups to make in total (at least 1)
        delay_seconds: Pause between lookups
        sleep: Awaitable pause, ``asyncio.sleep`` by default

    Returns:
        The first identity reported, or None when every lookup came back empty

    Raises:
        SessionSupersededError: at once, without further attempts
        IdentityProviderError: when the final lookup failed
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    pause = sleep or asyncio.sleep

    for attempt in range(1, max_attempts + 1):
        try:
            user = await identity_provider.get_current_user()
        except (IdentityProviderError, asyncio.TimeoutError, TimeoutError) as exc:
            if attempt == max_attempts:
                raise
            wait = delay_seconds * 2 if _is_timeout(exc) else delay_seconds
            logger.warning(f"⚠️ Session lookup {attempt}/{max_attempts} failed ({exc}), retrying in {wait:.1f}s")
            await pause(wait)
            continue

        if user is not None:
            if attempt > 1:
                logger.info(f"✅ Session confirmed on attempt {attempt}/{max_attempts}")
            return user
        if attempt < max_attempts:
            logger.debug(f"⏳ No session on attempt {attempt}/{max_attempts}, retrying in {delay_seconds:.1f}s")
            await pause(delay_seconds)

    logger.warning(f"❌ No session found after {max_attempts} attempts")
    return None


class LoggingNotifier:
    """Notifier used when the host supplies none: messages go to the log."""

    def alert(self, message: str) -> None:
        logger.warning(f"⚠️ {message}")

    def warn_inactivity(self, seconds_remaining: float) -> None:
        logger.warning(f"⏳ Session will expire in {seconds_remaining / 60:.0f} minutes due to inactivity")


class SessionLivenessMonitor:
    """Timer and event driven liveness state machine for one login."""

    def __init__(
        self,
        identity_provider: IdentityProvider,
        navigator: Navigator,
        *,
        activity: Optional[ActivityCollaborator] = None,
        notifier: Optional[Notifier] = None,
        login_marker: Optional[LoginMarker] = None,
        timer_host: Optional[TimerHost] = None,
        lifecycle_source: Optional[LifecycleEventSource] = None,
        config: Optional[LivenessConfig] = None,
        session_terminator: Optional[ServerSessionTerminator] = None,
        on_session_invalid: Optional[SessionInvalidCallback] = None,
        form_registry: Optional[DirtyFormRegistry] = None,
    ) -> None:
        self._identity = identity_provider
        self._navigator = navigator
        self._activity = activity
        self._notifier: Notifier = notifier or LoggingNotifier()
        self._timer: TimerHost = timer_host or AsyncioTimerHost()
        self._lifecycle_source = lifecycle_source
        self.config = config or get_config_manager().get_liveness_config()
        if login_marker is None:
            # Same storage and key as the login flow, configured grace and clock.
            shared = get_login_marker()
            login_marker = LoginMarker(
                storage=shared.storage,
                grace_period_seconds=self.config.grace_period_seconds,
                clock=self._timer.time,
                key=shared.key,
            )
        self._login_marker = login_marker
        self._terminator = session_terminator
        self._on_session_invalid = on_session_invalid
        self._form_registry = form_registry

        self._check_flag = InFlightFlag("session-check")
        self._invalidation_flag = InFlightFlag("session-invalidation")
        self._warning_shown = False
        self._started = False

        self._initial_check = DeferredTask(self._timer, "session-initial-check")
        self._interval_check = DeferredTask(self._timer, "session-interval-check")
        self._debouncers = {
            TriggerKind.FOCUS: DeferredTask(self._timer, "session-focus-debounce"),
            TriggerKind.VISIBILITY: DeferredTask(self._timer, "session-visibility-debounce"),
        }
        self._last_trigger_at: dict[TriggerKind, float] = {}
        self._unsubscribe: Optional[Unsubscribe] = None

        self._state = SessionState()
        login_at = self._login_marker.login_at()
        if login_at is not None:
            self._state.login_at = login_at
            self._state.grace_expires_at = login_at + self._login_marker.grace_period_seconds
        if self._login_marker.is_within_grace_period():
            self._state.phase = SessionPhase.GRACE_PERIOD

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def is_valid(self) -> bool:
        return self._state.is_valid

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    @property
    def session_state(self) -> SessionState:
        return replace(self._state)

    @property
    def started(self) -> bool:
        return self._started

    # ------------------------------------------------------------------
    # Drivers
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the initial check, the recurring timer and the focus/visibility listeners."""
        if self._started or self._state.phase is SessionPhase.INVALID:
            return
        self._started = True
        metrics().session_valid.set(self._state.is_valid)

        self._initial_check.schedule(self.config.initial_check_delay_seconds, self._run_scheduled_check)
        self._schedule_interval_check()

        kinds = []
        if self.config.check_on_focus:
            kinds.append(TriggerKind.FOCUS)
        if self.config.check_on_visibility:
            kinds.append(TriggerKind.VISIBILITY)
        if self._lifecycle_source is not None and kinds:
            self._unsubscribe = self._lifecycle_source.on_became_active(self._on_became_active, kinds)

        logger.debug(
            f"Session liveness monitor started (phase={self._state.phase.value}, "
            f"interval={self.config.effective_check_interval:.0f}s)"
        )

    def stop(self) -> None:
        """Cancel every timer and listener. Safe to call more than once."""
        self._started = False
        self._initial_check.cancel()
        self._interval_check.cancel()
        for debouncer in self._debouncers.values():
            debouncer.cancel()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _schedule_interval_check(self) -> None:
        self._interval_check.schedule(self.config.effective_check_interval, self._on_interval)

    def _on_interval(self) -> Any:
        if not self._started:
            return None
        self._schedule_interval_check()
        return self.check_now()

    def _run_scheduled_check(self) -> Any:
        if not self._started:
            return None
        return self.check_now()

    def _on_became_active(self, trigger: RefreshTrigger) -> None:
        if not self._started or self._state.phase is SessionPhase.INVALID:
            return
        debouncer = self._debouncers.get(trigger.kind)
        if debouncer is None:
            return

        now = self._timer.time()
        last = self._last_trigger_at.get(trigger.kind)
        if last is not None and now - last < self.config.min_trigger_spacing_seconds:
            logger.debug(f"Session check on {trigger.kind.value} throttled ({now - last:.0f}s since last)")
            return
        self._last_trigger_at[trigger.kind] = now
        debouncer.schedule(self.config.trigger_debounce_seconds, self._run_scheduled_check)

    # ------------------------------------------------------------------
    # Check procedure
    # ------------------------------------------------------------------

    async def check_now(self) -> bool:
        """Run one liveness check and return the resulting validity.

        Concurrent callers do not start a second check; they get the last
        known validity.
        """
        if self._state.phase is SessionPhase.INVALID:
            return False
        if not self._check_flag.try_acquire():
            return self._state.is_valid
        try:
            return await self._run_check()
        except Exception as exc:
            logger.error(f"Error checking session: {exc}", exc_info=True)
            metrics().liveness_checks.inc("error")
            return self._state.is_valid
        finally:
            self._check_flag.release()

    async def _run_check(self) -> bool:
        now = self._timer.time()

        if self._login_marker.is_within_grace_period():
            logger.debug("Skipping session validation - within login grace period")
            self._state.last_checked_at = now
            metrics().liveness_checks.inc("grace_period")
            return True

        if self._state.phase is SessionPhase.GRACE_PERIOD:
            self._state.phase = SessionPhase.MONITORING
            logger.info("🔄 Login grace period over; session monitoring active")

        try:
            user = await self._identity.get_current_user()
            if user is None and not self._on_auth_path():
                user = await self._wait_for_user()
        except SessionSupersededError as exc:
            logger.warning(f"🛑 Session superseded: {exc}")
            await self._invalidate(InvalidationReason.SESSION_SUPERSEDED)
            return False
        except IdentityProviderError as exc:
            logger.warning(f"⚠️ Auth error during session check: {exc}")
            metrics().liveness_checks.inc("identity_error")
            return self._state.is_valid

        if self._state.phase is SessionPhase.INVALID:
            return False

        if user is None:
            if self._on_auth_path():
                metrics().liveness_checks.inc("auth_path")
                return True
            await self._invalidate(InvalidationReason.NO_AUTHENTICATED_USER)
            return False

        last_activity = await self._fetch_last_activity()
        if self._state.phase is SessionPhase.INVALID:
            return False

        if last_activity is not None:
            self._state.last_activity_at = last_activity
            elapsed = self._timer.time() - last_activity
            timeout = self.config.inactivity_timeout_seconds

            if elapsed > timeout:
                logger.info(f"Session expired due to inactivity ({elapsed / 60:.0f} minutes)")
                await self._invalidate(InvalidationReason.SESSION_INACTIVE)
                return False

            if elapsed > self.config.inactivity_warning_seconds and not self._warning_shown:
                self._warning_shown = True
                self._warn_inactivity(timeout - elapsed)

        self._state.is_valid = True
        self._state.last_checked_at = now
        metrics().liveness_checks.inc("valid")
        return True

    async def _wait_for_user(self) -> Optional[Identity]:
        """Re-ask for the user before a missing one counts as signed out."""
        retries = self.config.session_wait_attempts - 1
        if retries < 1:
            return None
        delay = self.config.session_wait_delay_seconds
        sleep = partial(timer_sleep, self._timer)
        await sleep(delay)
        return await wait_for_session(self._identity, max_attempts=retries, delay_seconds=delay, sleep=sleep)

    async def _fetch_last_activity(self) -> Optional[float]:
        if self._activity is None:
            return None
        try:
            last_activity = await self._activity.fetch_last_activity()
        except ActivityCheckError as exc:
            logger.warning(f"⚠️ Error checking activity: {exc}")
            metrics().liveness_checks.inc("activity_error")
            return None
        if last_activity is None:
            logger.debug("No activity data available, skipping inactivity check")
        return last_activity

    def _on_auth_path(self) -> bool:
        path = self._navigator.current_path()
        return path in self.config.auth_paths or path.startswith(self.config.auth_path_prefixes)

    def _warn_inactivity(self, seconds_remaining: float) -> None:
        logger.info(f"⏳ Session will expire in {seconds_remaining / 60:.0f} minutes due to inactivity")
        try:
            self._notifier.warn_inactivity(seconds_remaining)
        except Exception as exc:
            logger.error(f"Inactivity warning failed: {exc}", exc_info=True)

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    async def handle_revocation(self) -> bool:
        """External "logged in elsewhere" signal. Returns False if already handled."""
        return await self._invalidate(InvalidationReason.SESSION_SUPERSEDED)

    async def logout(self) -> None:
        """User-initiated logout: no alert, storage cleared, always redirects."""
        handled = await self._invalidate(InvalidationReason.USER_LOGOUT)
        if not handled:
            self._navigate_to_login()
        try:
            self._login_marker.storage.clear()
        except OSError as exc:
            logger.warning(f"⚠️ Could not clear session storage: {exc}")
        if self._form_registry is not None:
            self._form_registry.clear()

    async def _invalidate(self, reason: InvalidationReason) -> bool:
        """Enter INVALID. Only the first caller performs the side effects."""
        if not self._invalidation_flag.try_acquire():
            logger.debug(f"Session invalidation ({reason.value}) already handled")
            return False

        self._state.is_valid = False
        self._state.phase = SessionPhase.INVALID
        self._state.invalid_reason = reason
        self._state.invalidated_at = self._timer.time()
        self.stop()

        metrics().session_invalidations.inc(reason.value)
        metrics().session_valid.set(False)
        logger.warning(f"🛑 Session invalidated: {reason.value}")

        if self._on_session_invalid is not None:
            try:
                result = self._on_session_invalid(reason, reason.message)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(f"on_session_invalid callback failed: {exc}", exc_info=True)

        try:
            await self._identity.sign_out()
        except Exception as exc:
            logger.error(f"Error signing out: {exc}", exc_info=True)

        if self.config.force_server_logout and self._terminator is not None:
            try:
                cleared = await self._terminator.clear_server_session()
            except Exception as exc:
                logger.warning(f"⚠️ Server session clear failed: {exc}")
            else:
                if not cleared:
                    logger.warning("⚠️ Server did not confirm session clear")

        self._login_marker.clear()

        if reason.alerts_user and self.config.show_alert:
            try:
                self._notifier.alert(reason.message)
            except Exception as exc:
                logger.error(f"Session alert failed: {exc}", exc_info=True)

        if self.config.redirect_on_invalid or reason is InvalidationReason.USER_LOGOUT:
            self._navigate_to_login()
        return True

    def _navigate_to_login(self) -> None:
        try:
            self._navigator.redirect(self.config.login_path)
        except Exception as exc:
            logger.error(f"Redirect to {self.config.login_path} failed: {exc}", exc_info=True)


def start_session_liveness(
    identity_provider: IdentityProvider,
    navigator: Navigator,
    **options: Any,
) -> SessionLivenessMonitor:
    """Create and start a monitor wired to the application defaults.

    Must be called from within a running event loop when the default
    ``AsyncioTimerHost`` is used.

    Args:
        identity_provider: Source of the current identity
        navigator: Host router used for the login redirect
        **options: Remaining ``SessionLivenessMonitor`` keyword arguments

    Returns:
        The started monitor (``is_valid``, ``check_now()``, ``logout()``)
    """
    options.setdefault("lifecycle_source", get_lifecycle_source())
    options.setdefault("form_registry", get_dirty_form_registry())
    monitor = SessionLivenessMonitor(identity_provider, navigator, **options)
    monitor.start()
    return monitor


__all__ = [
    "InvalidationReason",
    "LoggingNotifier",
    "SessionInvalidCallback",
    "SessionLivenessMonitor",
    "SessionPhase",
    "SessionState",
    "start_session_liveness",
    "wait_for_session",
]
