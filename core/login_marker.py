#!/usr/bin/env python3

"""
core/login_marker.py - Fresh-login marker and grace-period bookkeeping.

The login flow calls ``mark_fresh_login()``; the liveness monitor asks
``is_within_grace_period()`` before every check. While the marker is younger
than the grace period, liveness checks are skipped so that the page loads
right after a login are never mistaken for "logged in elsewhere".

The query has a side effect: once the grace period has elapsed the marker is
removed, so later queries are cheap and consistent.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Optional, Union

from core.protocols import KeyValueStorage

logger = logging.getLogger(__name__)

FRESH_LOGIN_KEY = "fresh_login_timestamp"
DEFAULT_GRACE_PERIOD_SECONDS = 300.0


class InMemoryStorage:
    """Process-local KeyValueStorage (the equivalent of browser sessionStorage)."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.Lock()

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class JsonFileStorage:
    """KeyValueStorage persisted to a small JSON file, surviving process restarts."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"⚠️ Unreadable storage file {self.path}: {exc}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove_item(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                self._write(data)

    def clear(self) -> None:
        with self._lock:
            if self.path.exists():
                self._write({})


class LoginMarker:
    """Reads and writes the fresh-login timestamp in a KeyValueStorage."""

    def __init__(
        self,
        storage: Optional[KeyValueStorage] = None,
        grace_period_seconds: float = DEFAULT_GRACE_PERIOD_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        key: str = FRESH_LOGIN_KEY,
    ) -> None:
        if grace_period_seconds < 0:
            raise ValueError("grace_period_seconds must be non-negative")
        self.storage: KeyValueStorage = storage if storage is not None else InMemoryStorage()
        self.grace_period_seconds = grace_period_seconds
        self._clock = clock or time.time
        self.key = key

    def mark_fresh_login(self) -> float:
        """Record "a login just happened" and return the login timestamp."""
        login_at = self._clock()
        try:
            self.storage.set_item(self.key, repr(login_at))
        except OSError as exc:
            logger.warning(f"Could not mark fresh login: {exc}")
        else:
            logger.debug(f"Fresh login marked at {login_at:.3f}")
        return login_at

    def clear(self) -> None:
        try:
            self.storage.remove_item(self.key)
        except OSError as exc:
            logger.debug(f"Could not clear fresh login marker: {exc}")

    def login_at(self) -> Optional[float]:
        """The stored login timestamp, or None when absent or unparsable."""
        try:
            raw = self.storage.get_item(self.key)
        except OSError as exc:
            logger.debug(f"Could not read fresh login marker: {exc}")
            return None
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            logger.warning(f"⚠️ Discarding malformed fresh login marker: {raw!r}")
            self.clear()
            return None

    def grace_expires_at(self) -> Optional[float]:
        login_at = self.login_at()
        if login_at is None:
            return None
        return login_at + self.grace_period_seconds

    def is_within_grace_period(self) -> bool:
        """True while the marker is younger than the grace period; clears it afterwards."""
        login_at = self.login_at()
        if login_at is None:
            return False

        elapsed = self._clock() - login_at
        if elapsed < self.grace_period_seconds:
            logger.debug(f"Session validation: within grace period ({elapsed:.1f}s since login)")
            return True

        self.clear()
        return False


# Module-level marker instance
_default_marker: Optional[LoginMarker] = None
_marker_lock = threading.Lock()


def get_login_marker() -> LoginMarker:
    """Get or create the application's default LoginMarker."""
    global _default_marker  # noqa: PLW0603
    with _marker_lock:
        if _default_marker is None:
            _default_marker = LoginMarker()
        return _default_marker


def set_login_marker(marker: Optional[LoginMarker]) -> None:
    """Replace the default marker (e.g. with a JsonFileStorage-backed one)."""
    global _default_marker  # noqa: PLW0603
    with _marker_lock:
        _default_marker = marker


def mark_fresh_login() -> float:
    """Called by the login flow on success to open the grace window."""
    return get_login_marker().mark_fresh_login()


def clear_fresh_login_marker() -> None:
    get_login_marker().clear()


def is_within_login_grace_period() -> bool:
    return get_login_marker().is_within_grace_period()


__all__ = [
    "DEFAULT_GRACE_PERIOD_SECONDS",
    "FRESH_LOGIN_KEY",
    "InMemoryStorage",
    "JsonFileStorage",
    "LoginMarker",
    "clear_fresh_login_marker",
    "get_login_marker",
    "is_within_login_grace_period",
    "mark_fresh_login",
    "set_login_marker",
]
