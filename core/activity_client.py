#!/usr/bin/env python3

"""
Session API Client - activity endpoint and server-side session clear.

Talks to the portal's session endpoints over a shared ``requests.Session``:

- ``GET  {activity_path}`` -> ``{"last_activity": "<ISO-8601>" | null}``
- ``POST {activity_path}`` records a heartbeat
- ``POST {logout_path}``   drops the server-side session cookie

The blocking calls are exposed as ``*_sync`` methods; the async methods run
them in the default executor so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException
from urllib3.util.retry import Retry

from config.config_manager import get_config_manager
from config.config_schema import APIConfig
from core.exceptions import ActivityCheckError

logger = logging.getLogger(__name__)

HeaderProvider = Callable[[], Optional[dict[str, str]]]

_FRACTION = re.compile(r"(\d{2}:\d{2}:\d{2})\.(\d+)")


def parse_activity_timestamp(raw: Any) -> float:
    """Convert an ISO-8601 string (or epoch seconds) to epoch seconds.

    Naive timestamps are taken as UTC. Fractional seconds of any length are
    padded or truncated to microseconds before parsing.

    Raises:
        ActivityCheckError: if ``raw`` cannot be interpreted
    """
    if isinstance(raw, bool):
        raise ActivityCheckError(f"Invalid last_activity value: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    if not isinstance(raw, str):
        raise ActivityCheckError(f"Invalid last_activity value: {raw!r}")
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise ActivityCheckError(f"Invalid last_activity timestamp: {raw!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


class SessionApiClient:
    """
    Client for the portal's session endpoints.

    Implements the ActivityCollaborator, ActivityRecorder and
    ServerSessionTerminator protocols.
    """

    def __init__(
        self,
        config: Optional[APIConfig] = None,
        header_provider: Optional[HeaderProvider] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or get_config_manager().get_api_config()
        self._header_provider = header_provider
        self._requests_session = session or requests.Session()
        self._setup_requests_session()
        logger.debug(f"SessionApiClient initialized for {self.config.base_url}")

    def _setup_requests_session(self) -> None:
        """Configure the requests session with retry strategy (idempotent GETs only)."""
        retry_strategy = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.retry_backoff_factor,
            status_forcelist=self.config.retry_status_codes,
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(pool_connections=4, pool_maxsize=8, max_retries=retry_strategy)
        self._requests_session.mount("http://", adapter)
        self._requests_session.mount("https://", adapter)
        logger.debug("Requests session configured with retry strategy.")

    def _url(self, path: str) -> str:
        return self.config.base_url.rstrip("/") + path

    def _headers(self) -> dict[str, str]:
        headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if self._header_provider is not None:
            extra = self._header_provider()
            if extra:
                headers.update(extra)
        return headers

    # ------------------------------------------------------------------
    # Blocking calls
    # ------------------------------------------------------------------

    def fetch_last_activity_sync(self) -> Optional[float]:
        """
        Read the server's last-activity timestamp.

        Returns:
            Epoch seconds, or None when unknown (401 or ``last_activity: null``)

        Raises:
            ActivityCheckError: on network failures, non-2xx answers other than 401,
                and malformed payloads
        """
        url = self._url(self.config.activity_path)
        try:
            response = self._requests_session.get(url, headers=self._headers(), timeout=self.config.request_timeout)
        except RequestException as e:
            raise ActivityCheckError(f"Activity check request failed: {e}", context={"url": url}) from e

        if response.status_code == 401:
            logger.debug("Activity endpoint returned 401 - user may not be authenticated")
            return None
        if not response.ok:
            raise ActivityCheckError(
                f"Activity check returned non-ok status: {response.status_code}",
                status_code=response.status_code,
                context={"url": url},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ActivityCheckError("Activity endpoint returned invalid JSON", context={"url": url}) from e

        raw = payload.get("last_activity") if isinstance(payload, dict) else None
        if raw is None:
            return None
        return parse_activity_timestamp(raw)

    def record_activity_sync(self) -> int:
        """
        Post an activity heartbeat.

        Returns:
            The HTTP status code

        Raises:
            ActivityCheckError: when the request could not be sent
        """
        url = self._url(self.config.activity_path)
        try:
            response = self._requests_session.post(url, headers=self._headers(), timeout=self.config.request_timeout)
        except RequestException as e:
            raise ActivityCheckError(f"Activity update request failed: {e}", context={"url": url}) from e
        logger.debug(f"Activity update answered {response.status_code}")
        return response.status_code

    def clear_server_session_sync(self) -> bool:
        """Ask the server to drop the session cookie. Returns True on a 2xx answer."""
        url = self._url(self.config.logout_path)
        try:
            response = self._requests_session.post(url, headers=self._headers(), timeout=self.config.request_timeout)
        except RequestException as e:
            logger.warning(f"⚠️ Server session clear failed: {e}")
            return False
        if not response.ok:
            logger.warning(f"⚠️ Server session clear returned {response.status_code}")
            return False
        logger.debug("Server session cleared")
        return True

    # ------------------------------------------------------------------
    # Async wrappers
    # ------------------------------------------------------------------

    async def fetch_last_activity(self) -> Optional[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.fetch_last_activity_sync)

    async def record_activity(self) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.record_activity_sync)

    async def clear_server_session(self) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.clear_server_session_sync)

    def close(self) -> None:
        self._requests_session.close()

    @property
    def requests_session(self) -> requests.Session:
        return self._requests_session


__all__ = ["HeaderProvider", "SessionApiClient", "parse_activity_timestamp"]
