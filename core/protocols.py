"""
Type protocols and type aliases for the portal refresh-and-liveness core.

This module provides:
1. Protocol classes for the external collaborators (identity provider,
   activity endpoint, cache layer, navigation, user notification, storage)
2. Shared dataclasses exchanged across those seams
3. Type aliases for callbacks

Usage:
    from core.protocols import (
        IdentityProvider,
        ActivityCollaborator,
        Navigator,
        Notifier,
    )
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union, runtime_checkable

# =============================================================================
# Type Aliases
# =============================================================================

MaybeAwaitable = Union[Awaitable[Any], Any]
RefreshCallback = Callable[[], MaybeAwaitable]
Unsubscribe = Callable[[], None]
CacheKey = tuple[Hashable, ...]


# =============================================================================
# Shared Data Structures
# =============================================================================


@dataclass(frozen=True)
class Identity:
    """Authenticated identity as reported by the identity provider."""

    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


# =============================================================================
# Protocol Classes (Duck Typing with Type Safety)
# =============================================================================


@runtime_checkable
class IdentityProvider(Protocol):
    """Protocol for the identity/session provider.

    ``get_current_user`` returns ``None`` when nobody is signed in. It may raise
    ``IdentityProviderError`` for transient auth errors and
    ``SessionSupersededError`` when the credential was revoked server-side.
    """

    async def get_current_user(self) -> Optional[Identity]:
        """Resolve the currently authenticated identity."""
        ...

    async def sign_out(self) -> None:
        """Sign out of the identity provider."""
        ...


@runtime_checkable
class ActivityCollaborator(Protocol):
    """Protocol for the server-side activity ledger."""

    async def fetch_last_activity(self) -> Optional[float]:
        """Return the last recorded activity as epoch seconds, or None if unknown."""
        ...


@runtime_checkable
class ActivityRecorder(Protocol):
    """Protocol for posting activity heartbeats."""

    async def record_activity(self) -> int:
        """Post a heartbeat, returning the HTTP status code."""
        ...


@runtime_checkable
class ServerSessionTerminator(Protocol):
    """Protocol for an authenticated round-trip that clears the server session."""

    async def clear_server_session(self) -> bool:
        """Ask the server to drop the session cookie. Returns True on success."""
        ...


@runtime_checkable
class CacheInvalidator(Protocol):
    """Protocol for the cache/query layer used by refresh actions."""

    def invalidate(self, key: CacheKey) -> int:
        """Mark entries matching ``key`` stale. Returns the number affected."""
        ...


@runtime_checkable
class Navigator(Protocol):
    """Protocol for the host's router."""

    def current_path(self) -> str:
        """Return the path of the current route."""
        ...

    def redirect(self, path: str) -> None:
        """Navigate to ``path``."""
        ...


@runtime_checkable
class Notifier(Protocol):
    """Protocol for user-facing notifications."""

    def alert(self, message: str) -> None:
        """Show a blocking, one-time message to the user."""
        ...

    def warn_inactivity(self, seconds_remaining: float) -> None:
        """Warn that the session will expire soon due to inactivity."""
        ...


@runtime_checkable
class KeyValueStorage(Protocol):
    """Protocol for session-scoped string storage (like browser sessionStorage)."""

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        ...

    def set_item(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``."""
        ...

    def remove_item(self, key: str) -> None:
        """Delete ``key`` if present."""
        ...

    def clear(self) -> None:
        """Delete every key."""
        ...


__all__ = [
    "ActivityCollaborator",
    "ActivityRecorder",
    "CacheInvalidator",
    "CacheKey",
    "Identity",
    "IdentityProvider",
    "KeyValueStorage",
    "MaybeAwaitable",
    "Navigator",
    "Notifier",
    "RefreshCallback",
    "ServerSessionTerminator",
    "Unsubscribe",
]
