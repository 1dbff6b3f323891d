#!/usr/bin/env python3

"""
core/dirty_forms.py - Dirty-Form Registry

Process-wide ledger of which editable forms currently hold unsaved input.
The refresh scheduler consults it before every refresh so that a background
refetch never overwrites a form the user is still editing.

Each form id has exactly one legitimate writer (the owning form), so
last-writer-wins per key is sufficient; the lock only protects the dict.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class DirtyFormRegistry:
    """Maps form identifier -> dirty flag."""

    def __init__(self) -> None:
        self._entries: dict[str, bool] = {}
        self._lock = threading.Lock()

    def register(self, form_id: str) -> None:
        """Ensure an entry exists. Idempotent: an existing flag is kept."""
        with self._lock:
            if form_id not in self._entries:
                self._entries[form_id] = False
                logger.debug(f"Form registered: {form_id}")

    def mark_dirty(self, form_id: str, is_dirty: bool = True) -> None:
        """Overwrite the flag for ``form_id``. Unknown ids are ignored."""
        with self._lock:
            if form_id not in self._entries:
                logger.debug(f"mark_dirty ignored for unregistered form: {form_id}")
                return
            self._entries[form_id] = bool(is_dirty)

    def mark_saved(self, form_id: str) -> None:
        """Clear the dirty flag after a successful save."""
        self.mark_dirty(form_id, False)

    def unregister(self, form_id: str) -> None:
        """Remove the entry when the form unmounts."""
        with self._lock:
            if self._entries.pop(form_id, None) is not None:
                logger.debug(f"Form unregistered: {form_id}")

    def is_dirty(self, form_id: str) -> bool:
        with self._lock:
            return self._entries.get(form_id, False)

    def has_unsaved_forms(self) -> bool:
        """True iff any registered form reports unsaved input."""
        with self._lock:
            return any(self._entries.values())

    def unsaved_form_ids(self) -> set[str]:
        with self._lock:
            return {form_id for form_id, dirty in self._entries.items() if dirty}

    def registered_form_ids(self) -> set[str]:
        with self._lock:
            return set(self._entries)

    def clear(self) -> None:
        """Drop every entry (used on logout)."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, form_id: object) -> bool:
        with self._lock:
            return form_id in self._entries


# Module-level registry instance
_registry: Optional[DirtyFormRegistry] = None
_registry_lock = threading.Lock()


def get_dirty_form_registry() -> DirtyFormRegistry:
    """Get or create the application's registry instance."""
    global _registry  # noqa: PLW0603
    with _registry_lock:
        if _registry is None:
            _registry = DirtyFormRegistry()
        return _registry


__all__ = ["DirtyFormRegistry", "get_dirty_form_registry"]
