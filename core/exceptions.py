#!/usr/bin/env python3

"""
Exception hierarchy for the portal refresh-and-liveness core.

Errors are split the same way everywhere in the project:
- RetryableError: transient conditions (network, identity provider hiccups).
  Callers log them and keep their previous state.
- FatalError: conditions that must not be retried (session superseded,
  bad configuration, programming errors such as unknown consumers).
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)


class PortalCoreError(Exception):
    """Base exception class for all refresh/liveness core errors."""

    def __init__(self, message: str = "Portal core error", **kwargs: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = kwargs.get("context", {})
        self.recovery_hint: str | None = kwargs.get("recovery_hint")


class RetryableError(PortalCoreError):
    """Exception that indicates the operation can be retried on the next cycle."""

    def __init__(self, message: str = "Operation can be retried", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = kwargs.get("retry_after")


class FatalError(PortalCoreError):
    """Exception that indicates the operation should not be retried."""

    def __init__(self, message: str = "Fatal error occurred", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ActivityCheckError(RetryableError):
    """Raised when the activity collaborator cannot be reached or answers badly."""

    def __init__(self, message: str = "Activity check failed", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status_code: int | None = kwargs.get("status_code")


class IdentityProviderError(RetryableError):
    """Raised when the identity provider reports a (possibly temporary) auth error."""

    def __init__(self, message: str = "Identity provider error", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class SessionSupersededError(FatalError):
    """Raised when the credential was revoked because a newer session exists elsewhere."""

    def __init__(
        self,
        message: str = "Session superseded by a login on another device",
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.superseded_at = kwargs.get("superseded_at")


class ConfigurationError(FatalError):
    """Exception for invalid configuration values."""

    def __init__(self, message: str = "Configuration error occurred", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.config_section = kwargs.get("config_section")


class UnknownConsumerError(FatalError):
    """Raised when a trigger targets a consumer id that was never registered."""

    def __init__(self, consumer_id: str, **kwargs: Any) -> None:
        super().__init__(f"Unknown refresh consumer: {consumer_id}", **kwargs)
        self.consumer_id = consumer_id


__all__ = [
    "ActivityCheckError",
    "ConfigurationError",
    "FatalError",
    "IdentityProviderError",
    "PortalCoreError",
    "RetryableError",
    "SessionSupersededError",
    "UnknownConsumerError",
]
