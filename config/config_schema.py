#!/usr/bin/env python3

"""
Configuration Schema Definitions.

This module defines type-safe configuration schemas for the refresh and
session-liveness core using dataclasses validated in ``__post_init__``.
All durations are seconds unless a field name says otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


class EnvironmentType(Enum):
    """Supported environment types."""

    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class RefreshConfig:
    """Refresh scheduler configuration schema."""

    # Minimum spacing between two executions of the same consumer
    min_interval_seconds: float = 30.0
    refresh_on_visibility: bool = True
    refresh_on_focus: bool = True

    # Refresh event recorder on/off (diagnostics only)
    monitor_enabled: bool = True

    def __post_init__(self) -> None:
        """Reject intervals that would make throttling meaningless."""
        if self.min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be non-negative")


@dataclass
class LivenessConfig:
    """Session liveness monitor configuration schema."""

    check_interval_seconds: float = 60.0
    # Effective timer interval is max(check_interval_seconds, check_interval_floor_seconds)
    check_interval_floor_seconds: float = 120.0
    initial_check_delay_seconds: float = 5.0
    trigger_debounce_seconds: float = 2.0
    min_trigger_spacing_seconds: float = 60.0

    grace_period_seconds: float = 300.0
    inactivity_timeout_seconds: float = 1800.0
    inactivity_warning_seconds: float = 1500.0

    # Lookups before a missing user counts as signed out; waits double after a timeout
    session_wait_attempts: int = 3
    session_wait_delay_seconds: float = 0.3

    login_path: str = "/login"
    auth_paths: tuple[str, ...] = ("/login", "/signup")
    auth_path_prefixes: tuple[str, ...] = ("/auth",)

    redirect_on_invalid: bool = True
    show_alert: bool = True
    force_server_logout: bool = True
    check_on_focus: bool = True
    check_on_visibility: bool = True

    def __post_init__(self) -> None:
        """Grace, timeout and warning must be ordered and positive."""
        if self.check_interval_seconds <= 0:
            raise ValueError("check_interval_seconds must be positive")
        if self.check_interval_floor_seconds < 0:
            raise ValueError("check_interval_floor_seconds must be non-negative")
        if self.initial_check_delay_seconds < 0:
            raise ValueError("initial_check_delay_seconds must be non-negative")
        if self.trigger_debounce_seconds < 0:
            raise ValueError("trigger_debounce_seconds must be non-negative")
        if self.min_trigger_spacing_seconds < 0:
            raise ValueError("min_trigger_spacing_seconds must be non-negative")
        if self.grace_period_seconds < 0:
            raise ValueError("grace_period_seconds must be non-negative")
        if self.inactivity_timeout_seconds <= 0:
            raise ValueError("inactivity_timeout_seconds must be positive")
        if not 0 <= self.inactivity_warning_seconds <= self.inactivity_timeout_seconds:
            raise ValueError("inactivity_warning_seconds must be between 0 and inactivity_timeout_seconds")
        if self.session_wait_attempts < 1:
            raise ValueError("session_wait_attempts must be at least 1")
        if self.session_wait_delay_seconds < 0:
            raise ValueError("session_wait_delay_seconds must be non-negative")
        if not self.login_path.startswith("/"):
            raise ValueError("login_path must start with /")
        self.auth_paths = tuple(self.auth_paths)
        self.auth_path_prefixes = tuple(self.auth_path_prefixes)

    @property
    def effective_check_interval(self) -> float:
        return max(self.check_interval_seconds, self.check_interval_floor_seconds)


@dataclass
class ActivityConfig:
    """Activity heartbeat configuration schema."""

    enabled: bool = True
    update_interval_seconds: float = 300.0
    focus_throttle_seconds: float = 30.0
    rate_limit_backoff_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.update_interval_seconds <= 0:
            raise ValueError("update_interval_seconds must be positive")
        if self.focus_throttle_seconds < 0:
            raise ValueError("focus_throttle_seconds must be non-negative")
        if self.rate_limit_backoff_seconds < 0:
            raise ValueError("rate_limit_backoff_seconds must be non-negative")


@dataclass
class APIConfig:
    """Portal API configuration schema."""

    base_url: str = "http://localhost:3000"
    activity_path: str = "/api/auth/activity"
    logout_path: str = "/api/auth/logout"

    request_timeout: int = 15
    max_retries: int = 3
    retry_backoff_factor: float = 0.5
    user_agent: str = "portal-liveness/1.0"

    retry_status_codes: list[int] = field(default_factory=lambda: [500, 502, 503, 504])

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ValueError("base_url is required")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        if not self.activity_path.startswith("/") or not self.logout_path.startswith("/"):
            raise ValueError("API paths must start with /")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.retry_backoff_factor < 0:
            raise ValueError("retry_backoff_factor must be non-negative")


@dataclass
class LoggingConfig:
    """Logging configuration schema."""

    log_level: str = "INFO"
    log_file: Optional[Path] = None
    log_format: str = "%(asctime)s %(levelname).3s [%(name)-12s %(lineno)-4d] %(message)s"
    date_format: str = "%H:%M:%S"
    enable_file_logging: bool = False

    def __post_init__(self) -> None:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        self.log_level = self.log_level.upper()
        if self.log_level not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        if self.log_file is not None and not isinstance(self.log_file, Path):
            self.log_file = Path(self.log_file)


@dataclass
class ObservabilityConfig:
    """Prometheus metrics configuration schema."""

    enable_prometheus_metrics: bool = False
    metrics_namespace: str = "portal"

    def __post_init__(self) -> None:
        if self.enable_prometheus_metrics and not self.metrics_namespace:
            raise ValueError("metrics_namespace is required when metrics are enabled")


_SECTION_TYPES: dict[str, type] = {
    "refresh": RefreshConfig,
    "liveness": LivenessConfig,
    "activity": ActivityConfig,
    "api": APIConfig,
    "logging": LoggingConfig,
    "observability": ObservabilityConfig,
}


@dataclass
class ConfigSchema:
    """Main configuration schema that combines all sub-schemas."""

    environment: str = "development"
    debug_mode: bool = False

    # Sub-configurations (must come last due to default_factory)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    liveness: LivenessConfig = field(default_factory=LivenessConfig)
    activity: ActivityConfig = field(default_factory=ActivityConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def __post_init__(self) -> None:
        """Only known environment names are accepted."""
        valid_environments = [env.value for env in EnvironmentType]
        if self.environment not in valid_environments:
            raise ValueError(f"environment must be one of: {valid_environments}")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        result: dict[str, Any] = {}

        for field_name in self.__dataclass_fields__:
            value = getattr(self, field_name)
            if hasattr(value, "__dataclass_fields__"):
                result[field_name] = {
                    sub_field: getattr(value, sub_field)
                    for sub_field in value.__dataclass_fields__
                }
            else:
                result[field_name] = value

        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConfigSchema:
        """Create configuration from dictionary."""
        sections = {
            name: section_type(**data.get(name, {}))
            for name, section_type in _SECTION_TYPES.items()
        }
        main_data = {k: v for k, v in data.items() if k not in _SECTION_TYPES}
        return cls(**sections, **main_data)

    def validate(self) -> list[str]:
        """
        Validate the entire configuration.

        Returns:
            List of validation error messages
        """
        errors: list[str] = []

        for name, section_type in _SECTION_TYPES.items():
            try:
                section_type(**getattr(self, name).__dict__)
            except ValueError as e:
                errors.append(f"{name}: {e}")

        try:
            self.__post_init__()
        except ValueError as e:
            errors.append(str(e))

        return errors


__all__ = [
    "APIConfig",
    "ActivityConfig",
    "ConfigSchema",
    "EnvironmentType",
    "LivenessConfig",
    "LoggingConfig",
    "ObservabilityConfig",
    "RefreshConfig",
]
