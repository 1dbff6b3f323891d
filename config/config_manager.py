#!/usr/bin/env python3

"""
Configuration Manager.

Builds a ``ConfigSchema`` from three layers, later layers winning:

1. schema defaults;
2. an optional JSON file (re-read when its mtime changes);
3. environment variables, after ``.env`` has been loaded with python-dotenv
   (set ``CONFIG_SKIP_DOTENV=1`` to leave the process environment untouched).

Every recognised variable is listed in ``ENV_BINDINGS``. Unparsable values are
logged and ignored so the layer below them applies; values that parse but
break a section's invariants fail the whole load with ``ValidationError``.
Loading a configuration also (re)configures Prometheus metrics.
"""

from __future__ import annotations

import copy
import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv

from config.config_schema import (
    ActivityConfig,
    APIConfig,
    ConfigSchema,
    LivenessConfig,
    LoggingConfig,
    ObservabilityConfig,
    RefreshConfig,
)
from observability.metrics_registry import configure_metrics

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


class ValidationError(Exception):
    """Raised when the merged configuration cannot be turned into a valid schema."""


def _as_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def _millis_to_seconds(raw: str) -> float:
    return float(raw) / 1000.0


@dataclass(frozen=True)
class EnvBinding:
    """Maps one environment variable onto ``section.key`` (section None = top level)."""

    env_var: str
    section: Optional[str]
    key: str
    parse: Callable[[str], Any] = str


ENV_BINDINGS: tuple[EnvBinding, ...] = (
    EnvBinding("ENVIRONMENT", None, "environment"),
    EnvBinding("DEBUG_MODE", None, "debug_mode", _as_bool),
    EnvBinding("REFRESH_MIN_INTERVAL_SECONDS", "refresh", "min_interval_seconds", float),
    EnvBinding("REFRESH_ON_VISIBILITY", "refresh", "refresh_on_visibility", _as_bool),
    EnvBinding("REFRESH_ON_FOCUS", "refresh", "refresh_on_focus", _as_bool),
    EnvBinding("REFRESH_MONITOR_ENABLED", "refresh", "monitor_enabled", _as_bool),
    EnvBinding("SESSION_GRACE_PERIOD_SECONDS", "liveness", "grace_period_seconds", float),
    EnvBinding("SESSION_CHECK_INTERVAL_SECONDS", "liveness", "check_interval_seconds", float),
    EnvBinding("INACTIVITY_TIMEOUT_MS", "liveness", "inactivity_timeout_seconds", _millis_to_seconds),
    EnvBinding("INACTIVITY_WARNING_MS", "liveness", "inactivity_warning_seconds", _millis_to_seconds),
    EnvBinding("SESSION_LOGIN_PATH", "liveness", "login_path"),
    EnvBinding("SESSION_REDIRECT_ON_INVALID", "liveness", "redirect_on_invalid", _as_bool),
    EnvBinding("SESSION_SHOW_ALERT", "liveness", "show_alert", _as_bool),
    EnvBinding("SESSION_FORCE_SERVER_LOGOUT", "liveness", "force_server_logout", _as_bool),
    EnvBinding("ACTIVITY_TRACKING_ENABLED", "activity", "enabled", _as_bool),
    EnvBinding("ACTIVITY_UPDATE_INTERVAL_SECONDS", "activity", "update_interval_seconds", float),
    EnvBinding("ACTIVITY_RATE_LIMIT_BACKOFF_SECONDS", "activity", "rate_limit_backoff_seconds", float),
    EnvBinding("PORTAL_BASE_URL", "api", "base_url"),
    EnvBinding("PORTAL_ACTIVITY_PATH", "api", "activity_path"),
    EnvBinding("PORTAL_LOGOUT_PATH", "api", "logout_path"),
    EnvBinding("PORTAL_REQUEST_TIMEOUT", "api", "request_timeout", int),
    EnvBinding("PORTAL_MAX_RETRIES", "api", "max_retries", int),
    EnvBinding("LOG_LEVEL", "logging", "log_level"),
    EnvBinding("LOG_FILE", "logging", "log_file", Path),
    EnvBinding("PROMETHEUS_METRICS_ENABLED", "observability", "enable_prometheus_metrics", _as_bool),
    EnvBinding("PROMETHEUS_METRICS_NAMESPACE", "observability", "metrics_namespace"),
)


def read_environment(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Collect every bound variable that is set into a nested config dict."""
    source = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for binding in ENV_BINDINGS:
        raw = source.get(binding.env_var)
        if raw is None or raw.strip() == "":
            continue
        try:
            value = binding.parse(raw.strip())
        except ValueError:
            logger.warning(f"⚠️ Ignoring {binding.env_var}={raw!r}: not a valid {binding.key}")
            continue
        target = overrides if binding.section is None else overrides.setdefault(binding.section, {})
        target[binding.key] = value

    # A log file implies file logging unless the file layer says otherwise
    if "log_file" in overrides.get("logging", {}):
        overrides["logging"].setdefault("enable_file_logging", True)
    return overrides


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` updated with ``override``, merging nested dicts key by key."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        merged[key] = deep_merge(current, value) if isinstance(current, dict) and isinstance(value, dict) else value
    return merged


class _ConfigManagerSingleton:
    instance: Optional[ConfigManager] = None


def get_config_manager(
    config_file: Optional[Union[str, Path]] = None,
    environment: Optional[str] = None,
    force_new: bool = False,
) -> ConfigManager:
    """
    Process-wide ConfigManager.

    ``config_file`` and ``environment`` only matter when the instance is
    created, i.e. on the first call or with ``force_new=True``.
    """
    if force_new or _ConfigManagerSingleton.instance is None:
        _ConfigManagerSingleton.instance = ConfigManager(config_file=config_file, environment=environment)
    return _ConfigManagerSingleton.instance


class ConfigManager:
    """
    Loads, validates and caches the refresh/liveness configuration.

    Usage:
        from config.config_manager import get_config_manager
        liveness = get_config_manager().get_liveness_config()
    """

    def __init__(
        self,
        config_file: Optional[Union[str, Path]] = None,
        environment: Optional[str] = None,
        auto_load: bool = True,
    ):
        if not _as_bool(os.getenv("CONFIG_SKIP_DOTENV", "")):
            load_dotenv()

        self.config_file = Path(config_file) if config_file else None
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self._cached: Optional[ConfigSchema] = None
        self._loaded_mtime: Optional[float] = None

        if auto_load:
            self.load_config()

    def load_config(self) -> ConfigSchema:
        """
        Rebuild the configuration from every layer.

        Raises:
            ValidationError: The merged values do not form a valid schema
        """
        layers: dict[str, Any] = {"environment": self.environment}
        layers = deep_merge(layers, self._read_config_file())
        layers = deep_merge(layers, read_environment())

        try:
            config = ConfigSchema.from_dict(layers)
        except (TypeError, ValueError) as e:
            logger.error(f"❌ Invalid configuration: {e}")
            raise ValidationError(f"Configuration loading failed: {e}") from e

        problems = config.validate()
        if problems:
            raise ValidationError(f"Configuration validation failed: {problems}")

        configure_metrics(config.observability)
        self._cached = config
        self._loaded_mtime = self._file_mtime()
        logger.debug(f"Configuration ready ({config.environment})")
        return config

    def get_config(self, reload_if_changed: bool = True) -> ConfigSchema:
        """Cached configuration; re-read first when the JSON file changed on disk."""
        if self._cached is None:
            return self.load_config()
        if reload_if_changed and self._file_changed():
            logger.info("🔄 Configuration file changed, reloading")
            return self.load_config()
        return self._cached

    def reload_config(self) -> ConfigSchema:
        self._cached = None
        self._loaded_mtime = None
        return self.load_config()

    def validate_config(self, config_data: Optional[dict[str, Any]] = None) -> list[str]:
        """Problems with ``config_data`` (or the active config); empty when valid."""
        if config_data is None:
            return self.get_config(reload_if_changed=False).validate()
        try:
            return ConfigSchema.from_dict(config_data).validate()
        except (TypeError, ValueError) as e:
            return [str(e)]

    def export_config(self, output_file: Union[str, Path]) -> bool:
        """Write the active configuration as JSON. Returns False on I/O errors."""
        data = self.get_config(reload_if_changed=False).to_dict()
        try:
            Path(output_file).write_text(json.dumps(data, indent=2, default=str), encoding="utf-8")
        except OSError as e:
            logger.error(f"Could not export configuration to {output_file}: {e}")
            return False
        return True

    def _read_config_file(self) -> dict[str, Any]:
        if self.config_file is None or not self.config_file.exists():
            return {}
        if self.config_file.suffix.lower() != ".json":
            logger.warning(f"⚠️ Only JSON config files are supported, skipping {self.config_file}")
            return {}
        try:
            data = json.loads(self.config_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read {self.config_file}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _file_mtime(self) -> Optional[float]:
        if self.config_file is None or not self.config_file.exists():
            return None
        return self.config_file.stat().st_mtime

    def _file_changed(self) -> bool:
        mtime = self._file_mtime()
        return mtime is not None and (self._loaded_mtime is None or mtime > self._loaded_mtime)

    def get_refresh_config(self) -> RefreshConfig:
        return self.get_config().refresh

    def get_liveness_config(self) -> LivenessConfig:
        return self.get_config().liveness

    def get_activity_config(self) -> ActivityConfig:
        return self.get_config().activity

    def get_api_config(self) -> APIConfig:
        return self.get_config().api

    def get_logging_config(self) -> LoggingConfig:
        return self.get_config().logging

    def get_observability_config(self) -> ObservabilityConfig:
        return self.get_config().observability


__all__ = [
    "ENV_BINDINGS",
    "ConfigManager",
    "EnvBinding",
    "ValidationError",
    "deep_merge",
    "get_config_manager",
    "read_environment",
]
