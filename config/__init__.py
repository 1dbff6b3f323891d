"""
Configuration Package - schema-based configuration for the refresh/liveness core.

Main components:
- ConfigManager: Handles configuration loading, validation, and management
- ConfigSchema: Type-safe configuration schemas with validation
"""

from .config_manager import ConfigManager, ValidationError, get_config_manager
from .config_schema import (
    ActivityConfig,
    APIConfig,
    ConfigSchema,
    LivenessConfig,
    LoggingConfig,
    ObservabilityConfig,
    RefreshConfig,
)

__all__ = [
    "APIConfig",
    "ActivityConfig",
    "ConfigManager",
    "ConfigSchema",
    "LivenessConfig",
    "LoggingConfig",
    "ObservabilityConfig",
    "RefreshConfig",
    "ValidationError",
    "get_config_manager",
]
