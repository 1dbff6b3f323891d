"""Testing Infrastructure Package.

Provides testing utilities including:
- test_framework: TestSuite runner and output helpers
- test_utilities: standard runner factory and asyncio bridge
- fake_timers: virtual-time TimerHost
- protocol_mocks: in-memory collaborator implementations
"""

from typing import Any

_SUBMODULES = frozenset(["test_framework", "test_utilities", "fake_timers", "protocol_mocks"])


def __getattr__(name: str) -> Any:
    """Lazy import submodules on attribute access."""
    if name in _SUBMODULES:
        import importlib

        return importlib.import_module(f".{name}", __name__)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:
    """List available submodules."""
    return list(_SUBMODULES)
