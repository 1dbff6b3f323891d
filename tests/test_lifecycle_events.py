"""Tests for the host-neutral lifecycle event source."""

import sys
from pathlib import Path

# Add project root to Python path to allow running script directly
sys.path.append(str(Path(__file__).parent.parent))

from core.lifecycle_events import LifecycleEventSource, RefreshTrigger, TriggerKind, get_lifecycle_source
from testing.test_framework import TestSuite, suppress_logging
from testing.test_utilities import create_standard_test_runner, run_async


def test_only_hidden_to_visible_is_published() -> None:
    async def scenario() -> None:
        source = LifecycleEventSource(clock=lambda: 42.0)
        received: list[RefreshTrigger] = []
        source.on_became_active(received.append)

        await source.notify_visibility_change(True)
        assert received == [], "Already visible: no transition"

        await source.notify_visibility_change(False)
        assert not source.is_visible
        await source.notify_visibility_change(True)
        assert [t.kind for t in received] == [TriggerKind.VISIBILITY]
        assert received[0].timestamp == 42.0

    run_async(scenario)


def test_kind_filter_and_unsubscribe() -> None:
    async def scenario() -> None:
        source = LifecycleEventSource()
        focus_only: list[TriggerKind] = []
        unsubscribe = source.on_became_active(lambda t: focus_only.append(t.kind), kinds=(TriggerKind.FOCUS,))

        await source.notify_visibility_change(False)
        await source.notify_visibility_change(True)
        await source.notify_focus()
        assert focus_only == [TriggerKind.FOCUS]

        unsubscribe()
        unsubscribe()
        assert source.listener_count == 0
        await source.notify_focus()
        assert focus_only == [TriggerKind.FOCUS]

    run_async(scenario)


def test_async_listeners_awaited_and_failures_isolated() -> None:
    async def scenario() -> None:
        source = LifecycleEventSource()
        seen: list[str] = []

        async def async_listener(trigger: RefreshTrigger) -> None:
            seen.append(f"async:{trigger.kind.value}")

        def failing_listener(trigger: RefreshTrigger) -> None:
            raise RuntimeError("listener bug")

        async def failing_async_listener(trigger: RefreshTrigger) -> None:
            raise RuntimeError("async listener bug")

        source.on_became_active(failing_listener)
        source.on_became_active(failing_async_listener)
        source.on_became_active(async_listener)

        await source.notify_focus()
        assert seen == ["async:focus"]

    run_async(scenario)


def test_module_source_is_shared() -> None:
    assert get_lifecycle_source() is get_lifecycle_source()


def lifecycle_events_module_tests() -> bool:
    """Run tests for core.lifecycle_events."""
    with suppress_logging():
        suite = TestSuite("Lifecycle Event Source", "core.lifecycle_events")
        suite.start_suite()

        suite.run_test(
            "Visibility transitions",
            test_only_hidden_to_visible_is_published,
            functions_tested="LifecycleEventSource.notify_visibility_change",
            expected_outcome="Only hidden -> visible emits a trigger",
        )
        suite.run_test(
            "Kind filter",
            test_kind_filter_and_unsubscribe,
            functions_tested="LifecycleEventSource.on_became_active",
            expected_outcome="Focus-only listener ignores visibility; unsubscribe stops delivery",
        )
        suite.run_test(
            "Listener isolation",
            test_async_listeners_awaited_and_failures_isolated,
            functions_tested="LifecycleEventSource.emit",
            expected_outcome="Failing listeners do not affect others",
        )
        suite.run_test(
            "Module singleton",
            test_module_source_is_shared,
            functions_tested="get_lifecycle_source",
            expected_outcome="Same instance on every call",
        )

        return suite.finish_suite()


run_comprehensive_tests = create_standard_test_runner(lifecycle_events_module_tests)


if __name__ == "__main__":
    sys.exit(0 if run_comprehensive_tests() else 1)
