"""Tests for the dirty-form registry."""

import sys
from pathlib import Path

# Add project root to Python path to allow running script directly
sys.path.append(str(Path(__file__).parent.parent))

from core.dirty_forms import DirtyFormRegistry, get_dirty_form_registry
from testing.test_framework import TestSuite, suppress_logging
from testing.test_utilities import create_standard_test_runner


def test_register_is_idempotent() -> None:
    registry = DirtyFormRegistry()
    registry.register("grade-editor")
    registry.mark_dirty("grade-editor")
    registry.register("grade-editor")
    assert registry.is_dirty("grade-editor"), "Re-registering must keep the existing flag"
    assert len(registry) == 1


def test_unregistered_form_is_ignored() -> None:
    registry = DirtyFormRegistry()
    registry.mark_dirty("ghost")
    assert "ghost" not in registry
    assert not registry.has_unsaved_forms()


def test_has_unsaved_forms_tracks_any_dirty_entry() -> None:
    registry = DirtyFormRegistry()
    registry.register("attendance")
    registry.register("comments")
    assert not registry.has_unsaved_forms()

    registry.mark_dirty("comments")
    assert registry.has_unsaved_forms()
    assert registry.unsaved_form_ids() == {"comments"}

    registry.mark_saved("comments")
    assert not registry.has_unsaved_forms()
    assert registry.registered_form_ids() == {"attendance", "comments"}


def test_unregister_drops_dirty_state() -> None:
    registry = DirtyFormRegistry()
    registry.register("lesson-plan")
    registry.mark_dirty("lesson-plan")
    registry.unregister("lesson-plan")
    assert not registry.has_unsaved_forms()
    registry.unregister("lesson-plan")  # second unmount is harmless


def test_clear_empties_registry() -> None:
    registry = DirtyFormRegistry()
    for form_id in ("a", "b"):
        registry.register(form_id)
        registry.mark_dirty(form_id)
    registry.clear()
    assert len(registry) == 0
    assert not registry.has_unsaved_forms()


def test_module_registry_is_shared() -> None:
    assert get_dirty_form_registry() is get_dirty_form_registry()


def dirty_forms_module_tests() -> bool:
    """Run tests for core.dirty_forms."""
    with suppress_logging():
        suite = TestSuite("Dirty Form Registry", "core.dirty_forms")
        suite.start_suite()

        suite.run_test(
            "Register is idempotent",
            test_register_is_idempotent,
            test_summary="Registering an existing form keeps its flag",
            functions_tested="DirtyFormRegistry.register",
            expected_outcome="Dirty flag survives a second register",
        )
        suite.run_test(
            "Unknown forms ignored",
            test_unregistered_form_is_ignored,
            test_summary="mark_dirty on an unregistered id",
            functions_tested="DirtyFormRegistry.mark_dirty",
            expected_outcome="No entry is created",
        )
        suite.run_test(
            "Aggregate dirty state",
            test_has_unsaved_forms_tracks_any_dirty_entry,
            test_summary="has_unsaved_forms follows mark_dirty / mark_saved",
            functions_tested="has_unsaved_forms, unsaved_form_ids, mark_saved",
            expected_outcome="True while any form is dirty",
        )
        suite.run_test(
            "Unregister",
            test_unregister_drops_dirty_state,
            test_summary="Unmounting a dirty form",
            functions_tested="DirtyFormRegistry.unregister",
            expected_outcome="Registry no longer reports unsaved data",
        )
        suite.run_test(
            "Clear",
            test_clear_empties_registry,
            functions_tested="DirtyFormRegistry.clear",
            expected_outcome="Registry is empty",
        )
        suite.run_test(
            "Module singleton",
            test_module_registry_is_shared,
            functions_tested="get_dirty_form_registry",
            expected_outcome="Same instance on every call",
        )

        return suite.finish_suite()


run_comprehensive_tests = create_standard_test_runner(dirty_forms_module_tests)


if __name__ == "__main__":
    sys.exit(0 if run_comprehensive_tests() else 1)
