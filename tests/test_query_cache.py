"""Tests for the query cache and its prefix invalidation."""

import sys
from pathlib import Path

# Add project root to Python path to allow running script directly
sys.path.append(str(Path(__file__).parent.parent))

from core.query_cache import QueryCache, get_query_cache
from testing.test_framework import TestSuite, suppress_logging
from testing.test_utilities import create_standard_test_runner


def test_set_and_get() -> None:
    cache = QueryCache()
    cache.set(("staff", "reports", 7), ["r1"])
    assert cache.get(("staff", "reports", 7)) == ["r1"]
    assert cache.get(("staff", "reports", 8), default="missing") == "missing"
    assert not cache.is_stale(("staff", "reports", 7))


def test_prefix_invalidation_marks_matching_entries() -> None:
    cache = QueryCache()
    cache.set(("staff", "reports", 1), "a")
    cache.set(("staff", "reports", 2), "b")
    cache.set(("staff", "roster"), "c")

    assert cache.invalidate(("staff", "reports")) == 2
    assert cache.is_stale(("staff", "reports", 1))
    assert cache.is_stale(("staff", "reports", 2))
    assert not cache.is_stale(("staff", "roster"))
    # Stale entries stay readable until refetched
    assert cache.get(("staff", "reports", 1)) == "a"


def test_key_normalization() -> None:
    cache = QueryCache()
    cache.set(["admin", "users"], 1)
    assert cache.get(("admin", "users")) == 1
    cache.set("flat", 2)
    assert cache.get(("flat",)) == 2
    assert cache.invalidate("admin") == 1


def test_missing_entries_are_stale() -> None:
    cache = QueryCache()
    assert cache.is_stale(("nothing",))
    assert cache.invalidate(("nothing",)) == 0


def test_unhashable_key_rejected() -> None:
    cache = QueryCache()
    try:
        cache.set({"bad": "key"}, 1)
    except TypeError:
        pass
    else:
        raise AssertionError("dict keys should be rejected")


def test_remove_and_clear() -> None:
    cache = QueryCache()
    cache.set(("a",), 1)
    cache.set(("b",), 2)
    cache.remove(("a",))
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0


def test_module_cache_is_shared() -> None:
    assert get_query_cache() is get_query_cache()


def query_cache_module_tests() -> bool:
    """Run tests for core.query_cache."""
    with suppress_logging():
        suite = TestSuite("Query Cache", "core.query_cache")
        suite.start_suite()

        suite.run_test(
            "Set/get",
            test_set_and_get,
            functions_tested="QueryCache.set, get, is_stale",
            expected_outcome="Fresh value returned",
        )
        suite.run_test(
            "Prefix invalidation",
            test_prefix_invalidation_marks_matching_entries,
            test_summary="Invalidate ('staff', 'reports')",
            functions_tested="QueryCache.invalidate",
            expected_outcome="Only entries under the prefix become stale",
        )
        suite.run_test(
            "Key normalization",
            test_key_normalization,
            functions_tested="QueryCache key handling",
            expected_outcome="Lists and scalars map onto tuple keys",
        )
        suite.run_test(
            "Missing entries",
            test_missing_entries_are_stale,
            functions_tested="QueryCache.is_stale",
            expected_outcome="Missing counts as stale",
        )
        suite.run_test(
            "Unhashable keys",
            test_unhashable_key_rejected,
            functions_tested="QueryCache.set",
            expected_outcome="TypeError",
        )
        suite.run_test(
            "Remove/clear",
            test_remove_and_clear,
            functions_tested="QueryCache.remove, clear",
            expected_outcome="Entries removed",
        )
        suite.run_test(
            "Module singleton",
            test_module_cache_is_shared,
            functions_tested="get_query_cache",
            expected_outcome="Same instance on every call",
        )

        return suite.finish_suite()


run_comprehensive_tests = create_standard_test_runner(query_cache_module_tests)


if __name__ == "__main__":
    sys.exit(0 if run_comprehensive_tests() else 1)
