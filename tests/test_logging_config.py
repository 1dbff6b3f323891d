"""Tests for the logging setup."""

import logging
import sys
import tempfile
from pathlib import Path

# Add project root to Python path to allow running script directly
sys.path.append(str(Path(__file__).parent.parent))

from config.config_schema import LoggingConfig
from logging_config import AlignedMessageFormatter, NameFilter, reset_logging, setup_logging
from testing.test_framework import TestSuite
from testing.test_utilities import create_standard_test_runner


def _record(message: str, level: int = logging.INFO, name: str = "core.refresh_scheduler") -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 10, message, None, None)


def test_multiline_messages_are_aligned() -> None:
    formatter = AlignedMessageFormatter(fmt="%(levelname)s %(message)s", use_color=False)
    assert formatter.format(_record("first\n   second")) == "INFO first\n     second"


def test_warning_colouring() -> None:
    formatter = AlignedMessageFormatter(fmt="%(message)s", use_color=True)
    assert "\033[93m" in formatter.format(_record("careful", logging.WARNING))
    assert "\033[" not in formatter.format(_record("fine", logging.INFO))


def test_name_filter_blocks_noisy_libraries() -> None:
    name_filter = NameFilter(["urllib3", "requests"])
    assert not name_filter.filter(_record("x", name="urllib3.connectionpool"))
    assert name_filter.filter(_record("x", name="core.session_liveness"))


def test_setup_is_idempotent() -> None:
    reset_logging()
    try:
        root = setup_logging(log_level="DEBUG")
        handler_count = len(root.handlers)
        setup_logging(log_level="WARNING")
        assert len(root.handlers) == handler_count
        ours = [h for h in root.handlers if isinstance(h.formatter, AlignedMessageFormatter)]
        assert ours and all(h.level == logging.WARNING for h in ours)
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        reset_logging()


def test_file_handler_from_settings() -> None:
    reset_logging()
    with tempfile.TemporaryDirectory() as tmp:
        log_file = Path(tmp) / "logs" / "portal.log"
        settings = LoggingConfig(log_level="INFO", log_file=log_file, enable_file_logging=True)
        try:
            setup_logging(settings=settings)
            logging.getLogger("core.session_liveness").info("Session monitoring active\nsecond line")
            for handler in logging.getLogger().handlers:
                handler.flush()
            content = log_file.read_text(encoding="utf-8")
            assert "Session monitoring active" in content
            assert "\033[" not in content, "File output is not coloured"
        finally:
            reset_logging()


def test_unknown_level_falls_back_to_info() -> None:
    reset_logging()
    try:
        root = setup_logging(log_level="CHATTY")
        ours = [h for h in root.handlers if isinstance(h.formatter, AlignedMessageFormatter)]
        assert ours[0].level == logging.INFO
    finally:
        reset_logging()


def logging_config_module_tests() -> bool:
    """Run tests for logging_config."""
    suite = TestSuite("Logging Configuration", "logging_config")
    suite.start_suite()

    suite.run_test(
        "Multi-line alignment",
        test_multiline_messages_are_aligned,
        functions_tested="AlignedMessageFormatter.format",
        expected_outcome="Continuation lines indented under the message start",
    )
    suite.run_test(
        "Level colours",
        test_warning_colouring,
        functions_tested="AlignedMessageFormatter._apply_level_color",
        expected_outcome="Warnings yellow, info plain",
    )
    suite.run_test(
        "Name filter",
        test_name_filter_blocks_noisy_libraries,
        functions_tested="NameFilter.filter",
        expected_outcome="Library records dropped",
    )
    suite.run_test(
        "Idempotent setup",
        test_setup_is_idempotent,
        functions_tested="setup_logging",
        expected_outcome="Second call only changes levels",
    )
    suite.run_test(
        "File handler",
        test_file_handler_from_settings,
        functions_tested="setup_logging",
        expected_outcome="Records written to the configured file",
    )
    suite.run_test(
        "Unknown level",
        test_unknown_level_falls_back_to_info,
        functions_tested="setup_logging",
        expected_outcome="INFO used",
    )

    return suite.finish_suite()


run_comprehensive_tests = create_standard_test_runner(logging_config_module_tests)


if __name__ == "__main__":
    sys.exit(0 if run_comprehensive_tests() else 1)
