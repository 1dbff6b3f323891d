"""Tests for the session endpoint client (HTTP layer mocked)."""

import sys
from pathlib import Path
from typing import Any, Optional
from unittest.mock import MagicMock

# Add project root to Python path to allow running script directly
sys.path.append(str(Path(__file__).parent.parent))

import requests

from config.config_schema import APIConfig
from core.activity_client import SessionApiClient, parse_activity_timestamp
from core.exceptions import ActivityCheckError
from core.protocols import ActivityCollaborator, ActivityRecorder, ServerSessionTerminator
from testing.test_framework import TestSuite, suppress_logging
from testing.test_utilities import create_standard_test_runner, run_async


def _response(status_code: int, payload: Any = None, json_error: Optional[Exception] = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = payload
    return response


def _client(**kwargs: Any) -> tuple[SessionApiClient, MagicMock]:
    session = MagicMock(spec=requests.Session)
    client = SessionApiClient(config=APIConfig(base_url="https://portal.example/"), session=session, **kwargs)
    return client, session


def test_parse_activity_timestamp_formats() -> None:
    assert parse_activity_timestamp("2024-01-01T00:00:00Z") == 1704067200.0
    assert parse_activity_timestamp("2024-01-01T00:00:00.500+00:00") == 1704067200.5
    assert parse_activity_timestamp("2024-01-01T01:00:00+01:00") == 1704067200.0
    assert parse_activity_timestamp("2024-01-01T00:00:00") == 1704067200.0, "Naive timestamps are UTC"
    assert parse_activity_timestamp(1704067200) == 1704067200.0

    for bad in ("yesterday", True, {"at": 1}):
        try:
            parse_activity_timestamp(bad)
        except ActivityCheckError:
            continue
        raise AssertionError(f"{bad!r} should be rejected")


def test_parse_activity_timestamp_short_fractions() -> None:
    assert parse_activity_timestamp("2024-05-01T10:20:30.1+00:00") == 1714558830.1
    assert parse_activity_timestamp("2024-05-01T10:20:30.12+00:00") == 1714558830.12
    assert parse_activity_timestamp("2024-05-01T10:20:30.1234Z") == 1714558830.1234
    assert parse_activity_timestamp("2024-05-01T10:20:30.12345") == 1714558830.12345
    assert parse_activity_timestamp("2024-05-01T10:20:30.123456789+00:00") == 1714558830.123456, "Truncated to microseconds"


def test_fetch_last_activity_success() -> None:
    client, session = _client()
    session.get.return_value = _response(200, {"last_activity": "2024-01-01T00:00:00Z"})

    assert client.fetch_last_activity_sync() == 1704067200.0
    args, kwargs = session.get.call_args
    assert args[0] == "https://portal.example/api/auth/activity"
    assert kwargs["timeout"] == 15
    assert kwargs["headers"]["Accept"] == "application/json"


def test_fetch_last_activity_unknown_values() -> None:
    client, session = _client()
    session.get.return_value = _response(200, {"last_activity": None})
    assert client.fetch_last_activity_sync() is None

    session.get.return_value = _response(200, ["unexpected"])
    assert client.fetch_last_activity_sync() is None

    session.get.return_value = _response(401)
    assert client.fetch_last_activity_sync() is None


def test_fetch_last_activity_errors() -> None:
    client, session = _client()

    session.get.return_value = _response(503)
    try:
        client.fetch_last_activity_sync()
    except ActivityCheckError as exc:
        assert exc.status_code == 503
    else:
        raise AssertionError("503 should raise")

    session.get.return_value = _response(200, json_error=ValueError("bad json"))
    try:
        client.fetch_last_activity_sync()
    except ActivityCheckError:
        pass
    else:
        raise AssertionError("Invalid JSON should raise")

    session.get.side_effect = requests.ConnectionError("refused")
    try:
        client.fetch_last_activity_sync()
    except ActivityCheckError as exc:
        assert isinstance(exc.__cause__, requests.ConnectionError)
    else:
        raise AssertionError("Network failure should raise")


def test_record_activity_returns_status() -> None:
    client, session = _client()
    session.post.return_value = _response(429)
    assert client.record_activity_sync() == 429
    assert session.post.call_args[0][0] == "https://portal.example/api/auth/activity"

    session.post.side_effect = requests.Timeout("slow")
    try:
        client.record_activity_sync()
    except ActivityCheckError:
        pass
    else:
        raise AssertionError("Timeout should raise")


def test_clear_server_session() -> None:
    client, session = _client()
    session.post.return_value = _response(204)
    assert client.clear_server_session_sync()
    assert session.post.call_args[0][0] == "https://portal.example/api/auth/logout"

    session.post.return_value = _response(500)
    assert not client.clear_server_session_sync()

    session.post.side_effect = requests.ConnectionError("refused")
    assert not client.clear_server_session_sync()


def test_header_provider_is_merged() -> None:
    client, session = _client(header_provider=lambda: {"Authorization": "Bearer abc"})
    session.get.return_value = _response(200, {"last_activity": None})
    client.fetch_last_activity_sync()
    headers = session.get.call_args[1]["headers"]
    assert headers["Authorization"] == "Bearer abc"
    assert headers["User-Agent"] == "portal-liveness/1.0"


def test_async_wrappers_run_in_executor() -> None:
    client, session = _client()
    session.get.return_value = _response(200, {"last_activity": 1704067200})
    session.post.return_value = _response(200)

    async def scenario() -> tuple[Optional[float], int, bool]:
        return (
            await client.fetch_last_activity(),
            await client.record_activity(),
            await client.clear_server_session(),
        )

    assert run_async(scenario) == (1704067200.0, 200, True)


def test_retry_adapter_covers_gets_only() -> None:
    client = SessionApiClient(config=APIConfig(max_retries=2))
    try:
        adapter = client.requests_session.get_adapter("https://portal.example")
        retry = adapter.max_retries
        assert retry.total == 2
        assert set(retry.allowed_methods) == {"GET"}
        assert 503 in retry.status_forcelist
    finally:
        client.close()


def test_client_satisfies_collaborator_protocols() -> None:
    client, _ = _client()
    assert isinstance(client, ActivityCollaborator)
    assert isinstance(client, ActivityRecorder)
    assert isinstance(client, ServerSessionTerminator)


def activity_client_module_tests() -> bool:
    """Run tests for core.activity_client."""
    with suppress_logging():
        suite = TestSuite("Session API Client", "core.activity_client")
        suite.start_suite()

        suite.run_test(
            "Timestamp parsing",
            test_parse_activity_timestamp_formats,
            functions_tested="parse_activity_timestamp",
            expected_outcome="ISO-8601 and epoch values parsed; garbage rejected",
        )
        suite.run_test(
            "Short and long fractional seconds",
            test_parse_activity_timestamp_short_fractions,
            functions_tested="parse_activity_timestamp",
            expected_outcome="1 to 9 fraction digits parse the same on every supported Python",
        )
        suite.run_test(
            "Fetch success",
            test_fetch_last_activity_success,
            functions_tested="SessionApiClient.fetch_last_activity_sync",
            method_description="requests.Session replaced by a MagicMock",
            expected_outcome="Epoch seconds from the JSON payload",
        )
        suite.run_test(
            "Unknown activity",
            test_fetch_last_activity_unknown_values,
            functions_tested="SessionApiClient.fetch_last_activity_sync",
            expected_outcome="None for null, odd payloads and 401",
        )
        suite.run_test(
            "Fetch errors",
            test_fetch_last_activity_errors,
            functions_tested="SessionApiClient.fetch_last_activity_sync",
            expected_outcome="ActivityCheckError for non-ok, bad JSON and network failures",
        )
        suite.run_test(
            "Record heartbeat",
            test_record_activity_returns_status,
            functions_tested="SessionApiClient.record_activity_sync",
            expected_outcome="HTTP status returned",
        )
        suite.run_test(
            "Server session clear",
            test_clear_server_session,
            functions_tested="SessionApiClient.clear_server_session_sync",
            expected_outcome="True only on 2xx",
        )
        suite.run_test(
            "Auth headers",
            test_header_provider_is_merged,
            functions_tested="SessionApiClient._headers",
            expected_outcome="Provider headers added to defaults",
        )
        suite.run_test(
            "Async wrappers",
            test_async_wrappers_run_in_executor,
            functions_tested="fetch_last_activity, record_activity, clear_server_session",
            expected_outcome="Same results as the blocking calls",
        )
        suite.run_test(
            "Retry strategy",
            test_retry_adapter_covers_gets_only,
            functions_tested="SessionApiClient._setup_requests_session",
            expected_outcome="urllib3 Retry mounted for GET only",
        )
        suite.run_test(
            "Protocol compliance",
            test_client_satisfies_collaborator_protocols,
            functions_tested="SessionApiClient",
            expected_outcome="Usable wherever the collaborator protocols are expected",
        )

        return suite.finish_suite()


run_comprehensive_tests = create_standard_test_runner(activity_client_module_tests)


if __name__ == "__main__":
    sys.exit(0 if run_comprehensive_tests() else 1)
