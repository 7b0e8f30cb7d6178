"""
tests/test_telemetry.py - Scrubbing and fire-and-forget reporting
"""
from __future__ import annotations

import json

import pytest
from loguru import logger

from catalog_admin.core.telemetry import REDACTED, Telemetry, scrub


@pytest.fixture
def captured():
    messages: list[str] = []
    handler_id = logger.add(messages.append, format="{message}", level="DEBUG")
    yield messages
    logger.remove(handler_id)


def test_scrub_redacts_sensitive_keys_recursively():
    cleaned = scrub({
        "password": "hunter2",
        "nested": {"api_key": "abc", "Session_Token": "t", "name": "ok"},
        "items": [{"email": "a@b.c"}, {"count": 3}],
        "ip": "203.0.113.42",
    })
    assert cleaned["password"] == REDACTED
    assert cleaned["nested"] == {"api_key": REDACTED, "Session_Token": REDACTED, "name": "ok"}
    assert cleaned["items"] == [{"email": REDACTED}, {"count": 3}]
    assert cleaned["ip"] == "203.0.113.xxx"


def test_capture_message_writes_scrubbed_record(captured):
    telemetry = Telemetry(enabled=True)
    telemetry.capture_message(
        "Rate limit exceeded",
        level="warning",
        tags={"component": "rate_limiter"},
        extra={"client_ip": "10.1.2.3", "secret": "s"},
    )
    record = json.loads(captured[-1])
    assert record["message"] == "Rate limit exceeded"
    assert record["extra"] == {"client_ip": "10.1.2.xxx", "secret": REDACTED}
    assert record["tags"]["component"] == "rate_limiter"
    assert telemetry.captured == 1


def test_capture_exception_includes_type(captured):
    telemetry = Telemetry(enabled=True)
    try:
        raise ConnectionError("db unreachable")
    except ConnectionError as exc:
        telemetry.capture_exception(exc, extra={"token": "x"})
    record = json.loads(captured[-1])
    assert record["error_type"] == "ConnectionError"
    assert record["extra"]["token"] == REDACTED
    assert "db unreachable" in record["stack_trace"]


def test_disabled_telemetry_is_noop(captured):
    telemetry = Telemetry(enabled=False)
    telemetry.capture_message("hello")
    telemetry.capture_exception(RuntimeError("x"))
    assert telemetry.captured == 0


def test_sampling(captured):
    telemetry = Telemetry(enabled=True, sample_rate=0.5, sampler=lambda: 0.9)
    telemetry.capture_message("dropped")
    assert telemetry.captured == 0

    telemetry = Telemetry(enabled=True, sample_rate=0.5, sampler=lambda: 0.1)
    telemetry.capture_message("kept")
    assert telemetry.captured == 1


def test_capture_never_raises():
    class Unserializable:
        def __repr__(self):
            raise RuntimeError("repr blew up")

        __str__ = __repr__

    telemetry = Telemetry(enabled=True)
    telemetry.capture_message("odd payload", extra={"value": Unserializable()})
