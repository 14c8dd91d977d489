"""
Shared pytest fixtures.

Factories build contracts with sensible defaults so each test only spells out
the fields it is about. HTTP-facing code is exercised against ``FakeSession``,
which serves canned JSON by URL substring.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
import requests

from journalq.contracts.activity import ActivityContext, RawActivity
from journalq.contracts.request import DateRange
from journalq.observability.telemetry import reset_counters, reset_latencies

T0 = datetime(2025, 3, 10, 9, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _reset_telemetry():
    reset_counters()
    reset_latencies()
    yield
    reset_counters()
    reset_latencies()


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, headers: dict | None = None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Stand-in for ``requests.Session``.

    ``routes`` maps a URL substring to a FakeResponse, an exception, or a list
    of either (served in order, last one repeats). The longest matching
    substring wins.
    """

    def __init__(self, routes: dict[str, Any]):
        self.routes = routes
        self.calls: list[tuple[str, str, dict | None]] = []

    def request(self, method, url, params=None, headers=None, json=None, timeout=None):
        self.calls.append((method, url, params))
        matches = [key for key in self.routes if key in url]
        if not matches:
            return FakeResponse(404, {"error": "no route"})
        key = max(matches, key=len)
        entry = self.routes[key]
        if isinstance(entry, list):
            current = entry[0] if len(entry) == 1 else entry.pop(0)
        else:
            current = entry
        if isinstance(current, Exception):
            raise current
        return current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def date_range():
    return DateRange(start=T0 - timedelta(days=7), end=T0 + timedelta(days=1))


@pytest.fixture
def make_context():
    def _make(activity_id: str = "github:pr:acme/api#1", **overrides: Any) -> ActivityContext:
        timestamp = overrides.pop("timestamp", T0)
        fields: dict[str, Any] = {
            "activity_id": activity_id,
            "timestamp": timestamp,
            "title": "Untitled",
            "date": timestamp.date().isoformat(),
            "source": activity_id.split(":", 1)[0],
            "source_subtype": "pr",
        }
        fields.update(overrides)
        return ActivityContext(**fields)

    return _make


@pytest.fixture
def make_raw():
    def _make(activity_id: str, source: str, title: str, **overrides: Any) -> RawActivity:
        return RawActivity(
            id=activity_id,
            source=source,
            title=title,
            timestamp=overrides.pop("timestamp", T0),
            description=overrides.pop("description", None),
            url=overrides.pop("url", None),
            raw=overrides.pop("raw", {}),
        )

    return _make


@pytest.fixture
def transport_error():
    return requests.ConnectionError("connection reset")
