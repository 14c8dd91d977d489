"""
Base class shared by all tool adapters.

An adapter turns ``(access_token, date_range)`` into a list of RawActivity.
It owns HTTP status mapping and retries, and nothing else: no normalization,
no ranking.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar

import requests

from journalq.config import (
    TOOL_FETCH_MAX_ATTEMPTS,
    TOOL_FETCH_MAX_ITEMS,
    TOOL_FETCH_TIMEOUT_SECONDS,
    TOOL_RATE_LIMIT_MAX_WAIT_SECONDS,
)
from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.infrastructure.retry import RetryPolicy
from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter, log_event, time_block
from journalq.tools.errors import AuthExpiredError, RateLimitError, ToolFetchError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolFetchResult:
    tool_type: ToolType
    activities: list[RawActivity] = field(default_factory=list)
    self_identifier: str | None = None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings, epoch seconds (Slack ``ts``) or datetimes.

    Returns None for anything unparseable. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        parsed = datetime.fromtimestamp(float(value), tz=UTC)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromtimestamp(float(value), tz=UTC)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            except ValueError:
                return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _retry_after_seconds(response: requests.Response) -> float | None:
    header = response.headers.get("Retry-After")
    if not header:
        return None
    try:
        return max(0.0, float(header))
    except ValueError:
        return None


class ToolAdapter:
    """Thin ``requests`` client for one external tool.

    Subclasses set ``tool_type`` and implement ``_fetch``. They call
    ``_get``/``_post`` which map HTTP failures to the typed errors in
    ``journalq.tools.errors`` and retry transport failures.
    """

    tool_type: ClassVar[ToolType]
    base_url: ClassVar[str] = ""

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = TOOL_FETCH_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy | None = None,
        max_items: int = TOOL_FETCH_MAX_ITEMS,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_items = max_items
        self.retry_policy = retry_policy or RetryPolicy(
            stage=f"tools.{self.tool_type.value}",
            max_attempts=TOOL_FETCH_MAX_ATTEMPTS,
            max_rate_limit_wait=TOOL_RATE_LIMIT_MAX_WAIT_SECONDS,
        )

    def fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        """Fetch raw activity for the date range.

        Raises:
            ToolFetchError (or a subclass) when the tool cannot be read.
        """
        tool = self.tool_type.value
        with time_block(f"tools.{tool}.fetch"):
            result = self._fetch(access_token, date_range)
        counter(f"tools.{tool}.items", len(result.activities))
        log_event("tool_fetch_complete", tool=tool, items=len(result.activities))
        return result

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        raise NotImplementedError

    # ------------------------------------------------------------------ HTTP

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    def _get(
        self,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        return self.retry_policy.execute(
            self._send_once, "GET", path, access_token, params=params, headers=headers
        )

    def _post(
        self,
        path: str,
        access_token: str,
        json_body: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return self.retry_policy.execute(
            self._send_once, "POST", path, access_token, params=params, json_body=json_body
        )

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}{path}"

    def _send_once(
        self,
        method: str,
        path: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> Any:
        tool = self.tool_type.value
        merged_headers = self._auth_headers(access_token)
        if headers:
            merged_headers.update(headers)
        try:
            response = self.session.request(
                method,
                self._url(path),
                params=params,
                headers=merged_headers,
                json=json_body,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            counter(f"tools.{tool}.transport_error")
            raise ToolFetchError(tool, "transport", f"{tool}: {type(exc).__name__}") from exc

        status = response.status_code
        if status in (401, 403):
            counter(f"tools.{tool}.auth_expired")
            raise AuthExpiredError(tool, status_code=status)
        if status == 429:
            counter(f"tools.{tool}.rate_limited")
            raise RateLimitError(tool, retry_after=_retry_after_seconds(response))
        if status >= 500:
            raise ToolFetchError(tool, "transport", f"{tool}: HTTP {status}", status_code=status)
        if status >= 400:
            raise ToolFetchError(tool, "bad_request", f"{tool}: HTTP {status}", status_code=status)

        try:
            return response.json()
        except ValueError as exc:
            raise ToolFetchError(tool, "invalid_response", f"{tool}: body is not JSON") from exc

    # --------------------------------------------------------------- helpers

    def _make_activity(
        self,
        activity_id: str,
        title: str | None,
        timestamp: Any,
        description: str | None = None,
        url: str | None = None,
        raw: dict[str, Any] | None = None,
    ) -> RawActivity | None:
        """Build a RawActivity, or None when the item has no usable timestamp."""
        parsed = parse_timestamp(timestamp)
        if parsed is None:
            counter(f"tools.{self.tool_type.value}.dropped_no_timestamp")
            return None
        return RawActivity(
            id=f"{self.tool_type.value}:{activity_id}",
            source=self.tool_type.value,
            title=(title or "").strip() or "(untitled)",
            timestamp=parsed,
            description=description,
            url=url,
            raw=raw or {},
        )

    def _collect(self, candidates: list[RawActivity | None]) -> list[RawActivity]:
        activities = [a for a in candidates if a is not None]
        seen: set[str] = set()
        unique: list[RawActivity] = []
        for activity in activities:
            if activity.id in seen:
                continue
            seen.add(activity.id)
            unique.append(activity)
        return unique[: self.max_items]
