"""
Slack adapter: messages the user posted in the date range.

The Web API always answers HTTP 200; failures come back as ``{"ok": false,
"error": ...}`` envelopes, which are mapped onto the same typed errors as
HTTP statuses elsewhere.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.tools.base import ToolAdapter, ToolFetchResult
from journalq.tools.errors import AuthExpiredError, RateLimitError, ToolFetchError

AUTH_ERRORS = frozenset(
    {"invalid_auth", "token_expired", "token_revoked", "not_authed", "account_inactive"}
)


class SlackAdapter(ToolAdapter):
    tool_type = ToolType.SLACK
    base_url = "https://slack.com/api"

    def _call(self, method: str, access_token: str, params: dict[str, Any] | None = None) -> dict:
        return self.retry_policy.execute(self._call_once, method, access_token, params)

    def _call_once(
        self, method: str, access_token: str, params: dict[str, Any] | None
    ) -> dict[str, Any]:
        data = self._send_once("GET", f"/{method}", access_token, params=params) or {}
        if data.get("ok", False):
            return data
        error = data.get("error") or "unknown_error"
        tool = self.tool_type.value
        if error in AUTH_ERRORS:
            raise AuthExpiredError(tool, f"{tool}: {error}")
        if error == "ratelimited":
            raise RateLimitError(tool)
        raise ToolFetchError(tool, "api_error", f"{tool}: {error}")

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        identity = self._call("auth.test", access_token)
        user_id = identity.get("user_id")
        user_name = identity.get("user")

        # Slack date modifiers are exclusive on both ends.
        after = date_range.start.date() - timedelta(days=1)
        before = date_range.end.date() + timedelta(days=1)
        query = f"from:<@{user_id}> after:{after.isoformat()} before:{before.isoformat()}"
        data = self._call(
            "search.messages",
            access_token,
            params={"query": query, "count": self.max_items, "sort": "timestamp"},
        )
        matches = (data.get("messages") or {}).get("matches") or []
        activities = [self._message_activity(match) for match in matches]
        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(activities),
            self_identifier=user_name,
        )

    def _message_activity(self, match: dict[str, Any]) -> RawActivity | None:
        channel = match.get("channel") or {}
        text = match.get("text") or ""
        reactions = [
            {"name": r.get("name"), "count": r.get("count") or 0}
            for r in match.get("reactions") or []
            if isinstance(r, dict) and r.get("name")
        ]
        raw = {
            "author": match.get("username") or match.get("user"),
            "parent_author": match.get("parent_user_name"),
            "mentions": list(match.get("mentions") or []),
            "reactions": reactions or None,
            "thread_ts": match.get("thread_ts"),
            "channel": channel.get("name"),
            "reply_count": match.get("reply_count"),
            "text": text,
        }
        first_line = text.splitlines()[0] if text else ""
        title = f"#{channel.get('name')}: {first_line}" if channel.get("name") else first_line
        return self._make_activity(
            activity_id=f"{channel.get('id')}:{match.get('ts')}",
            title=title[:120],
            timestamp=match.get("ts"),
            description=text or None,
            url=match.get("permalink"),
            raw=raw,
        )
