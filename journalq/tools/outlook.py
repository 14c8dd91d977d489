"""
Outlook adapter (Microsoft Graph): calendar meetings and sent mail.
"""

from __future__ import annotations

from typing import Any

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.tools.base import ToolAdapter, ToolFetchResult, parse_timestamp


def _name(recipient: dict[str, Any] | None) -> str | None:
    address = (recipient or {}).get("emailAddress") or {}
    return address.get("name") or address.get("address")


def _duration_minutes(start: Any, end: Any) -> int | None:
    start_at = parse_timestamp(start)
    end_at = parse_timestamp(end)
    if start_at is None or end_at is None or end_at < start_at:
        return None
    return int((end_at - start_at).total_seconds() // 60)


class OutlookAdapter(ToolAdapter):
    tool_type = ToolType.OUTLOOK
    base_url = "https://graph.microsoft.com/v1.0"

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        me = self._get("/me", access_token) or {}
        start = date_range.start.isoformat()
        end = date_range.end.isoformat()

        events = self._get(
            "/me/calendarView",
            access_token,
            params={
                "startDateTime": start,
                "endDateTime": end,
                "$top": self.max_items,
                "$orderby": "start/dateTime",
            },
        )
        sent = self._get(
            "/me/mailFolders/sentitems/messages",
            access_token,
            params={
                "$filter": f"sentDateTime ge {start} and sentDateTime le {end}",
                "$top": self.max_items,
                "$orderby": "sentDateTime desc",
            },
        )

        candidates: list[RawActivity | None] = []
        candidates.extend(self._event_activity(e) for e in (events or {}).get("value") or [])
        candidates.extend(self._mail_activity(m) for m in (sent or {}).get("value") or [])
        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(candidates),
            self_identifier=me.get("displayName") or me.get("mail"),
        )

    def _event_activity(self, event: dict[str, Any]) -> RawActivity | None:
        start = (event.get("start") or {}).get("dateTime")
        end = (event.get("end") or {}).get("dateTime")
        raw = {
            "kind": "meeting",
            "organizer": _name(event.get("organizer")),
            "attendees": [n for n in (_name(a) for a in event.get("attendees") or []) if n],
            "duration": _duration_minutes(start, end),
            "recurring": event.get("type") in ("occurrence", "seriesMaster"),
            "online": bool(event.get("isOnlineMeeting")),
        }
        return self._make_activity(
            activity_id=f"event:{event.get('id')}",
            title=event.get("subject"),
            timestamp=start,
            url=event.get("webLink"),
            raw=raw,
        )

    def _mail_activity(self, message: dict[str, Any]) -> RawActivity | None:
        raw = {
            "kind": "email",
            "from": _name(message.get("from")),
            "to": [n for n in (_name(r) for r in message.get("toRecipients") or []) if n],
            "cc": [n for n in (_name(r) for r in message.get("ccRecipients") or []) if n],
            "subject": message.get("subject"),
            "body_preview": message.get("bodyPreview"),
        }
        return self._make_activity(
            activity_id=f"mail:{message.get('id')}",
            title=message.get("subject"),
            timestamp=message.get("sentDateTime"),
            description=message.get("bodyPreview"),
            url=message.get("webLink"),
            raw=raw,
        )
