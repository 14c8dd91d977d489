"""
Google Workspace adapters: Calendar events, Docs and Sheets.

Docs and Sheets both come from Drive v3 (files modified in the range plus their
comments); Sheets additionally reads the tab list from Sheets v4.
"""

from __future__ import annotations

from typing import Any

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.observability.logging import get_logger
from journalq.tools.base import ToolAdapter, ToolFetchResult, parse_timestamp
from journalq.tools.errors import AuthExpiredError, ToolFetchError

logger = get_logger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
DOC_MIME_TYPE = "application/vnd.google-apps.document"
SHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"


def _person(value: dict[str, Any] | None) -> str | None:
    if not value:
        return None
    return value.get("displayName") or value.get("emailAddress") or value.get("email")


class GoogleCalendarAdapter(ToolAdapter):
    tool_type = ToolType.GOOGLE_CALENDAR
    base_url = "https://www.googleapis.com/calendar/v3"

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        data = self._get(
            "/calendars/primary/events",
            access_token,
            params={
                "timeMin": date_range.start.isoformat(),
                "timeMax": date_range.end.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": self.max_items,
            },
        )
        self_identifier = (data or {}).get("summary")
        activities = [self._event_activity(e) for e in (data or {}).get("items") or []]
        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(activities),
            self_identifier=self_identifier,
        )

    def _event_activity(self, event: dict[str, Any]) -> RawActivity | None:
        start = (event.get("start") or {}).get("dateTime") or (event.get("start") or {}).get("date")
        end = (event.get("end") or {}).get("dateTime") or (event.get("end") or {}).get("date")
        start_at, end_at = parse_timestamp(start), parse_timestamp(end)
        duration = None
        if start_at and end_at and end_at >= start_at:
            duration = int((end_at - start_at).total_seconds() // 60)
        raw = {
            "organizer": _person(event.get("organizer")),
            "attendees": [p for p in (_person(a) for a in event.get("attendees") or []) if p],
            "duration": duration,
            "recurring": bool(event.get("recurringEventId") or event.get("recurrence")),
            "has_conference": bool(event.get("hangoutLink") or event.get("conferenceData")),
        }
        return self._make_activity(
            activity_id=str(event.get("id")),
            title=event.get("summary"),
            timestamp=start,
            description=event.get("description"),
            url=event.get("htmlLink"),
            raw=raw,
        )


class _DriveAdapter(ToolAdapter):
    mime_type: str = ""

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        about = self._get(
            "https://www.googleapis.com/drive/v3/about", access_token, params={"fields": "user"}
        ) or {}
        query = (
            f"mimeType = '{self.mime_type}' and trashed = false "
            f"and modifiedTime >= '{date_range.start.isoformat()}' "
            f"and modifiedTime <= '{date_range.end.isoformat()}'"
        )
        data = self._get(
            DRIVE_FILES_URL,
            access_token,
            params={
                "q": query,
                "pageSize": self.max_items,
                "orderBy": "modifiedTime desc",
                "fields": (
                    "files(id,name,modifiedTime,createdTime,webViewLink,version,"
                    "owners(displayName,emailAddress),lastModifyingUser(displayName,emailAddress))"
                ),
            },
        )
        activities = []
        for item in (data or {}).get("files") or []:
            comments = self._comments(access_token, item["id"])
            activities.append(self._file_activity(access_token, item, comments))
        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(activities),
            self_identifier=_person((about or {}).get("user")),
        )

    def _comments(self, access_token: str, file_id: str) -> list[dict[str, Any]]:
        try:
            data = self._get(
                f"{DRIVE_FILES_URL}/{file_id}/comments",
                access_token,
                params={"fields": "comments(author(displayName),content)", "pageSize": 20},
            )
        except AuthExpiredError:
            raise
        except ToolFetchError as exc:
            logger.warning("%s: comment fetch failed (%s)", self.tool_type.value, exc.reason)
            return []
        return [
            {"author": _person(c.get("author")), "body": c.get("content") or ""}
            for c in (data or {}).get("comments") or []
        ]

    def _base_raw(
        self, access_token: str, item: dict[str, Any], comments: list[dict[str, Any]]
    ) -> dict[str, Any]:
        owners = item.get("owners") or []
        return {
            "owner": _person(owners[0]) if owners else None,
            "last_modified_by": _person(item.get("lastModifyingUser")),
            "comments": comments,
            "version": item.get("version"),
        }

    def _file_activity(
        self, access_token: str, item: dict[str, Any], comments: list[dict[str, Any]]
    ) -> RawActivity | None:
        return self._make_activity(
            activity_id=str(item.get("id")),
            title=item.get("name"),
            timestamp=item.get("modifiedTime") or item.get("createdTime"),
            url=item.get("webViewLink"),
            raw=self._base_raw(access_token, item, comments),
        )


class GoogleDocsAdapter(_DriveAdapter):
    tool_type = ToolType.GOOGLE_DOCS
    mime_type = DOC_MIME_TYPE

    def _base_raw(
        self, access_token: str, item: dict[str, Any], comments: list[dict[str, Any]]
    ) -> dict[str, Any]:
        raw = super()._base_raw(access_token, item, comments)
        contributors = []
        for name in [raw["last_modified_by"], *(c["author"] for c in comments)]:
            if name and name != raw["owner"] and name not in contributors:
                contributors.append(name)
        raw["contributors"] = contributors
        return raw


class GoogleSheetsAdapter(_DriveAdapter):
    tool_type = ToolType.GOOGLE_SHEETS
    mime_type = SHEET_MIME_TYPE

    def _base_raw(
        self, access_token: str, item: dict[str, Any], comments: list[dict[str, Any]]
    ) -> dict[str, Any]:
        raw = super()._base_raw(access_token, item, comments)
        raw["sheets"] = self._sheet_titles(access_token, str(item.get("id")))
        return raw

    def _sheet_titles(self, access_token: str, spreadsheet_id: str) -> list[str]:
        try:
            data = self._get(
                f"https://sheets.googleapis.com/v4/spreadsheets/{spreadsheet_id}",
                access_token,
                params={"fields": "sheets.properties.title"},
            )
        except AuthExpiredError:
            raise
        except ToolFetchError as exc:
            logger.warning("google-sheets: tab fetch failed (%s)", exc.reason)
            return []
        return [
            (sheet.get("properties") or {}).get("title", "")
            for sheet in (data or {}).get("sheets") or []
        ]
