"""
Figma adapter: design files modified in the range across the user's teams.

Figma has no "my files" endpoint, so the adapter walks team -> projects ->
files. Team ids come from the adapter configuration since the REST API does
not list them for OAuth tokens.
"""

from __future__ import annotations

from typing import Any

import requests

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.infrastructure.retry import RetryPolicy
from journalq.tools.base import ToolAdapter, ToolFetchResult, parse_timestamp

MAX_PROJECTS = 10


class FigmaAdapter(ToolAdapter):
    tool_type = ToolType.FIGMA
    base_url = "https://api.figma.com/v1"

    def __init__(
        self,
        session: requests.Session | None = None,
        team_ids: list[str] | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs: Any,
    ):
        super().__init__(session=session, retry_policy=retry_policy, **kwargs)
        self.team_ids = list(team_ids or [])

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        me = self._get("/me", access_token) or {}

        candidates: list[RawActivity | None] = []
        projects_seen = 0
        for team_id in self.team_ids:
            projects = (self._get(f"/teams/{team_id}/projects", access_token) or {}).get("projects") or []
            for project in projects:
                if projects_seen >= MAX_PROJECTS:
                    break
                projects_seen += 1
                files = (self._get(f"/projects/{project['id']}/files", access_token) or {}).get("files") or []
                for item in files:
                    modified = parse_timestamp(item.get("last_modified"))
                    if modified is None or not date_range.contains(modified):
                        continue
                    candidates.append(self._file_activity(item, project.get("name")))

        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(candidates),
            self_identifier=me.get("handle") or me.get("email"),
        )

    def _file_activity(self, item: dict[str, Any], project_name: str | None) -> RawActivity | None:
        key = item.get("key")
        return self._make_activity(
            activity_id=str(key),
            title=item.get("name"),
            timestamp=item.get("last_modified"),
            url=f"https://www.figma.com/file/{key}" if key else None,
            raw={
                "kind": "design",
                "project": project_name,
                "thumbnail_url": item.get("thumbnail_url"),
            },
        )
