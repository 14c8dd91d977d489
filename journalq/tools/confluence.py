"""
Confluence Cloud adapter: pages and blog posts the user contributed to.
"""

from __future__ import annotations

from typing import Any

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.tools.base import ToolAdapter, ToolFetchResult
from journalq.tools.errors import ToolFetchError

ACCESSIBLE_RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"


class ConfluenceAdapter(ToolAdapter):
    tool_type = ToolType.CONFLUENCE

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        resources = self._get(ACCESSIBLE_RESOURCES_URL, access_token) or []
        if not resources:
            raise ToolFetchError(self.tool_type.value, "no_accessible_site")
        api = f"https://api.atlassian.com/ex/confluence/{resources[0]['id']}/wiki/rest/api"
        site_url = (resources[0].get("url") or "").rstrip("/")

        current = self._get(f"{api}/user/current", access_token) or {}
        cql = (
            "type in (page, blogpost) AND contributor = currentUser() "
            f'AND lastmodified >= "{date_range.start.date().isoformat()}" '
            f'AND lastmodified <= "{date_range.end.date().isoformat()}" '
            "ORDER BY lastmodified DESC"
        )
        data = self._get(
            f"{api}/content/search",
            access_token,
            params={
                "cql": cql,
                "limit": self.max_items,
                "expand": "version,space,history,history.contributors.publishers",
            },
        )
        activities = [self._page_activity(page, site_url) for page in (data or {}).get("results") or []]
        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(activities),
            self_identifier=current.get("displayName") or current.get("publicName"),
        )

    def _page_activity(self, page: dict[str, Any], site_url: str) -> RawActivity | None:
        version = page.get("version") or {}
        history = page.get("history") or {}
        publishers = ((history.get("contributors") or {}).get("publishers") or {}).get("users") or []
        raw = {
            "kind": page.get("type"),
            "creator": ((history.get("createdBy") or {}).get("displayName")),
            "last_modified_by": (version.get("by") or {}).get("displayName"),
            "editors": [u.get("displayName") for u in publishers if u.get("displayName")],
            "space": (page.get("space") or {}).get("name"),
            "version": version.get("number"),
        }
        webui = (page.get("_links") or {}).get("webui")
        return self._make_activity(
            activity_id=str(page.get("id")),
            title=page.get("title"),
            timestamp=version.get("when") or history.get("createdDate"),
            url=f"{site_url}/wiki{webui}" if webui and site_url else None,
            raw=raw,
        )
