"""
Jira Cloud adapter: issues updated in the date range, with comments and links.
"""

from __future__ import annotations

from typing import Any

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.tools.base import ToolAdapter, ToolFetchResult
from journalq.tools.errors import ToolFetchError

ACCESSIBLE_RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
STORY_POINTS_FIELD = "customfield_10016"

SEARCH_FIELDS = ",".join(
    [
        "summary",
        "status",
        "assignee",
        "reporter",
        "labels",
        "comment",
        "issuelinks",
        "issuetype",
        "project",
        "updated",
        "created",
        "timespent",
        "watches",
        STORY_POINTS_FIELD,
    ]
)


def adf_to_text(node: Any) -> str:
    """Flatten an Atlassian Document Format node (or plain string) to text."""
    if node is None:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return " ".join(filter(None, (adf_to_text(child) for child in node))).strip()
    if isinstance(node, dict):
        if node.get("type") == "text":
            return node.get("text") or ""
        return adf_to_text(node.get("content"))
    return ""


def _display_name(person: dict[str, Any] | None) -> str | None:
    if not person:
        return None
    return person.get("displayName") or person.get("emailAddress")


class JiraAdapter(ToolAdapter):
    tool_type = ToolType.JIRA

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        resources = self._get(ACCESSIBLE_RESOURCES_URL, access_token) or []
        if not resources:
            raise ToolFetchError(self.tool_type.value, "no_accessible_site")
        site_url = f"https://api.atlassian.com/ex/jira/{resources[0]['id']}"

        myself = self._get(f"{site_url}/rest/api/3/myself", access_token) or {}
        jql = (
            f'updated >= "{date_range.start.date().isoformat()}" '
            f'AND updated <= "{date_range.end.date().isoformat()}" ORDER BY updated DESC'
        )
        data = self._get(
            f"{site_url}/rest/api/3/search",
            access_token,
            params={"jql": jql, "maxResults": self.max_items, "fields": SEARCH_FIELDS},
        )
        site_browse = resources[0].get("url") or ""
        activities = [
            self._issue_activity(issue, site_browse) for issue in (data or {}).get("issues") or []
        ]
        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(activities),
            self_identifier=myself.get("displayName") or myself.get("emailAddress"),
        )

    def _issue_activity(self, issue: dict[str, Any], site_browse: str) -> RawActivity | None:
        fields = issue.get("fields") or {}
        key = issue.get("key") or str(issue.get("id"))
        comments = [
            {"author": _display_name(c.get("author")), "body": adf_to_text(c.get("body"))}
            for c in (fields.get("comment") or {}).get("comments") or []
        ]
        linked: list[str] = []
        for link in fields.get("issuelinks") or []:
            other = link.get("outwardIssue") or link.get("inwardIssue") or {}
            if other.get("key"):
                linked.append(other["key"])

        raw = {
            "key": key,
            "status": (fields.get("status") or {}).get("name"),
            "assignee": _display_name(fields.get("assignee")),
            "reporter": _display_name(fields.get("reporter")),
            "labels": list(fields.get("labels") or []),
            "comments": comments,
            "linked_issues": linked,
            "issue_type": (fields.get("issuetype") or {}).get("name"),
            "project": (fields.get("project") or {}).get("name"),
            "story_points": fields.get(STORY_POINTS_FIELD),
            "time_spent": fields.get("timespent"),
            "watch_count": (fields.get("watches") or {}).get("watchCount"),
        }
        return self._make_activity(
            activity_id=key,
            title=f"{key}: {fields.get('summary') or ''}".strip(),
            timestamp=fields.get("updated") or fields.get("created"),
            url=f"{site_browse}/browse/{key}" if site_browse else None,
            raw=raw,
        )
