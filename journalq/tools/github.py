"""
GitHub adapter: pull requests the user authored or reviewed, plus commits.

Pull requests carry their review identifier as ``raw["number"]``; commits do
not. The normalizer relies on that to tell the two apart.
"""

from __future__ import annotations

from typing import Any

from journalq.contracts.activity import RawActivity, ToolType
from journalq.contracts.request import DateRange
from journalq.observability.logging import get_logger
from journalq.tools.base import ToolAdapter, ToolFetchResult
from journalq.tools.errors import AuthExpiredError, ToolFetchError

logger = get_logger(__name__)

MAX_PR_DETAILS = 20


class GitHubAdapter(ToolAdapter):
    tool_type = ToolType.GITHUB
    base_url = "https://api.github.com"

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"token {access_token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def _fetch(self, access_token: str, date_range: DateRange) -> ToolFetchResult:
        user = self._get("/user", access_token) or {}
        login = user.get("login")

        window = f"{date_range.start.date().isoformat()}..{date_range.end.date().isoformat()}"
        authored = self._search_prs(access_token, f"is:pr author:@me updated:{window}")
        reviewed = self._search_prs(access_token, f"is:pr reviewed-by:@me updated:{window}")
        authored_ids = {item.get("id") for item in authored}

        unique: dict[Any, dict[str, Any]] = {}
        for item in authored + reviewed:
            unique.setdefault(item.get("id"), item)

        candidates: list[RawActivity | None] = []
        for index, item in enumerate(unique.values()):
            details = self._pr_details(access_token, item) if index < MAX_PR_DETAILS else {}
            candidates.append(self._pr_activity(item, details, item.get("id") in authored_ids))

        if login:
            candidates.extend(self._commits(access_token, login, date_range))

        return ToolFetchResult(
            tool_type=self.tool_type,
            activities=self._collect(candidates),
            self_identifier=login,
        )

    def _search_prs(self, access_token: str, query: str) -> list[dict[str, Any]]:
        data = self._get(
            "/search/issues",
            access_token,
            params={"q": query, "sort": "updated", "order": "desc", "per_page": 50},
        )
        return list((data or {}).get("items") or [])

    def _pr_details(self, access_token: str, item: dict[str, Any]) -> dict[str, Any]:
        owner_repo = "/".join((item.get("repository_url") or "").split("/")[-2:])
        number = item.get("number")
        if not owner_repo or number is None:
            return {}
        try:
            pr = self._get(f"/repos/{owner_repo}/pulls/{number}", access_token) or {}
            reviews = self._get(f"/repos/{owner_repo}/pulls/{number}/reviews", access_token) or []
        except AuthExpiredError:
            raise
        except ToolFetchError as exc:
            # A missing detail page only loses stats for one PR.
            logger.warning("github: PR detail fetch failed (%s)", exc.reason)
            return {}

        reviewers: list[str] = []
        for review in reviews:
            login = (review.get("user") or {}).get("login")
            if review.get("state") != "PENDING" and login and login not in reviewers:
                reviewers.append(login)
        requested = [r.get("login") for r in pr.get("requested_reviewers") or [] if r.get("login")]

        return {
            "additions": pr.get("additions"),
            "deletions": pr.get("deletions"),
            "changed_files": pr.get("changed_files"),
            "commits": pr.get("commits"),
            "reviewers": reviewers,
            "requested_reviewers": [r for r in requested if r not in reviewers],
            "body": pr.get("body"),
            "head_ref": (pr.get("head") or {}).get("ref"),
            "base_ref": (pr.get("base") or {}).get("ref"),
            "merged": bool(pr.get("merged_at")),
        }

    def _pr_activity(
        self, item: dict[str, Any], details: dict[str, Any], is_authored: bool
    ) -> RawActivity | None:
        repository = "/".join((item.get("repository_url") or "").split("/")[-2:])
        merged = details.get("merged") or bool((item.get("pull_request") or {}).get("merged_at"))
        raw = {
            "number": item.get("number"),
            "author": (item.get("user") or {}).get("login"),
            "state": "merged" if merged else item.get("state"),
            "labels": [label.get("name") for label in item.get("labels") or [] if label.get("name")],
            "body": details.get("body") or item.get("body") or "",
            "comments_count": item.get("comments") or 0,
            "repository": repository,
            "is_draft": bool(item.get("draft")),
            "is_reviewed": not is_authored,
            **{k: v for k, v in details.items() if k not in ("body", "merged")},
        }
        return self._make_activity(
            activity_id=f"pr:{repository}#{item.get('number')}",
            title=item.get("title"),
            timestamp=item.get("updated_at") or item.get("created_at"),
            description=raw["body"] or None,
            url=item.get("html_url"),
            raw=raw,
        )

    def _commits(
        self, access_token: str, login: str, date_range: DateRange
    ) -> list[RawActivity | None]:
        window = f"{date_range.start.date().isoformat()}..{date_range.end.date().isoformat()}"
        data = self._get(
            "/search/commits",
            access_token,
            params={"q": f"author:{login} author-date:{window}", "sort": "author-date", "per_page": 50},
            headers={"Accept": "application/vnd.github.cloak-preview+json"},
        )
        commits: list[RawActivity | None] = []
        for item in (data or {}).get("items") or []:
            commit = item.get("commit") or {}
            message = commit.get("message") or ""
            author = (item.get("author") or {}).get("login") or (commit.get("author") or {}).get("name")
            stats = item.get("stats") or {}
            raw = {
                "sha": item.get("sha"),
                "message": message,
                "author": author,
                "repository": (item.get("repository") or {}).get("full_name"),
            }
            if stats:
                raw["additions"] = stats.get("additions")
                raw["deletions"] = stats.get("deletions")
            commits.append(
                self._make_activity(
                    activity_id=f"commit:{item.get('sha')}",
                    title=message.splitlines()[0] if message else item.get("sha"),
                    timestamp=(commit.get("author") or {}).get("date")
                    or (commit.get("committer") or {}).get("date"),
                    description=message or None,
                    url=item.get("html_url"),
                    raw=raw,
                )
            )
        return commits
