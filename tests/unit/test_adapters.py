"""
Tests for tool adapters against a fake HTTP session.

Validates:
1. Each adapter maps tool payloads onto RawActivity with stable ids
2. HTTP 401/403 -> AuthExpiredError (no retry), 429 -> RateLimitError
3. 5xx and transport errors are retried, then surfaced
4. Items without a timestamp are dropped and counted
"""

from __future__ import annotations

import pytest

from journalq.contracts.activity import ToolType
from journalq.entry.format7 import evidence_metadata
from journalq.infrastructure.retry import RetryPolicy
from journalq.observability.telemetry import get_counter
from journalq.tools.errors import AuthExpiredError, RateLimitError, ToolFetchError
from journalq.tools.github import GitHubAdapter
from journalq.tools.jira import JiraAdapter, adf_to_text
from journalq.tools.outlook import OutlookAdapter
from journalq.tools.registry import build_adapter
from journalq.tools.slack import SlackAdapter

from conftest import FakeResponse, FakeSession


def no_sleep_policy(**kwargs):
    return RetryPolicy(stage="test", sleep_fn=lambda _: None, **kwargs)


def ok(payload):
    return FakeResponse(200, payload)


PR_ITEM = {
    "id": 1001,
    "number": 12,
    "repository_url": "https://api.github.com/repos/acme/api",
    "title": "Add retry to billing client",
    "state": "closed",
    "updated_at": "2025-03-08T10:00:00Z",
    "html_url": "https://github.com/acme/api/pull/12",
    "user": {"login": "octocat"},
    "labels": [{"name": "backend"}],
    "comments": 3,
    "pull_request": {"merged_at": "2025-03-08T10:00:00Z"},
}

COMMIT_ITEM = {
    "sha": "abc123",
    "commit": {
        "message": "Fix flaky test\n\nlonger body",
        "author": {"name": "Octo Cat", "date": "2025-03-07T12:00:00Z"},
    },
    "author": {"login": "octocat"},
    "html_url": "https://github.com/acme/api/commit/abc123",
    "repository": {"full_name": "acme/api"},
}


def github_routes(**overrides):
    routes = {
        "/user": ok({"login": "octocat"}),
        "/search/issues": [ok({"items": [PR_ITEM]}), ok({"items": [PR_ITEM]})],
        "/pulls/12": ok(
            {
                "additions": 120,
                "deletions": 30,
                "changed_files": 4,
                "commits": 2,
                "body": "Fixes TRACK-42",
                "head": {"ref": "feature/TRACK-42-retry"},
                "base": {"ref": "main"},
                "merged_at": "2025-03-08T10:00:00Z",
                "requested_reviewers": [{"login": "carol"}],
            }
        ),
        "/pulls/12/reviews": ok(
            [
                {"user": {"login": "alice"}, "state": "APPROVED"},
                {"user": {"login": "alice"}, "state": "COMMENTED"},
                {"user": {"login": "bob"}, "state": "PENDING"},
            ]
        ),
        "/search/commits": ok({"items": [COMMIT_ITEM]}),
    }
    routes.update(overrides)
    return routes


def test_github_fetches_prs_and_commits(date_range):
    session = FakeSession(github_routes())
    adapter = GitHubAdapter(session=session, retry_policy=no_sleep_policy())

    result = adapter.fetch("tok", date_range)

    assert result.tool_type is ToolType.GITHUB
    assert result.self_identifier == "octocat"
    assert [a.id for a in result.activities] == ["github:pr:acme/api#12", "github:commit:abc123"]

    pr, commit = result.activities
    assert pr.raw["state"] == "merged"
    assert pr.raw["additions"] == 120
    assert pr.raw["reviewers"] == ["alice"]
    assert pr.raw["requested_reviewers"] == ["carol"]
    assert pr.raw["head_ref"] == "feature/TRACK-42-retry"
    assert pr.raw["labels"] == ["backend"]
    assert pr.description == "Fixes TRACK-42"
    assert commit.title == "Fix flaky test"
    assert "number" not in commit.raw
    assert get_counter("tools.github.items") == 2


def test_github_sends_token_auth_header(date_range):
    session = FakeSession(github_routes())
    captured = {}

    original = session.request

    def recording(method, url, params=None, headers=None, json=None, timeout=None):
        captured.setdefault(url, headers)
        return original(method, url, params=params, headers=headers, json=json, timeout=timeout)

    session.request = recording
    GitHubAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    assert captured["https://api.github.com/user"]["Authorization"] == "token tok"


def test_unauthorized_maps_to_auth_expired_without_retry(date_range):
    session = FakeSession({"/user": FakeResponse(401, {"message": "Bad credentials"})})
    adapter = GitHubAdapter(session=session, retry_policy=no_sleep_policy())

    with pytest.raises(AuthExpiredError) as exc_info:
        adapter.fetch("tok", date_range)

    assert exc_info.value.needs_reconnect is True
    assert exc_info.value.status_code == 401
    assert len(session.calls) == 1
    assert get_counter("tools.github.auth_expired") == 1


def test_forbidden_is_also_auth_expired(date_range):
    session = FakeSession({"/user": FakeResponse(403, {})})

    with pytest.raises(AuthExpiredError):
        GitHubAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)


def test_rate_limit_beyond_max_wait_is_raised(date_range):
    session = FakeSession({"/user": FakeResponse(429, {}, headers={"Retry-After": "120"})})
    adapter = GitHubAdapter(session=session, retry_policy=no_sleep_policy(max_rate_limit_wait=10))

    with pytest.raises(RateLimitError) as exc_info:
        adapter.fetch("tok", date_range)

    assert exc_info.value.retry_after == 120.0
    assert exc_info.value.reason == "rate_limited"
    assert len(session.calls) == 1


def test_rate_limit_within_max_wait_is_waited_once(date_range):
    waits: list[float] = []
    routes = github_routes()
    routes["/user"] = [
        FakeResponse(429, {}, headers={"Retry-After": "2"}),
        ok({"login": "octocat"}),
    ]
    policy = RetryPolicy(stage="test", sleep_fn=waits.append, max_rate_limit_wait=10)

    result = GitHubAdapter(session=FakeSession(routes), retry_policy=policy).fetch("tok", date_range)

    assert result.self_identifier == "octocat"
    assert waits == [2.0]


def test_server_errors_are_retried(date_range):
    routes = github_routes()
    routes["/user"] = [FakeResponse(502, {}), FakeResponse(503, {}), ok({"login": "octocat"})]
    session = FakeSession(routes)

    result = GitHubAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    assert result.self_identifier == "octocat"
    assert sum(1 for _, url, _ in session.calls if url.endswith("/user")) == 3
    assert get_counter("retry_count") == 2


def test_transport_errors_exhaust_attempts(date_range, transport_error):
    session = FakeSession({"/user": transport_error})

    with pytest.raises(ToolFetchError) as exc_info:
        GitHubAdapter(session=session, retry_policy=no_sleep_policy(max_attempts=3)).fetch(
            "tok", date_range
        )

    assert exc_info.value.reason == "transport"
    assert len(session.calls) == 3
    assert get_counter("tools.github.transport_error") == 3


def test_bad_request_is_not_retried(date_range):
    session = FakeSession({"/user": FakeResponse(422, {})})

    with pytest.raises(ToolFetchError) as exc_info:
        GitHubAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    assert exc_info.value.reason == "bad_request"
    assert len(session.calls) == 1


def test_non_json_body_is_invalid_response(date_range):
    session = FakeSession({"/user": FakeResponse(200, ValueError("not json"))})

    with pytest.raises(ToolFetchError) as exc_info:
        GitHubAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    assert exc_info.value.reason == "invalid_response"


def test_pr_detail_failure_keeps_the_pr(date_range):
    routes = github_routes()
    routes["/pulls/12"] = FakeResponse(404, {})
    session = FakeSession(routes)

    result = GitHubAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    pr = result.activities[0]
    assert pr.id == "github:pr:acme/api#12"
    assert "additions" not in pr.raw
    assert pr.raw["state"] == "merged"


def test_items_without_timestamp_are_dropped(date_range):
    undated = dict(PR_ITEM, id=2002, number=13, updated_at=None)
    routes = github_routes()
    routes["/search/issues"] = [ok({"items": [PR_ITEM, undated]}), ok({"items": []})]
    routes["/pulls/13"] = ok({})
    routes["/pulls/13/reviews"] = ok([])

    result = GitHubAdapter(session=FakeSession(routes), retry_policy=no_sleep_policy()).fetch(
        "tok", date_range
    )

    assert "github:pr:acme/api#13" not in {a.id for a in result.activities}
    assert get_counter("tools.github.dropped_no_timestamp") == 1


def slack_routes(**overrides):
    routes = {
        "/auth.test": ok({"ok": True, "user_id": "U1", "user": "octocat"}),
        "/search.messages": ok(
            {
                "ok": True,
                "messages": {
                    "matches": [
                        {
                            "channel": {"id": "C1", "name": "billing"},
                            "ts": "1741514400.000100",
                            "text": "Rolled out the retry fix\nmore detail",
                            "username": "octocat",
                            "reactions": [{"name": "tada", "count": 3}],
                            "reply_count": 4,
                            "permalink": "https://acme.slack.com/archives/C1/p1",
                        }
                    ]
                },
            }
        ),
    }
    routes.update(overrides)
    return routes


def test_slack_messages(date_range):
    result = SlackAdapter(session=FakeSession(slack_routes()), retry_policy=no_sleep_policy()).fetch(
        "tok", date_range
    )

    assert result.self_identifier == "octocat"
    message = result.activities[0]
    assert message.id == "slack:C1:1741514400.000100"
    assert message.title == "#billing: Rolled out the retry fix"
    assert message.raw["reactions"] == [{"name": "tada", "count": 3}]
    assert message.raw["reply_count"] == 4
    assert message.timestamp.year == 2025


@pytest.mark.parametrize(
    "error, expected, reason, calls",
    [
        ("invalid_auth", AuthExpiredError, "auth_expired", 1),
        ("token_revoked", AuthExpiredError, "auth_expired", 1),
        # no Retry-After, so one short wait before giving up
        ("ratelimited", RateLimitError, "rate_limited", 2),
        ("channel_not_found", ToolFetchError, "api_error", 1),
    ],
)
def test_slack_error_envelopes(date_range, error, expected, reason, calls):
    routes = slack_routes(**{"/auth.test": ok({"ok": False, "error": error})})
    session = FakeSession(routes)

    with pytest.raises(expected) as exc_info:
        SlackAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    assert exc_info.value.reason == reason
    assert len(session.calls) == calls


def jira_routes(issue_fields):
    return {
        "accessible-resources": ok([{"id": "cloud-1", "url": "https://acme.atlassian.net"}]),
        "/rest/api/3/myself": ok({"displayName": "Octo Cat"}),
        "/rest/api/3/search": ok({"issues": [{"key": "TRACK-42", "fields": issue_fields}]}),
    }


def test_jira_issue_mapping(date_range):
    fields = {
        "summary": "Login times out",
        "status": {"name": "Done"},
        "assignee": {"displayName": "Octo Cat"},
        "reporter": {"emailAddress": "pm@acme.test"},
        "labels": ["auth"],
        "comment": {
            "comments": [
                {
                    "author": {"displayName": "Alice"},
                    "body": {"type": "doc", "content": [{"type": "text", "text": "Repro'd"}]},
                }
            ]
        },
        "issuelinks": [{"outwardIssue": {"key": "TRACK-7"}}],
        "updated": "2025-03-08T09:00:00.000+00:00",
        "timespent": 5400,
        "customfield_10016": 3,
    }

    result = JiraAdapter(
        session=FakeSession(jira_routes(fields)), retry_policy=no_sleep_policy()
    ).fetch("tok", date_range)

    issue = result.activities[0]
    assert result.self_identifier == "Octo Cat"
    assert issue.id == "jira:TRACK-42"
    assert issue.title == "TRACK-42: Login times out"
    assert issue.url == "https://acme.atlassian.net/browse/TRACK-42"
    assert issue.raw["comments"] == [{"author": "Alice", "body": "Repro'd"}]
    assert issue.raw["linked_issues"] == ["TRACK-7"]
    assert issue.raw["reporter"] == "pm@acme.test"
    assert issue.raw["story_points"] == 3


def test_jira_without_site_fails(date_range):
    session = FakeSession({"accessible-resources": ok([])})

    with pytest.raises(ToolFetchError) as exc_info:
        JiraAdapter(session=session, retry_policy=no_sleep_policy()).fetch("tok", date_range)

    assert exc_info.value.reason == "no_accessible_site"


def test_adf_to_text():
    doc = {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": "one"}]},
            {"type": "paragraph", "content": [{"type": "text", "text": "two"}]},
        ],
    }

    assert adf_to_text(doc) == "one two"
    assert adf_to_text("plain") == "plain"
    assert adf_to_text(None) == ""


def test_outlook_meetings_and_mail(date_range):
    routes = {
        "/me": ok({"displayName": "Octo Cat"}),
        "/me/calendarView": ok(
            {
                "value": [
                    {
                        "id": "evt1",
                        "subject": "Daily standup",
                        "start": {"dateTime": "2025-03-07T09:00:00"},
                        "end": {"dateTime": "2025-03-07T09:15:00"},
                        "organizer": {"emailAddress": {"name": "Alice"}},
                        "attendees": [
                            {"emailAddress": {"name": "Alice"}},
                            {"emailAddress": {"address": "bob@acme.test"}},
                        ],
                        "type": "occurrence",
                    }
                ]
            }
        ),
        "/me/mailFolders/sentitems/messages": ok(
            {
                "value": [
                    {
                        "id": "m1",
                        "subject": "Retry rollout",
                        "sentDateTime": "2025-03-07T15:00:00Z",
                        "bodyPreview": "Shipped today",
                        "toRecipients": [{"emailAddress": {"name": "Team"}}],
                    }
                ]
            }
        ),
    }

    result = OutlookAdapter(session=FakeSession(routes), retry_policy=no_sleep_policy()).fetch(
        "tok", date_range
    )

    meeting, mail = result.activities
    assert meeting.id == "outlook:event:evt1"
    assert meeting.raw["duration"] == 15
    assert meeting.raw["attendees"] == ["Alice", "bob@acme.test"]
    assert meeting.raw["recurring"] is True
    assert mail.raw["kind"] == "email"
    assert mail.raw["to"] == ["Team"]


def test_max_items_bounds_output(date_range):
    items = [dict(PR_ITEM, id=i, number=i) for i in range(1, 6)]
    routes = github_routes()
    routes["/search/issues"] = [ok({"items": items}), ok({"items": []})]
    routes["/pulls/"] = ok({})
    routes["/reviews"] = ok([])

    result = GitHubAdapter(
        session=FakeSession(routes), retry_policy=no_sleep_policy(), max_items=3
    ).fetch("tok", date_range)

    assert len(result.activities) == 3


def test_registry_builds_known_adapters():
    adapter = build_adapter("slack", session=FakeSession({}))

    assert isinstance(adapter, SlackAdapter)
    assert build_adapter(ToolType.GITHUB).tool_type is ToolType.GITHUB


def test_registry_rejects_unknown_tool():
    with pytest.raises(ValueError):
        build_adapter("myspace")


def test_google_calendar_events(date_range):
    routes = {
        "/calendars/primary/events": ok(
            {
                "summary": "octo@acme.test",
                "items": [
                    {
                        "id": "ev1",
                        "summary": "Retry design review",
                        "start": {"dateTime": "2025-03-06T14:00:00Z"},
                        "end": {"dateTime": "2025-03-06T15:00:00Z"},
                        "attendees": [{"email": "alice@acme.test"}, {"displayName": "Bob"}],
                        "recurringEventId": "series-1",
                        "hangoutLink": "https://meet.google.com/x",
                    }
                ],
            }
        )
    }

    result = build_adapter(
        "google-calendar", session=FakeSession(routes), retry_policy=no_sleep_policy()
    ).fetch("tok", date_range)

    event = result.activities[0]
    assert result.self_identifier == "octo@acme.test"
    assert event.id == "google-calendar:ev1"
    assert event.raw["duration"] == 60
    assert event.raw["attendees"] == ["alice@acme.test", "Bob"]
    assert event.raw["recurring"] is True


def test_google_sheets_reads_comments_and_tabs(date_range):
    routes = {
        "/drive/v3/about": ok({"user": {"displayName": "Octo Cat"}}),
        "/drive/v3/files": ok(
            {
                "files": [
                    {
                        "id": "s1",
                        "name": "Q1 capacity",
                        "modifiedTime": "2025-03-05T08:00:00Z",
                        "webViewLink": "https://docs.google.com/spreadsheets/d/s1",
                        "version": "42",
                        "owners": [{"displayName": "Octo Cat"}],
                    }
                ]
            }
        ),
        "/files/s1/comments": ok(
            {"comments": [{"author": {"displayName": "Alice"}, "content": "Check row 4"}]}
        ),
        "/v4/spreadsheets/s1": ok(
            {"sheets": [{"properties": {"title": "Plan"}}, {"properties": {"title": "Actuals"}}]}
        ),
    }

    result = build_adapter(
        "google-sheets", session=FakeSession(routes), retry_policy=no_sleep_policy()
    ).fetch("tok", date_range)

    sheet = result.activities[0]
    assert result.self_identifier == "Octo Cat"
    assert sheet.id == "google-sheets:s1"
    assert sheet.raw["comments"] == [{"author": "Alice", "body": "Check row 4"}]
    assert sheet.raw["sheets"] == ["Plan", "Actuals"]
    assert sheet.raw["version"] == "42"


def test_google_docs_comment_failure_is_tolerated(date_range):
    routes = {
        "/drive/v3/about": ok({"user": {"emailAddress": "octo@acme.test"}}),
        "/drive/v3/files": ok(
            {
                "files": [
                    {
                        "id": "d1",
                        "name": "Retry RFC",
                        "modifiedTime": "2025-03-05T08:00:00Z",
                        "owners": [{"displayName": "Octo Cat"}],
                        "lastModifyingUser": {"displayName": "Alice"},
                    }
                ]
            }
        ),
        "/files/d1/comments": FakeResponse(404, {}),
    }

    result = build_adapter(
        "google-docs", session=FakeSession(routes), retry_policy=no_sleep_policy()
    ).fetch("tok", date_range)

    doc = result.activities[0]
    assert doc.raw["comments"] == []
    assert doc.raw["contributors"] == ["Alice"]


def test_confluence_pages(date_range):
    routes = {
        "accessible-resources": ok([{"id": "cloud-1", "url": "https://acme.atlassian.net/"}]),
        "/user/current": ok({"displayName": "Octo Cat"}),
        "/content/search": ok(
            {
                "results": [
                    {
                        "id": "98765",
                        "type": "page",
                        "title": "Retry runbook",
                        "version": {
                            "number": 7,
                            "when": "2025-03-04T11:00:00.000Z",
                            "by": {"displayName": "Octo Cat"},
                        },
                        "space": {"name": "Platform"},
                        "history": {
                            "createdBy": {"displayName": "Alice"},
                            "contributors": {
                                "publishers": {"users": [{"displayName": "Alice"}, {"displayName": "Bob"}]}
                            },
                        },
                        "_links": {"webui": "/spaces/PLAT/pages/98765"},
                    }
                ]
            }
        ),
    }

    result = build_adapter(
        "confluence", session=FakeSession(routes), retry_policy=no_sleep_policy()
    ).fetch("tok", date_range)

    page = result.activities[0]
    assert page.id == "confluence:98765"
    assert page.url == "https://acme.atlassian.net/wiki/spaces/PLAT/pages/98765"
    assert page.raw["version"] == 7
    assert page.raw["editors"] == ["Alice", "Bob"]
    assert page.raw["kind"] == "page"


def test_figma_filters_files_by_date(date_range):
    routes = {
        "/v1/me": ok({"handle": "octocat"}),
        "/teams/T1/projects": ok({"projects": [{"id": "P1", "name": "Billing"}]}),
        "/projects/P1/files": ok(
            {
                "files": [
                    {"key": "f1", "name": "Retry banner", "last_modified": "2025-03-06T10:00:00Z"},
                    {"key": "f2", "name": "Old logo", "last_modified": "2024-01-01T10:00:00Z"},
                ]
            }
        ),
    }

    result = build_adapter(
        "figma", session=FakeSession(routes), retry_policy=no_sleep_policy(), team_ids=["T1"]
    ).fetch("tok", date_range)

    assert [a.id for a in result.activities] == ["figma:f1"]
    design = result.activities[0]
    assert design.url == "https://www.figma.com/file/f1"
    assert design.raw == {"kind": "design", "project": "Billing", "thumbnail_url": None}


def test_slack_message_without_counts_has_no_thread_evidence(date_range):
    bare = {"channel": {"id": "C2", "name": "ops"}, "ts": "1741514400.000200", "text": "deploy done"}
    routes = slack_routes(**{"/search.messages": ok({"ok": True, "messages": {"matches": [bare]}})})

    result = SlackAdapter(session=FakeSession(routes), retry_policy=no_sleep_policy()).fetch(
        "tok", date_range
    )

    raw = result.activities[0].raw
    assert raw["reply_count"] is None
    assert raw["reactions"] is None
    assert evidence_metadata("thread", raw) == {}
