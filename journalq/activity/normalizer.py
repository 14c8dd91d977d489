"""
Normalizer: RawActivity -> ActivityContext.

A closed dispatch table maps each well-supported tool to its extractor; every
other tool falls back to ``_extract_default`` which yields title, date and
people only. Bodies are secret-scanned then truncated. No template escaping
happens here; that belongs to prompt assembly.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from journalq.activity.secret_scanner import REDACTED, contains_secret, scan
from journalq.config import ACTIVITY_MAX_BODY_CHARS, EXCLUDED_BRANCHES
from journalq.contracts.activity import ActivityContext, RawActivity, ToolType
from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter, log_event
from journalq.utils.redaction import redact, redact_title

logger = get_logger(__name__)

Extractor = Callable[[RawActivity, dict[str, Any], str], dict[str, Any]]


# ----------------------------------------------------------------- helpers


def clean_body(text: str | None, max_length: int = ACTIVITY_MAX_BODY_CHARS) -> str | None:
    """Secret-scan then truncate. Returns None for blank input.

    Truncation is re-checked: cutting a string can turn a non-match into a
    match for boundary-anchored patterns (e.g. ``1.2.3.4567`` -> ``1.2.3.4``).
    """
    if not text or not text.strip():
        return None
    result = scan(text)
    if result.findings:
        log_event("secret_detected", kinds=[f.kind for f in result.findings])
    cleaned = result.text
    if len(cleaned) > max_length:
        cleaned = scan(cleaned[:max_length]).text[:max_length]
        if contains_secret(cleaned):
            cleaned = REDACTED
    return cleaned.strip() or None


def collect_people(candidates: Iterable[Any], self_lower: str) -> tuple[str, ...]:
    """Dedupe names case-insensitively, keep first spelling, drop self."""
    seen: set[str] = set()
    people: list[str] = []
    for candidate in candidates:
        if not candidate or not isinstance(candidate, str):
            continue
        lowered = candidate.strip().lower()
        if not lowered or lowered == self_lower or lowered in seen:
            continue
        seen.add(lowered)
        people.append(candidate.strip())
    return tuple(people)


def _eq(value: Any, self_lower: str) -> bool:
    return bool(self_lower) and isinstance(value, str) and value.lower() == self_lower


def _includes(values: Any, self_lower: str) -> bool:
    return bool(self_lower) and isinstance(values, list) and any(_eq(v, self_lower) for v in values)


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _comment_lines(comments: Any) -> str:
    return "\n".join(
        f"{c.get('author') or 'unknown'}: {c.get('body') or ''}"
        for c in _as_list(comments)
        if isinstance(c, dict)
    )


def _comment_authors(comments: Any) -> list[Any]:
    return [c.get("author") for c in _as_list(comments) if isinstance(c, dict)]


def _duration_scope(raw: dict[str, Any]) -> str | None:
    return f"{raw['duration']} min" if raw.get("duration") else None


# -------------------------------------------------------------- extractors


def _extract_github(act: RawActivity, raw: dict[str, Any], self_lower: str) -> dict[str, Any]:
    is_commit = raw.get("number") is None and bool(raw.get("sha") or raw.get("message"))

    body = raw.get("body") or ""
    comments = _as_list(raw.get("comments"))
    if comments:
        body += "\n" + "\n".join(c.get("body") or "" for c in comments if isinstance(c, dict))
    if not body.strip() and raw.get("message"):
        body = raw["message"]

    scope = None
    if raw.get("additions") is not None or raw.get("deletions") is not None:
        files = raw.get("changed_files") or raw.get("files_changed") or "?"
        scope = f"+{raw.get('additions') or 0}/-{raw.get('deletions') or 0}, {files} files"

    head_ref = raw.get("head_ref")
    container = head_ref if isinstance(head_ref, str) and head_ref not in EXCLUDED_BRANCHES else None

    if _eq(raw.get("author"), self_lower):
        role = "authored"
    elif _includes(raw.get("reviewers"), self_lower):
        role = "reviewed"
    else:
        role = "mentioned"

    return {
        "source_subtype": "commit" if is_commit else "pr",
        "people": collect_people(
            [
                raw.get("author"),
                *_as_list(raw.get("reviewers")),
                *_as_list(raw.get("requested_reviewers")),
                *_as_list(raw.get("mentions")),
            ],
            self_lower,
        ),
        "user_role": role,
        "body": clean_body(body),
        "labels": tuple(_as_list(raw.get("labels"))),
        "scope": scope,
        "container": container,
        "state": raw.get("state"),
    }


def _extract_jira(act: RawActivity, raw: dict[str, Any], self_lower: str) -> dict[str, Any]:
    comments = raw.get("comments")
    if _eq(raw.get("assignee"), self_lower):
        role = "authored"
    elif _includes(raw.get("mentions"), self_lower):
        role = "mentioned"
    else:
        role = "watched"
    return {
        "source_subtype": "issue",
        "people": collect_people(
            [
                raw.get("assignee"),
                raw.get("reporter"),
                *_as_list(raw.get("watchers")),
                *_as_list(raw.get("mentions")),
                *_comment_authors(comments),
            ],
            self_lower,
        ),
        "user_role": role,
        "body": clean_body(_comment_lines(comments)),
        "labels": tuple(_as_list(raw.get("labels"))),
        "scope": f"{raw['story_points']} story points" if raw.get("story_points") else None,
        "container": raw.get("project"),
        "state": raw.get("status"),
        "linked_items": tuple(_as_list(raw.get("linked_issues"))),
    }


def _extract_slack(act: RawActivity, raw: dict[str, Any], self_lower: str) -> dict[str, Any]:
    reactions = [r for r in _as_list(raw.get("reactions")) if isinstance(r, dict) and r.get("name")]
    sentiment = ", ".join(f"{r['name']}:{r.get('count') or 0}" for r in reactions) or None
    authored = _eq(raw.get("parent_author"), self_lower) or _eq(raw.get("author"), self_lower)
    return {
        "source_subtype": "thread",
        "people": collect_people(
            [
                raw.get("parent_author"),
                raw.get("reply_author"),
                raw.get("author"),
                *_as_list(raw.get("mentions")),
            ],
            self_lower,
        ),
        "user_role": "authored" if authored else "mentioned",
        "container": raw.get("thread_ts") or raw.get("channel"),
        "sentiment": sentiment,
    }


def _extract_outlook(act: RawActivity, raw: dict[str, Any], self_lower: str) -> dict[str, Any]:
    is_email = bool(raw.get("from"))
    authored = _eq(raw.get("from"), self_lower) or _eq(raw.get("organizer"), self_lower)
    return {
        "source_subtype": "email" if is_email else "meeting",
        "people": collect_people(
            [
                raw.get("from"),
                raw.get("organizer"),
                *_as_list(raw.get("to")),
                *_as_list(raw.get("cc")),
                *_as_list(raw.get("attendees")),
            ],
            self_lower,
        ),
        "user_role": "authored" if authored else "attended",
        "body": clean_body(raw.get("subject")),
        "scope": _duration_scope(raw),
        "is_routine": raw.get("recurring") is True,
    }


def _extract_google_calendar(
    act: RawActivity, raw: dict[str, Any], self_lower: str
) -> dict[str, Any]:
    return {
        "source_subtype": "meeting",
        "people": collect_people(
            [raw.get("organizer"), *_as_list(raw.get("attendees"))], self_lower
        ),
        "user_role": "authored" if _eq(raw.get("organizer"), self_lower) else "attended",
        "scope": _duration_scope(raw),
        "is_routine": raw.get("recurring") is True,
    }


def _extract_google_docs(act: RawActivity, raw: dict[str, Any], self_lower: str) -> dict[str, Any]:
    comments = raw.get("comments")
    if _eq(raw.get("owner"), self_lower):
        role = "authored"
    elif _includes(raw.get("contributors"), self_lower):
        role = "contributed"
    else:
        role = "mentioned"
    return {
        "source_subtype": "document",
        "people": collect_people(
            [
                raw.get("owner"),
                raw.get("last_modified_by"),
                *_as_list(raw.get("contributors")),
                *_as_list(raw.get("suggested_editors")),
                *_comment_authors(comments),
            ],
            self_lower,
        ),
        "user_role": role,
        "body": clean_body(_comment_lines(comments)),
    }


def _extract_google_sheets(
    act: RawActivity, raw: dict[str, Any], self_lower: str
) -> dict[str, Any]:
    comments = raw.get("comments")
    sheets = raw.get("sheets")
    return {
        "source_subtype": "spreadsheet",
        "people": collect_people(
            [
                raw.get("owner"),
                raw.get("last_modified_by"),
                *_as_list(raw.get("mentions")),
                *_comment_authors(comments),
            ],
            self_lower,
        ),
        "user_role": "authored" if _eq(raw.get("owner"), self_lower) else "mentioned",
        "body": clean_body(_comment_lines(comments)),
        "scope": f"{len(sheets)} sheets" if isinstance(sheets, list) else None,
    }


def _extract_default(act: RawActivity, raw: dict[str, Any], self_lower: str) -> dict[str, Any]:
    """Low-signal tools: title, date and people only. Never mines a body."""
    return {
        "source_subtype": raw.get("kind") or "item",
        "people": collect_people(
            [
                raw.get("owner"),
                raw.get("creator"),
                raw.get("organizer"),
                raw.get("last_modified_by"),
                raw.get("author"),
                *_as_list(raw.get("attendees")),
                *_as_list(raw.get("participants")),
                *_as_list(raw.get("shared_with")),
                *_as_list(raw.get("watchers")),
                *_as_list(raw.get("editors")),
                *_as_list(raw.get("commenters")),
            ],
            self_lower,
        ),
        "user_role": "mentioned",
        "scope": _duration_scope(raw),
        "is_routine": raw.get("recurring") is True,
    }


EXTRACTORS: dict[str, Extractor] = {
    ToolType.GITHUB.value: _extract_github,
    ToolType.JIRA.value: _extract_jira,
    ToolType.SLACK.value: _extract_slack,
    ToolType.OUTLOOK.value: _extract_outlook,
    ToolType.GOOGLE_CALENDAR.value: _extract_google_calendar,
    ToolType.GOOGLE_DOCS.value: _extract_google_docs,
    ToolType.GOOGLE_SHEETS.value: _extract_google_sheets,
}


# ------------------------------------------------------------------ public


def to_activity_context(activity: RawActivity, self_identifier: str | None) -> ActivityContext:
    """Normalize one raw activity. Pure apart from telemetry counters."""
    source = (activity.source or "unknown").lower()
    self_lower = (self_identifier or "").strip().lower()
    extractor = EXTRACTORS.get(source, _extract_default)
    fields = extractor(activity, activity.raw or {}, self_lower)
    return ActivityContext(
        activity_id=activity.id,
        timestamp=activity.timestamp,
        title=activity.title,
        date=activity.timestamp.date().isoformat(),
        source=source,
        **fields,
    )


def normalize_activities(
    activities: Iterable[RawActivity], self_identifier: str | None
) -> list[ActivityContext]:
    """Normalize a batch; an item whose extractor blows up is skipped and logged."""
    contexts: list[ActivityContext] = []
    for activity in activities:
        try:
            contexts.append(to_activity_context(activity, self_identifier))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            counter("normalizer.skipped")
            logger.warning(
                "normalizer: skipped %s item %s %s (%s)",
                activity.source,
                redact(activity.id),
                redact_title(activity.title),
                type(exc).__name__,
            )
    return contexts
