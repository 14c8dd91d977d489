"""
Format7 journal entry assembly.

Pure transformation of ranked and correlated activities into the structured
entry the journal UI renders. Every field is copied from upstream data or is
an aggregation over it; nothing here calls a model or guesses at meaning.

Evidence metrics are only emitted when the tool actually reported them. A PR
without a deletion count gets no ``lines_deleted`` key, not a zero.
"""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from journalq.activity.correlator import related_activity_ids
from journalq.contracts.activity import Correlation, RankedActivity, RawActivity
from journalq.contracts.request import FetchRequest
from journalq.observability.logging import get_logger

logger = get_logger(__name__)

Importance = Literal["high", "medium", "low"]

MAX_TECHNOLOGIES_PER_ACTIVITY = 3
MAX_ARTIFACTS = 5

EVIDENCE_TYPES: dict[str, str] = {
    "pr": "pull_request",
    "commit": "code_change",
    "issue": "issue_ticket",
    "meeting": "meeting_recording",
    "thread": "discussion_thread",
    "message": "discussion_thread",
    "email": "email",
    "design": "design_file",
    "document": "documentation",
    "spreadsheet": "documentation",
    "page": "documentation",
    "blogpost": "documentation",
}

TECH_KEYWORDS: dict[str, str] = {
    "react": "React",
    "typescript": "TypeScript",
    "javascript": "JavaScript",
    "node": "Node.js",
    "python": "Python",
    "java": "Java",
    "api": "API Development",
    "rest": "REST API",
    "graphql": "GraphQL",
    "database": "Database",
    "sql": "SQL",
    "mongodb": "MongoDB",
    "postgres": "PostgreSQL",
    "redis": "Redis",
    "docker": "Docker",
    "kubernetes": "Kubernetes",
    "aws": "AWS",
    "azure": "Azure",
    "gcp": "Google Cloud",
    "ci/cd": "CI/CD",
    "pipeline": "CI/CD",
    "unit test": "Unit Testing",
    "testing": "Testing",
    "frontend": "Frontend",
    "backend": "Backend",
    "css": "CSS",
    "html": "HTML",
    "security": "Security",
    "authentication": "Authentication",
    "oauth": "OAuth",
    "performance": "Performance",
    "refactor": "Refactoring",
    "architecture": "Architecture",
}
TECH_PATTERNS = [
    (re.compile(rf"\b{re.escape(keyword)}s?\b", re.IGNORECASE), name)
    for keyword, name in TECH_KEYWORDS.items()
]

ACTIONS: dict[tuple[str, str], str] = {
    ("github", "commit"): "Committed code",
    ("jira", "issue"): "Worked on issue",
    ("slack", "thread"): "Discussed in thread",
    ("slack", "message"): "Sent message",
    ("outlook", "meeting"): "Attended meeting",
    ("outlook", "email"): "Sent email",
    ("google-calendar", "meeting"): "Attended meeting",
    ("google-docs", "document"): "Edited document",
    ("google-sheets", "spreadsheet"): "Edited spreadsheet",
    ("confluence", "page"): "Edited page",
    ("confluence", "blogpost"): "Published blog post",
    ("figma", "design"): "Updated design",
}

PALETTE = (
    "from-purple-400 to-pink-400",
    "from-blue-400 to-cyan-400",
    "from-green-400 to-teal-400",
    "from-orange-400 to-red-400",
    "from-indigo-400 to-purple-400",
    "from-yellow-400 to-orange-400",
    "from-pink-400 to-rose-400",
    "from-teal-400 to-cyan-400",
)


# ------------------------------------------------------------------ models


class EntryMetadata(BaseModel):
    title: str
    date: str
    type: str = "achievement"
    workspace: str | None = None
    privacy: str = "team"
    is_automated: bool = True
    created_at: datetime


class EntryContext(BaseModel):
    date_range: dict[str, str]
    sources_included: list[str] = Field(default_factory=list)
    total_activities: int = 0
    primary_focus: str = ""


class Evidence(BaseModel):
    type: str
    url: str | None = None
    title: str
    links: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Collaborator(BaseModel):
    id: str
    name: str
    initials: str
    avatar: str | None = None
    color: str
    role: str = ""


class EntryActivity(BaseModel):
    id: str
    source: str
    type: str
    action: str
    description: str
    timestamp: datetime
    evidence: Evidence
    related_activities: list[str] = Field(default_factory=list)
    technologies: list[str] = Field(default_factory=list, max_length=MAX_TECHNOLOGIES_PER_ACTIVITY)
    collaborators: list[str] = Field(default_factory=list)
    reviewers: list[str] = Field(default_factory=list)
    importance: Importance = "medium"


class EntryCorrelation(BaseModel):
    id: str
    type: str
    activity_ids: list[str]
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: dict[str, Any] = Field(default_factory=dict)


class EntrySummary(BaseModel):
    total_time_range_hours: float = 0.0
    activities_by_type: dict[str, int] = Field(default_factory=dict)
    activities_by_source: dict[str, int] = Field(default_factory=dict)
    unique_collaborators: list[Collaborator] = Field(default_factory=list)
    unique_reviewers: list[Collaborator] = Field(default_factory=list)
    technologies_used: list[str] = Field(default_factory=list)
    skills_demonstrated: list[str] = Field(default_factory=list)


class Artifact(BaseModel):
    type: str
    source: str
    title: str
    url: str
    description: str = ""
    importance: Importance = "high"


class Format7Entry(BaseModel):
    """
    The structured journal entry.

    The summary counts are checked against the activity list on construction,
    so an entry that disagrees with itself cannot be built.
    """

    model_config = ConfigDict(frozen=True)

    entry_metadata: EntryMetadata
    context: EntryContext
    activities: list[EntryActivity] = Field(default_factory=list)
    correlations: list[EntryCorrelation] = Field(default_factory=list)
    summary: EntrySummary
    artifacts: list[Artifact] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_counts(self) -> Format7Entry:
        total = len(self.activities)
        if sum(self.summary.activities_by_type.values()) != total:
            raise ValueError("activities_by_type does not add up to the activity count")
        if sum(self.summary.activities_by_source.values()) != total:
            raise ValueError("activities_by_source does not add up to the activity count")
        if self.context.total_activities != total:
            raise ValueError("context.total_activities does not match the activity count")
        return self


# ----------------------------------------------------------------- helpers


def person_id(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def initials(name: str) -> str:
    parts = name.strip().split()
    if not parts:
        return "??"
    if len(parts) == 1:
        return (parts[0] * 2)[:2].upper()
    return (parts[0][0] + parts[-1][0]).upper()


def palette_color(name: str) -> str:
    """Same name, same colour, on every run."""
    return PALETTE[sum(ord(ch) for ch in name) % len(PALETTE)]


def make_collaborator(name: str) -> Collaborator:
    name = name.strip()
    return Collaborator(
        id=person_id(name),
        name=name,
        initials=initials(name),
        color=palette_color(name),
    )


def detect_technologies(*texts: str | None) -> list[str]:
    combined = " ".join(t for t in texts if t)
    found: list[str] = []
    for pattern, name in TECH_PATTERNS:
        if name not in found and pattern.search(combined):
            found.append(name)
            if len(found) >= MAX_TECHNOLOGIES_PER_ACTIVITY:
                break
    return found


def _present(raw: Mapping[str, Any], key: str) -> bool:
    return raw.get(key) is not None


def _count(value: Any) -> int | None:
    return len(value) if isinstance(value, list) else None


def evidence_metadata(subtype: str, raw: Mapping[str, Any]) -> dict[str, Any]:
    """Metrics the tool actually reported for this kind of activity."""
    metadata: dict[str, Any] = {}

    def put(key: str, value: Any) -> None:
        if value is not None:
            metadata[key] = value

    if subtype in ("pr", "commit"):
        put("lines_added", raw.get("additions"))
        put("lines_deleted", raw.get("deletions"))
        put("files_changed", raw.get("changed_files", raw.get("files_changed")))
        put("comments", raw.get("comments_count"))
        put("commits", raw.get("commits"))
    elif subtype == "issue":
        put("comments", _count(raw.get("comments")))
        if _present(raw, "time_spent"):
            put("time_spent_minutes", int(raw["time_spent"]) // 60)
        put("story_points", raw.get("story_points"))
    elif subtype in ("thread", "message"):
        put("replies", raw.get("reply_count"))
        reactions = raw.get("reactions")
        if isinstance(reactions, list) and reactions:
            put(
                "reactions",
                sum(int(r.get("count") or 0) for r in reactions if isinstance(r, dict)),
            )
    elif subtype == "meeting":
        put("duration_minutes", raw.get("duration"))
        attendees = raw.get("attendees")
        if isinstance(attendees, list):
            put("participants", len(attendees))
    elif subtype in ("document", "spreadsheet", "page", "blogpost"):
        put("comments", _count(raw.get("comments")))
        put("version", raw.get("version"))
        put("sheets", _count(raw.get("sheets")))
    return metadata


def action_for(source: str, subtype: str, raw: Mapping[str, Any], state: str | None) -> str:
    if source == "github" and subtype == "pr":
        verb = "Merged PR" if (state or "").lower() == "merged" else "Opened PR"
        number = raw.get("number")
        return f"{verb} #{number}" if number is not None else verb
    action = ACTIONS.get((source, subtype))
    if action and raw.get("key"):
        return f"{action} {raw['key']}"
    return action or "Updated"


def importance_for(rank: int) -> Importance:
    if rank <= 3:
        return "high"
    if rank <= 8:
        return "medium"
    return "low"


def _time_span_hours(timestamps: Sequence[datetime]) -> float:
    if len(timestamps) < 2:
        return 0.0
    return round((max(timestamps) - min(timestamps)).total_seconds() / 3600, 2)


def _add_person(roster: dict[str, Collaborator], name: Any) -> str | None:
    if not isinstance(name, str) or not name.strip():
        return None
    key = person_id(name)
    if key not in roster:
        roster[key] = make_collaborator(name)
    return key


# ------------------------------------------------------------------ public


def build_format7_entry(
    ranked: Sequence[RankedActivity],
    correlations: Sequence[Correlation],
    raw_by_id: Mapping[str, RawActivity],
    request: FetchRequest,
    narrative: Any = None,
    now: datetime | None = None,
) -> Format7Entry:
    """
    Assemble a Format7Entry.

    Args:
        ranked: Ranked activities, best first
        correlations: Correlator output for the same activities
        raw_by_id: Original adapter items by activity id, for evidence metrics
        request: The fetch request (workspace, privacy, date range)
        narrative: Optional generated narrative (title, description, skills, entry_type)
        now: Creation timestamp override

    Returns:
        Validated Format7Entry
    """
    now = now or datetime.now(UTC)
    self_key = person_id(request.self_identifier) if request.self_identifier else None

    collaborators: dict[str, Collaborator] = {}
    reviewers: dict[str, Collaborator] = {}
    activities: list[EntryActivity] = []
    technologies: list[str] = []
    by_type: Counter[str] = Counter()
    by_source: Counter[str] = Counter()
    sources: list[str] = []
    urls = {aid: raw.url for aid, raw in raw_by_id.items() if raw.url}

    for item in ranked:
        ctx = item.context
        raw_activity = raw_by_id.get(ctx.activity_id)
        raw = raw_activity.raw if raw_activity else {}

        people = [key for key in (_add_person(collaborators, p) for p in ctx.people) if key]
        review_keys: list[str] = []
        for name in raw.get("reviewers") or []:
            if isinstance(name, str) and person_id(name) != self_key:
                key = _add_person(reviewers, name)
                if key and key not in review_keys:
                    review_keys.append(key)

        tech = detect_technologies(ctx.title, ctx.body)
        for name in tech:
            if name not in technologies:
                technologies.append(name)

        related = related_activity_ids(correlations, ctx.activity_id)
        evidence = Evidence(
            type=EVIDENCE_TYPES.get(ctx.source_subtype, ctx.source_subtype),
            url=raw_activity.url if raw_activity else None,
            title=ctx.title,
            links=[urls[aid] for aid in related if aid in urls],
            metadata=evidence_metadata(ctx.source_subtype, raw),
        )
        activities.append(
            EntryActivity(
                id=ctx.activity_id,
                source=ctx.source,
                type=ctx.source_subtype,
                action=action_for(ctx.source, ctx.source_subtype, raw, ctx.state),
                description=ctx.body or ctx.title,
                timestamp=ctx.timestamp,
                evidence=evidence,
                related_activities=related,
                technologies=tech,
                collaborators=people,
                reviewers=review_keys,
                importance=importance_for(item.rank),
            )
        )
        by_type[ctx.source_subtype] += 1
        by_source[ctx.source] += 1
        if ctx.source not in sources:
            sources.append(ctx.source)

    artifacts = [
        Artifact(
            type=a.evidence.type,
            source=a.source,
            title=a.evidence.title,
            url=a.evidence.url,
            description=a.action,
            importance=a.importance,
        )
        for a in activities
        if a.evidence.url and a.importance == "high"
    ][:MAX_ARTIFACTS]

    date_range = request.date_range
    title = getattr(narrative, "title", None) or (
        f"Work from {date_range.start.date().isoformat()} to {date_range.end.date().isoformat()}"
    )
    entry = Format7Entry(
        entry_metadata=EntryMetadata(
            title=title,
            date=date_range.end.date().isoformat(),
            type=getattr(narrative, "entry_type", None) or "achievement",
            workspace=request.workspace_name,
            privacy=request.privacy,
            is_automated=True,
            created_at=now,
        ),
        context=EntryContext(
            date_range={
                "start": date_range.start.isoformat(),
                "end": date_range.end.isoformat(),
            },
            sources_included=sources,
            total_activities=len(activities),
            primary_focus=getattr(narrative, "description", None) or "",
        ),
        activities=activities,
        correlations=[
            EntryCorrelation(
                id=c.id,
                type=c.type,
                activity_ids=list(c.activity_ids),
                description=c.description,
                confidence=c.confidence,
                evidence=dict(c.evidence),
            )
            for c in correlations
        ],
        summary=EntrySummary(
            total_time_range_hours=_time_span_hours([a.timestamp for a in activities]),
            activities_by_type=dict(by_type),
            activities_by_source=dict(by_source),
            unique_collaborators=list(collaborators.values()),
            unique_reviewers=list(reviewers.values()),
            technologies_used=technologies,
            skills_demonstrated=list(getattr(narrative, "skills", None) or []),
        ),
        artifacts=artifacts,
    )
    logger.info(
        "format7: %d activities, %d collaborators, %d reviewers, %d correlations",
        len(activities),
        len(collaborators),
        len(reviewers),
        len(correlations),
    )
    return entry
