"""
Correlator: pattern-based cross-tool relationships over ranked activities.

Three matchers each propose candidates:

- identifier cross-reference (a code change or other item names a tracker key)
- temporal proximity (a meeting followed shortly by a related discussion or
  code change)
- title similarity between design files and documentation

Candidates are deduplicated on (type, set of ids), keeping the most confident,
then numbered in a deterministic order. Only cross-tool pairs are considered,
so an activity never correlates with itself.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from journalq.config import (
    CORRELATION_SIMILARITY_THRESHOLD,
    CORRELATION_TEMPORAL_WINDOW_SECONDS,
)
from journalq.contracts.activity import ActivityContext, Correlation, RankedActivity, ToolType
from journalq.observability.telemetry import counter

TRACKER_KEY = re.compile(r"\b[A-Z][A-Z0-9]+-\d+\b")
TOKEN = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset(
    {
        "with", "from", "this", "that", "into", "about", "after", "before", "over",
        "update", "updated", "updates", "meeting", "sync", "weekly", "daily", "review",
        "notes", "draft", "final", "team", "call",
    }
)

CODE_SOURCES = frozenset({ToolType.GITHUB.value})
TRACKER_SOURCES = frozenset({ToolType.JIRA.value})
DISCUSSION_SOURCES = frozenset({ToolType.SLACK.value})
DESIGN_SOURCES = frozenset({ToolType.FIGMA.value})
DOC_SOURCES = frozenset({ToolType.GOOGLE_DOCS.value, ToolType.CONFLUENCE.value})

# Correlation types
CODE_TO_ISSUE = "code_to_issue"
ISSUE_REFERENCE = "issue_reference"
MEETING_FOLLOW_UP = "meeting_follow_up"
DESIGN_TO_DOC = "design_to_doc"


@dataclass(frozen=True)
class CorrelationThresholds:
    key_in_title: float = 0.95
    key_in_body: float = 0.85
    key_elsewhere: float = 0.7
    temporal_window_seconds: float = CORRELATION_TEMPORAL_WINDOW_SECONDS
    temporal_base: float = 0.55
    temporal_per_keyword: float = 0.1
    temporal_recency: float = 0.1
    temporal_max: float = 0.9
    similarity_min: float = CORRELATION_SIMILARITY_THRESHOLD
    similarity_base: float = 0.5
    similarity_max: float = 0.95


DEFAULT_THRESHOLDS = CorrelationThresholds()


@dataclass(frozen=True)
class _Candidate:
    type: str
    activity_ids: tuple[str, ...]
    description: str
    confidence: float
    evidence: dict


def significant_tokens(text: str | None) -> set[str]:
    if not text:
        return set()
    return {t for t in TOKEN.findall(text.lower()) if len(t) > 3 and t not in STOPWORDS}


def tracker_key(ctx: ActivityContext) -> str | None:
    """Key of a tracker item, from its title or its activity id."""
    for text in (ctx.title, ctx.activity_id):
        match = TRACKER_KEY.search(text or "")
        if match:
            return match.group(0)
    return None


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _is_meeting(ctx: ActivityContext) -> bool:
    return ctx.source_subtype == "meeting"


def _pair(a: ActivityContext, b: ActivityContext) -> tuple[str, ...]:
    return tuple(sorted((a.activity_id, b.activity_id)))


# ---------------------------------------------------------------- matchers


def match_identifiers(
    contexts: Sequence[ActivityContext], thresholds: CorrelationThresholds = DEFAULT_THRESHOLDS
) -> Iterator[_Candidate]:
    trackers = [(ctx, tracker_key(ctx)) for ctx in contexts if ctx.source in TRACKER_SOURCES]
    for tracker, key in trackers:
        if not key:
            continue
        pattern = re.compile(rf"\b{re.escape(key)}\b")
        for other in contexts:
            if other.source == tracker.source:
                continue
            in_title = bool(pattern.search(other.title or ""))
            in_body = bool(pattern.search(other.body or ""))
            if not (in_title or in_body):
                continue
            if other.source in CODE_SOURCES:
                kind = CODE_TO_ISSUE
                confidence = thresholds.key_in_title if in_title else thresholds.key_in_body
                description = f"Code change references {key}"
            else:
                kind = ISSUE_REFERENCE
                confidence = thresholds.key_elsewhere
                description = f"{other.source} item mentions {key}"
            yield _Candidate(
                type=kind,
                activity_ids=_pair(tracker, other),
                description=description,
                confidence=confidence,
                evidence={"key": key, "matched_in": "title" if in_title else "body"},
            )


def match_temporal(
    contexts: Sequence[ActivityContext], thresholds: CorrelationThresholds = DEFAULT_THRESHOLDS
) -> Iterator[_Candidate]:
    window = thresholds.temporal_window_seconds
    meetings = [ctx for ctx in contexts if _is_meeting(ctx)]
    followers = [
        ctx for ctx in contexts if ctx.source in DISCUSSION_SOURCES or ctx.source in CODE_SOURCES
    ]
    for meeting in meetings:
        meeting_tokens = significant_tokens(meeting.title)
        if not meeting_tokens:
            continue
        for other in followers:
            if other.source == meeting.source:
                continue
            gap = (other.timestamp - meeting.timestamp).total_seconds()
            if gap < 0 or gap > window:
                continue
            shared = sorted(meeting_tokens & significant_tokens(other.title))
            if not shared:
                continue
            confidence = min(
                thresholds.temporal_max,
                thresholds.temporal_base
                + thresholds.temporal_per_keyword * len(shared)
                + thresholds.temporal_recency * (1 - gap / window if window else 0),
            )
            yield _Candidate(
                type=MEETING_FOLLOW_UP,
                activity_ids=_pair(meeting, other),
                description=f"{other.source} follow-up {int(gap // 60)} min after meeting",
                confidence=confidence,
                evidence={"gap_minutes": int(gap // 60), "shared_keywords": shared},
            )


def match_similarity(
    contexts: Sequence[ActivityContext], thresholds: CorrelationThresholds = DEFAULT_THRESHOLDS
) -> Iterator[_Candidate]:
    designs = [ctx for ctx in contexts if ctx.source in DESIGN_SOURCES]
    docs = [ctx for ctx in contexts if ctx.source in DOC_SOURCES]
    for design in designs:
        design_tokens = significant_tokens(design.title)
        for doc in docs:
            doc_tokens = significant_tokens(doc.title)
            union = design_tokens | doc_tokens
            if not union:
                continue
            jaccard = len(design_tokens & doc_tokens) / len(union)
            if jaccard < thresholds.similarity_min:
                continue
            yield _Candidate(
                type=DESIGN_TO_DOC,
                activity_ids=_pair(design, doc),
                description="Design file and document share a topic",
                confidence=min(thresholds.similarity_max, thresholds.similarity_base + 0.5 * jaccard),
                evidence={
                    "similarity": round(jaccard, 3),
                    "shared_keywords": sorted(design_tokens & doc_tokens),
                },
            )


MATCHERS = (match_identifiers, match_temporal, match_similarity)


# ------------------------------------------------------------------ public


def correlate(
    ranked: Sequence[RankedActivity],
    thresholds: CorrelationThresholds = DEFAULT_THRESHOLDS,
) -> list[Correlation]:
    """Find cross-tool correlations among ranked activities. Side-effect free
    apart from a telemetry counter."""
    contexts = [item.context for item in ranked]

    best: dict[tuple[str, frozenset[str]], _Candidate] = {}
    for matcher in MATCHERS:
        for candidate in matcher(contexts, thresholds):
            if len(set(candidate.activity_ids)) < 2:
                continue
            key = (candidate.type, frozenset(candidate.activity_ids))
            current = best.get(key)
            if current is None or candidate.confidence > current.confidence:
                best[key] = candidate

    ordered = sorted(best.values(), key=lambda c: (-c.confidence, c.type, c.activity_ids))
    counter("correlator.found", len(ordered))
    return [
        Correlation(
            id=f"corr-{index + 1}",
            type=c.type,
            activity_ids=c.activity_ids,
            description=c.description,
            confidence=round(_clamp(c.confidence), 4),
            evidence=c.evidence,
        )
        for index, c in enumerate(ordered)
    ]


def related_activity_ids(correlations: Sequence[Correlation], activity_id: str) -> list[str]:
    """Ids correlated with ``activity_id``, in correlation order, deduplicated."""
    related: list[str] = []
    for correlation in correlations:
        if activity_id not in correlation.activity_ids:
            continue
        for other in correlation.activity_ids:
            if other != activity_id and other not in related:
                related.append(other)
    return related


