"""
Activity contracts shared by adapters, normalizer, ranker and correlator.

Everything here is immutable: a fetch cycle builds these once and only reads
them afterwards, so they can be handed across threads and stored in a session
without copying.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ToolType(str, Enum):
    """External tools an activity can come from."""

    GITHUB = "github"
    JIRA = "jira"
    SLACK = "slack"
    OUTLOOK = "outlook"
    GOOGLE_CALENDAR = "google-calendar"
    GOOGLE_DOCS = "google-docs"
    GOOGLE_SHEETS = "google-sheets"
    CONFLUENCE = "confluence"
    FIGMA = "figma"


class EdgeType(str, Enum):
    """Upstream importance classification used as a ranking input."""

    PRIMARY = "primary"
    OUTCOME = "outcome"
    SUPPORTING = "supporting"
    CONTEXTUAL = "contextual"


@dataclass(frozen=True)
class RawActivity:
    """One item exactly as an adapter produced it.

    ``raw`` holds the tool-specific fields the normalizer and format
    transformer read (e.g. ``number``/``additions`` for a GitHub PR).
    """

    id: str
    source: str
    title: str
    timestamp: datetime
    description: str | None = None
    url: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ActivityContext:
    activity_id: str
    timestamp: datetime
    title: str
    date: str  # ISO YYYY-MM-DD
    source: str
    source_subtype: str
    people: tuple[str, ...] = ()
    user_role: str = "participant"
    body: str | None = None
    labels: tuple[str, ...] = ()
    scope: str | None = None
    container: str | None = None
    state: str | None = None
    linked_items: tuple[str, ...] = ()
    sentiment: str | None = None
    is_routine: bool = False


@dataclass(frozen=True)
class RankedActivity:
    context: ActivityContext
    score: float
    rank: int
    signals: tuple[str, ...] = ()

    @property
    def activity_id(self) -> str:
        return self.context.activity_id


@dataclass(frozen=True)
class Correlation:
    """A cross-tool relationship between two or more activities."""

    id: str
    type: str
    activity_ids: tuple[str, ...]
    description: str
    confidence: float
    evidence: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if len(set(self.activity_ids)) < 2:
            raise ValueError("a correlation needs at least two distinct activities")
