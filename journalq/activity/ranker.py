"""
Heuristic ranker: nine independently weighted signals, zero model calls.

The ranker reads only ActivityContext fields, never raw tool payloads. Output
order is a total order (score, recency, source priority, id), so identical
input always yields identical output.
"""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from journalq.config import RANKER_DEFAULT_MAX_COUNT, RANKER_RICH_BODY_CHARS
from journalq.contracts.activity import ActivityContext, EdgeType, RankedActivity, ToolType
from journalq.observability.telemetry import counter

HIGH_SIGNAL_LABEL = re.compile(r"security|breaking|critical|urgent|p0|p1|hotfix|incident", re.IGNORECASE)
CODE_SCOPE = re.compile(r"\+(\d+)/-(\d+)")
COMPLETED_STATES = frozenset({"merged", "done", "resolved"})

# Lower index wins ties after score and recency.
SOURCE_PRIORITY: tuple[str, ...] = (
    ToolType.GITHUB.value,
    ToolType.JIRA.value,
    ToolType.CONFLUENCE.value,
    ToolType.GOOGLE_DOCS.value,
    ToolType.SLACK.value,
    ToolType.OUTLOOK.value,
    ToolType.GOOGLE_CALENDAR.value,
    ToolType.GOOGLE_SHEETS.value,
    ToolType.FIGMA.value,
)


def _default_edge_weights() -> dict[str, float]:
    return {
        EdgeType.PRIMARY.value: 3.0,
        EdgeType.OUTCOME.value: 2.5,
        EdgeType.SUPPORTING.value: 1.5,
        EdgeType.CONTEXTUAL.value: 0.5,
    }


@dataclass(frozen=True)
class RankingWeights:
    """Tunable weight table.

    ``routine_ceiling`` caps the score of a routine meeting. It must stay below
    the floor of an unhinted activity that is completed or links a tracker
    item, so a routine item never outranks one whatever other signals it
    collects.
    """

    edge: dict[str, float] = field(default_factory=_default_edge_weights)
    edge_default: float = 1.0
    rich_body: float = 2.0
    rich_body_chars: int = RANKER_RICH_BODY_CHARS
    code_large: float = 1.5
    code_large_lines: int = 200
    code_medium: float = 0.5
    code_medium_lines: int = 50
    people_many: float = 1.5
    people_many_count: int = 3
    people_some: float = 0.5
    high_signal_label: float = 1.0
    completed: float = 0.5
    reactions_many: float = 1.0
    reactions_many_count: int = 10
    reactions_some: float = 0.5
    reactions_some_count: int = 3
    linked: float = 0.5
    routine_penalty: float = -2.0
    routine_ceiling: float = 1.0

    @property
    def work_floor(self) -> float:
        """Lowest score of an unhinted item that is completed or linked."""
        return self.edge_default + min(self.completed, self.linked)

    def __post_init__(self) -> None:
        if self.routine_ceiling >= self.work_floor:
            raise ValueError(
                f"routine_ceiling {self.routine_ceiling} must be below the completed-work floor {self.work_floor}"
            )
        if self.routine_penalty > 0:
            raise ValueError("routine_penalty must not be positive")


DEFAULT_WEIGHTS = RankingWeights()


def code_size(scope: str | None) -> int:
    """Lines added + deleted parsed from a ``+A/-D`` scope string."""
    if not scope:
        return 0
    match = CODE_SCOPE.search(scope)
    if not match:
        return 0
    return int(match.group(1)) + int(match.group(2))


def reaction_total(sentiment: str | None) -> int:
    """Sum counts from a ``name:count, name:count`` sentiment string."""
    if not sentiment:
        return 0
    total = 0
    for pair in sentiment.split(","):
        _, _, count = pair.strip().rpartition(":")
        if count.isdigit():
            total += int(count)
    return total


def score_activity(
    ctx: ActivityContext,
    edge_type: str | None = None,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> tuple[float, tuple[str, ...]]:
    """Score one activity. Returns (score, signals that fired)."""
    score = 0.0
    signals: list[str] = []

    # 1. edge type
    if edge_type:
        score += weights.edge.get(edge_type, weights.edge_default)
        signals.append(f"edge:{edge_type}")
    else:
        score += weights.edge_default

    # 2. rich body
    if ctx.body and len(ctx.body) > weights.rich_body_chars:
        score += weights.rich_body
        signals.append(f"body:{len(ctx.body)}chars")

    # 3. code scope
    lines = code_size(ctx.scope)
    if lines > weights.code_large_lines:
        score += weights.code_large
        signals.append(f"code:{lines}")
    elif lines > weights.code_medium_lines:
        score += weights.code_medium
        signals.append(f"code:{lines}")

    # 4. participants
    if len(ctx.people) >= weights.people_many_count:
        score += weights.people_many
        signals.append(f"people:{len(ctx.people)}")
    elif ctx.people:
        score += weights.people_some
        signals.append(f"people:{len(ctx.people)}")

    # 5. high-signal labels
    high = [label for label in ctx.labels if isinstance(label, str) and HIGH_SIGNAL_LABEL.search(label)]
    if high:
        score += weights.high_signal_label
        signals.append(f"labels:{','.join(high)}")

    # 6. completion
    if ctx.state and ctx.state.lower() in COMPLETED_STATES:
        score += weights.completed
        signals.append("completed")

    # 7. reactions
    reactions = reaction_total(ctx.sentiment)
    if reactions >= weights.reactions_many_count:
        score += weights.reactions_many
        signals.append(f"reactions:{reactions}")
    elif reactions >= weights.reactions_some_count:
        score += weights.reactions_some
        signals.append(f"reactions:{reactions}")

    # 8. linked items
    if ctx.linked_items:
        score += weights.linked
        signals.append(f"linked:{len(ctx.linked_items)}")

    # 9. routine meeting
    if ctx.is_routine:
        score = min(score + weights.routine_penalty, weights.routine_ceiling)
        signals.append(f"routine:{weights.routine_penalty:g}")

    return round(score, 6), tuple(signals)


def _source_rank(source: str) -> int:
    try:
        return SOURCE_PRIORITY.index(source)
    except ValueError:
        return len(SOURCE_PRIORITY)


def rank_activities(
    contexts: Sequence[ActivityContext],
    self_identifier: str | None = None,
    edge_hints: Mapping[str, EdgeType | str] | None = None,
    max_count: int = RANKER_DEFAULT_MAX_COUNT,
    weights: RankingWeights = DEFAULT_WEIGHTS,
) -> list[RankedActivity]:
    """Score, order and cap activities.

    ``self_identifier`` is accepted for callers that rank un-normalized
    batches; people lists are already self-filtered by the normalizer.

    Returns at most ``max_count`` items with non-increasing scores.
    """
    if max_count <= 0 or not contexts:
        return []

    hints = {k: (v.value if isinstance(v, EdgeType) else str(v)) for k, v in (edge_hints or {}).items()}
    scored = []
    for ctx in contexts:
        score, signals = score_activity(ctx, hints.get(ctx.activity_id), weights)
        scored.append((ctx, score, signals))

    scored.sort(
        key=lambda item: (
            -item[1],
            -item[0].timestamp.timestamp(),
            _source_rank(item[0].source),
            item[0].activity_id,
        )
    )
    top = scored[:max_count]
    counter("ranker.dropped", len(scored) - len(top))
    return [
        RankedActivity(context=ctx, score=score, rank=index + 1, signals=signals)
        for index, (ctx, score, signals) in enumerate(top)
    ]
