"""
Known context: the small set of facts the model should not re-derive.

Built once by the caller from ranked activities and handed to the generator
as primitives only. The full activity list never flows through this struct.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import asdict, dataclass

from journalq.activity.ranker import CODE_SCOPE
from journalq.contracts.activity import RankedActivity
from journalq.contracts.request import DateRange

MAX_COLLABORATORS = 10
MAX_LABELS = 10
FILES_IN_SCOPE = re.compile(r",\s*(\d+)\s+files")


@dataclass(frozen=True)
class KnownContext:
    date_range_start: str
    date_range_end: str
    collaborators: tuple[str, ...] = ()
    code_changes: int = 0
    lines_added: int = 0
    lines_deleted: int = 0
    files_changed: int = 0
    tools: tuple[str, ...] = ()
    labels: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("collaborators", "tools", "labels"):
            data[key] = list(data[key])
        return data


def build_known_context(ranked: Sequence[RankedActivity], date_range: DateRange) -> KnownContext:
    collaborators: list[str] = []
    seen_people: set[str] = set()
    tools: list[str] = []
    labels: list[str] = []
    code_changes = added = deleted = files = 0

    for item in ranked:
        ctx = item.context
        if ctx.source not in tools:
            tools.append(ctx.source)
        for person in ctx.people:
            if person.lower() not in seen_people and len(collaborators) < MAX_COLLABORATORS:
                seen_people.add(person.lower())
                collaborators.append(person)
        for label in ctx.labels:
            if isinstance(label, str) and label not in labels and len(labels) < MAX_LABELS:
                labels.append(label)
        match = CODE_SCOPE.search(ctx.scope or "")
        if match:
            code_changes += 1
            added += int(match.group(1))
            deleted += int(match.group(2))
            files_match = FILES_IN_SCOPE.search(ctx.scope or "")
            if files_match:
                files += int(files_match.group(1))

    return KnownContext(
        date_range_start=date_range.start.date().isoformat(),
        date_range_end=date_range.end.date().isoformat(),
        collaborators=tuple(collaborators),
        code_changes=code_changes,
        lines_added=added,
        lines_deleted=deleted,
        files_changed=files,
        tools=tuple(tools),
        labels=tuple(labels),
    )
