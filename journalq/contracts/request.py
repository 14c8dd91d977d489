"""
Inbound fetch request models.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from journalq.contracts.activity import EdgeType, ToolType


class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @model_validator(mode="after")
    def validate_order(self) -> DateRange:
        if self.start > self.end:
            raise ValueError("date_range.start must not be after date_range.end")
        return self

    def contains(self, moment: datetime) -> bool:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return self.start <= moment <= self.end


class FetchRequest(BaseModel):
    """
    One user-initiated fetch cycle.

    ``tool_types`` may be empty here; the pipeline rejects that case with a
    configuration error so it can be reported before any adapter runs.
    """

    model_config = ConfigDict(frozen=True)

    tool_types: list[ToolType] = Field(default_factory=list)
    date_range: DateRange
    consent_given: bool = False
    quality: Literal["quick", "balanced", "high"] = "balanced"
    privacy: Literal["private", "team", "network", "public"] = "team"
    workspace_name: str | None = None
    max_activities: int = Field(default=20, ge=1, le=100)
    edge_hints: dict[str, EdgeType] = Field(default_factory=dict)
    self_identifier: str | None = None

    @field_validator("tool_types")
    @classmethod
    def dedupe_tools(cls, v: list[ToolType]) -> list[ToolType]:
        seen: list[ToolType] = []
        for tool in v:
            if tool not in seen:
                seen.append(tool)
        return seen
