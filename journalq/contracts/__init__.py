from journalq.contracts.activity import (
    ActivityContext,
    Correlation,
    EdgeType,
    RankedActivity,
    RawActivity,
    ToolType,
)
from journalq.contracts.request import DateRange, FetchRequest

__all__ = [
    "ActivityContext",
    "Correlation",
    "DateRange",
    "EdgeType",
    "FetchRequest",
    "RankedActivity",
    "RawActivity",
    "ToolType",
]
