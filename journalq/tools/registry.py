"""
Tool type -> adapter class lookup.
"""

from __future__ import annotations

from typing import Any

import requests

from journalq.contracts.activity import ToolType
from journalq.tools.base import ToolAdapter
from journalq.tools.confluence import ConfluenceAdapter
from journalq.tools.figma import FigmaAdapter
from journalq.tools.github import GitHubAdapter
from journalq.tools.google_workspace import (
    GoogleCalendarAdapter,
    GoogleDocsAdapter,
    GoogleSheetsAdapter,
)
from journalq.tools.jira import JiraAdapter
from journalq.tools.outlook import OutlookAdapter
from journalq.tools.slack import SlackAdapter

ADAPTERS: dict[ToolType, type[ToolAdapter]] = {
    ToolType.GITHUB: GitHubAdapter,
    ToolType.JIRA: JiraAdapter,
    ToolType.SLACK: SlackAdapter,
    ToolType.OUTLOOK: OutlookAdapter,
    ToolType.GOOGLE_CALENDAR: GoogleCalendarAdapter,
    ToolType.GOOGLE_DOCS: GoogleDocsAdapter,
    ToolType.GOOGLE_SHEETS: GoogleSheetsAdapter,
    ToolType.CONFLUENCE: ConfluenceAdapter,
    ToolType.FIGMA: FigmaAdapter,
}


def build_adapter(
    tool_type: ToolType | str,
    session: requests.Session | None = None,
    **kwargs: Any,
) -> ToolAdapter:
    """Instantiate the adapter for ``tool_type``.

    Raises:
        ValueError: unknown tool type
    """
    return ADAPTERS[ToolType(tool_type)](session=session, **kwargs)
