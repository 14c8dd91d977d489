"""Typed per-tool fetch failures.

None of these abort a fetch cycle: the pipeline collects them per tool and
reports them next to whatever the other tools produced.
"""

from __future__ import annotations


class ToolFetchError(RuntimeError):
    """A single tool could not produce activity."""

    def __init__(
        self,
        tool_type: str,
        reason: str,
        message: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message or f"{tool_type}: {reason}")
        self.tool_type = tool_type
        self.reason = reason
        self.status_code = status_code

    @property
    def needs_reconnect(self) -> bool:
        return False


class RateLimitError(ToolFetchError):
    def __init__(
        self,
        tool_type: str,
        retry_after: float | None = None,
        message: str | None = None,
    ):
        super().__init__(tool_type, "rate_limited", message, status_code=429)
        self.retry_after = retry_after


class AuthExpiredError(ToolFetchError):
    """Token rejected by the tool. Surfaced as "reconnect", never retried."""

    def __init__(
        self,
        tool_type: str,
        message: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(tool_type, "auth_expired", message, status_code=status_code)

    @property
    def needs_reconnect(self) -> bool:
        return True
