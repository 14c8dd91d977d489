"""
Redaction helpers for log lines.

Provides:
- redact(): Hash identifiers (user ids, session ids, tokens) for correlation without exposure
- redact_title(): Partially redact an activity title for debugging
"""

from __future__ import annotations

from hashlib import sha256


def redact(value: str | None) -> str:
    """
    Return a stable hash representation of a sensitive string.
    """
    if not value:
        return "hash:missing"
    digest = sha256(value.encode("utf-8")).hexdigest()[:12]
    return f"hash:{digest}"


def redact_title(title: str | None, max_length: int = 30) -> str:
    """
    Partially redact an activity title for logging while preserving debuggability.

    Shows first N characters + hash suffix for correlation.

    Example:
        "TRACK-42: Rotate the billing service credentials" ->
        "TRACK-42: Rotate the billing s... (h:7a8b9c)"
    """
    if not title:
        return "(no title)"

    visible = title[:max_length] + "..." if len(title) > max_length else title
    digest = sha256(title.encode("utf-8")).hexdigest()[:6]
    return f"{visible} (h:{digest})"
