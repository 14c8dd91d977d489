"""
Secret scanner for free-text activity bodies.

Detects credential-like substrings (API keys, tokens, connection strings,
passwords, emails, raw IPv4 addresses) and strips them before the text is
stored or shown to a model. Findings are informational: they are counted and
logged by kind, never raised to the user.

Replacement tokens (``[REDACTED]``, ``[EMAIL]``, ``[IP]``) never match any
pattern, so a cleaned string stays clean.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from journalq.observability.telemetry import counter

REDACTED = "[REDACTED]"
MAX_PASSES = 3

# Order matters: bearer tokens go before key=value so "Authorization: Bearer x"
# loses the token, not just the word "Bearer".
SECRET_PATTERNS: list[tuple[str, re.Pattern[str], str]] = [
    (
        "private_key",
        re.compile(
            r"-----BEGIN [A-Z ]*PRIVATE KEY-----"
            r"(?:[\s\S]*?-----END [A-Z ]*PRIVATE KEY-----|[\s\S]*)"
        ),
        REDACTED,
    ),
    (
        "connection_string",
        re.compile(r"\b[a-zA-Z][a-zA-Z0-9+.-]*://[^\s:/@\[]+:[^\s@\[]+@[^\s\[]+"),
        REDACTED,
    ),
    ("jwt", re.compile(r"\beyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+"), REDACTED),
    ("bearer_token", re.compile(r"(?i)\bbearer\s+[A-Za-z0-9\-._~+/]{8,}=*"), REDACTED),
    ("aws_access_key", re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{8,}"), REDACTED),
    ("github_token", re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}"), REDACTED),
    ("github_token", re.compile(r"\bgithub_pat_[A-Za-z0-9_]{20,}"), REDACTED),
    ("slack_token", re.compile(r"\bxox[abposr]-[A-Za-z0-9-]{10,}"), REDACTED),
    ("google_api_key", re.compile(r"\bAIza[0-9A-Za-z_-]{30,}"), REDACTED),
    ("openai_key", re.compile(r"\bsk-[A-Za-z0-9_-]{20,}"), REDACTED),
    (
        "credential_assignment",
        re.compile(
            r"(?i)\b(?:[\w-]*[_.-])?(?:api[_-]?key|secret(?:[_-]?key)?|client[_-]?secret|"
            r"(?:access|auth|refresh)?[_-]?token|passw(?:or)?d|pwd|access[_-]?key)"
            r"\s*[:=]\s*[\"']?[^\s\"',;\[]+"
        ),
        REDACTED,
    ),
    ("email", re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL]"),
    (
        "ipv4",
        re.compile(
            r"\b(?:(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\.){3}(?:25[0-5]|2[0-4]\d|1\d\d|[1-9]?\d)\b"
        ),
        "[IP]",
    ),
]


@dataclass(frozen=True)
class SecretDetected:
    """Informational finding: ``count`` substrings of ``kind`` were stripped."""

    kind: str
    count: int


@dataclass(frozen=True)
class ScanResult:
    text: str
    findings: tuple[SecretDetected, ...] = ()

    @property
    def had_secrets(self) -> bool:
        return bool(self.findings)


def contains_secret(text: str | None) -> bool:
    if not text:
        return False
    return any(pattern.search(text) for _, pattern, _ in SECRET_PATTERNS)


def _single_pass(text: str, totals: dict[str, int]) -> str:
    for kind, pattern, replacement in SECRET_PATTERNS:
        text, hits = pattern.subn(replacement, text)
        if hits:
            totals[kind] = totals.get(kind, 0) + hits
    return text


def scan(text: str | None) -> ScanResult:
    """Strip every recognizable secret from ``text``.

    Passes repeat until nothing matches. If the text is somehow still dirty
    after ``MAX_PASSES`` the whole value is replaced.

    Side Effects:
        - Increments ``secrets.<kind>`` counters
    """
    if not text:
        return ScanResult(text=text or "")

    totals: dict[str, int] = {}
    cleaned = text
    for _ in range(MAX_PASSES):
        cleaned = _single_pass(cleaned, totals)
        if not contains_secret(cleaned):
            break
    else:
        totals["unresolved"] = totals.get("unresolved", 0) + 1
        cleaned = REDACTED

    for kind, hits in totals.items():
        counter(f"secrets.{kind}", hits)
    findings = tuple(SecretDetected(kind=k, count=v) for k, v in sorted(totals.items()))
    return ScanResult(text=cleaned, findings=findings)


def scan_and_strip(text: str | None) -> str:
    return scan(text).text
