"""Centralized configuration for the journalq fetch cycle.

Re-exports everything from journalq.infrastructure.settings so callers have a
single import, then adds typed constants for sessions, normalization, ranking,
correlation, tool fetching and the LLM step. Environment variable overrides use
safe defaults so the pipeline runs without extra env configuration.
"""

from __future__ import annotations

import os

from journalq.infrastructure.settings import *  # noqa: F401, F403  re-export

# --- Ephemeral sessions ---
SESSION_TTL_SECONDS: float = float(os.getenv("JOURNALQ_SESSION_TTL_SECONDS", str(30 * 60)))
SESSION_SWEEP_INTERVAL_SECONDS: float = float(os.getenv("JOURNALQ_SESSION_SWEEP_SECONDS", "300"))
SESSION_MAX_COUNT: int = int(os.getenv("JOURNALQ_SESSION_MAX_COUNT", "1000"))

# --- Normalization ---
ACTIVITY_MAX_BODY_CHARS: int = 500
EXCLUDED_BRANCHES: frozenset[str] = frozenset({"main", "master", "develop", "trunk"})

# --- Ranking ---
RANKER_DEFAULT_MAX_COUNT: int = int(os.getenv("JOURNALQ_RANKER_MAX_COUNT", "20"))
RANKER_RICH_BODY_CHARS: int = 50

# --- Correlation ---
CORRELATION_TEMPORAL_WINDOW_SECONDS: float = 2 * 60 * 60
CORRELATION_SIMILARITY_THRESHOLD: float = 0.3

# --- Tool fetching ---
TOOL_FETCH_TIMEOUT_SECONDS: float = float(os.getenv("JOURNALQ_TOOL_TIMEOUT", "15"))
TOOL_FETCH_MAX_WORKERS: int = int(os.getenv("JOURNALQ_TOOL_MAX_WORKERS", "6"))
TOOL_FETCH_MAX_ATTEMPTS: int = int(os.getenv("JOURNALQ_TOOL_MAX_ATTEMPTS", "3"))
TOOL_FETCH_MAX_ITEMS: int = int(os.getenv("JOURNALQ_TOOL_MAX_ITEMS", "50"))
TOOL_RATE_LIMIT_MAX_WAIT_SECONDS: float = 10.0
TOOL_RATE_LIMIT_COOLDOWN_SECONDS: float = float(os.getenv("JOURNALQ_RATE_LIMIT_COOLDOWN", "300"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: float = float(os.getenv("JOURNALQ_LLM_TIMEOUT", "60"))
LLM_MAX_ATTEMPTS: int = 2  # one call + at most one retry
LLM_RETRY_BACKOFF_SECONDS: float = 1.0
LLM_INPUT_TOKEN_BUDGET: int = int(os.getenv("JOURNALQ_LLM_INPUT_TOKEN_BUDGET", "12000"))

# --- Follow-up questions ---
FOLLOW_UP_QUESTION_COUNT: int = 3
