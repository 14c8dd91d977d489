"""
Fetch cycle coordinator.

One cycle: consent/config gate -> adapter fan-out -> normalize -> rank ->
correlate -> Format7 assembly -> session. Narrative generation runs later, on
demand, against the stored session so a failed LLM call never costs a
re-fetch. Publishing hands the entry to a sink and consumes the session.
"""

from __future__ import annotations

import concurrent.futures
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal, Protocol

from cachetools import TTLCache

from journalq.activity.correlator import correlate
from journalq.activity.normalizer import normalize_activities
from journalq.activity.ranker import rank_activities
from journalq.config import TOOL_FETCH_MAX_WORKERS, TOOL_RATE_LIMIT_COOLDOWN_SECONDS
from journalq.contracts.activity import (
    ActivityContext,
    Correlation,
    RankedActivity,
    RawActivity,
    ToolType,
)
from journalq.contracts.request import FetchRequest
from journalq.entry.format7 import Format7Entry, build_format7_entry
from journalq.entry.generator import ContentGenerator, GenerationResult
from journalq.entry.known_context import KnownContext, build_known_context
from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter, log_event, time_block
from journalq.storage.session_store import EphemeralSessionStore
from journalq.tools.base import ToolAdapter, ToolFetchResult
from journalq.tools.errors import RateLimitError, ToolFetchError
from journalq.tools.registry import build_adapter
from journalq.utils.redaction import redact

logger = get_logger(__name__)

AdapterFactory = Callable[[ToolType], ToolAdapter]


class FetchConfigurationError(ValueError):
    """The fetch request cannot run as configured (e.g. no tools selected)."""


class ConsentRequiredError(PermissionError):
    """The user has not consented to reading their tool activity."""


class SessionExpired(LookupError):
    """Session is absent, expired or owned by someone else. Re-fetch."""


@dataclass(frozen=True)
class ToolFailure:
    tool: str
    reason: str
    needs_reconnect: bool = False


@dataclass(frozen=True)
class CyclePayload:
    """Everything a session keeps for one cycle. Replaced whole, never mutated."""

    request: FetchRequest
    ranked: tuple[RankedActivity, ...]
    correlations: tuple[Correlation, ...]
    raw_by_id: Mapping[str, RawActivity]
    known_context: KnownContext
    entry: Format7Entry
    succeeded_tools: tuple[str, ...] = ()
    failed_tools: tuple[ToolFailure, ...] = ()
    generation: GenerationResult | None = None


@dataclass(frozen=True)
class CycleResult:
    status: Literal["ok", "no_activities"]
    succeeded_tools: tuple[str, ...] = ()
    failed_tools: tuple[ToolFailure, ...] = ()
    session_id: str | None = None
    expires_at: float | None = None
    ranked: tuple[RankedActivity, ...] = ()
    correlations: tuple[Correlation, ...] = ()
    entry: Format7Entry | None = None

    @property
    def produced_entry(self) -> bool:
        return self.entry is not None


class EntrySink(Protocol):
    """Durable journal-entry storage, owned by the caller."""

    def save(self, user_id: str, entry: Format7Entry) -> Any: ...


@dataclass
class _FanOut:
    results: list[ToolFetchResult] = field(default_factory=list)
    failures: list[ToolFailure] = field(default_factory=list)


def _token_for(credentials: Mapping[Any, str], tool: ToolType) -> str | None:
    return credentials.get(tool) or credentials.get(tool.value)


class FetchCycle:
    """Runs fetch cycles for many users against one session store."""

    def __init__(
        self,
        session_store: EphemeralSessionStore,
        adapter_factory: AdapterFactory = build_adapter,
        generator: ContentGenerator | None = None,
        max_workers: int = TOOL_FETCH_MAX_WORKERS,
        cooldown: TTLCache | None = None,
    ):
        self.session_store = session_store
        self.adapter_factory = adapter_factory
        self.generator = generator
        self.max_workers = max_workers
        # (user_id, tool) -> time the rate limit was hit
        self.cooldown: TTLCache[tuple[str, str], float] = (
            cooldown
            if cooldown is not None
            else TTLCache(maxsize=10000, ttl=TOOL_RATE_LIMIT_COOLDOWN_SECONDS)
        )

    def __enter__(self) -> FetchCycle:
        """Start the store's background sweep for the lifetime of the block."""
        self.session_store.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.session_store.close()

    # ------------------------------------------------------------------ fetch

    def run(
        self, user_id: str, request: FetchRequest, credentials: Mapping[Any, str]
    ) -> CycleResult:
        """
        Run one fetch cycle.

        Raises:
            ConsentRequiredError: consent_given is false
            FetchConfigurationError: no tools selected

        Both are raised before any adapter is built or called. Tool failures are
        collected into the result, never raised.
        """
        if not request.consent_given:
            counter("pipeline.consent_refused")
            raise ConsentRequiredError("user consent is required before fetching activity")
        if not request.tool_types:
            counter("pipeline.no_tools")
            raise FetchConfigurationError("select at least one tool to fetch from")

        with time_block("pipeline.total"):
            fan_out = self._fan_out(user_id, request, credentials)
            succeeded = tuple(r.tool_type.value for r in fan_out.results)
            failed = tuple(sorted(fan_out.failures, key=lambda f: f.tool))

            raw_by_id: dict[str, RawActivity] = {}
            contexts: list[ActivityContext] = []
            with time_block("pipeline.normalize"):
                for result in fan_out.results:
                    for activity in result.activities:
                        raw_by_id.setdefault(activity.id, activity)
                    contexts.extend(
                        normalize_activities(
                            result.activities, request.self_identifier or result.self_identifier
                        )
                    )

            if not contexts:
                counter("pipeline.no_activities")
                log_event(
                    "pipeline.no_activities",
                    user=redact(user_id),
                    succeeded=list(succeeded),
                    failed=[f.tool for f in failed],
                )
                return CycleResult(
                    status="no_activities", succeeded_tools=succeeded, failed_tools=failed
                )

            with time_block("pipeline.rank"):
                ranked = tuple(
                    rank_activities(
                        contexts,
                        self_identifier=request.self_identifier,
                        edge_hints=request.edge_hints,
                        max_count=request.max_activities,
                    )
                )
            with time_block("pipeline.correlate"):
                correlations = tuple(correlate(ranked))

            kept = {item.activity_id for item in ranked}
            raw_kept = {aid: raw for aid, raw in raw_by_id.items() if aid in kept}
            entry = build_format7_entry(ranked, correlations, raw_kept, request)
            payload = CyclePayload(
                request=request,
                ranked=ranked,
                correlations=correlations,
                raw_by_id=raw_kept,
                known_context=build_known_context(ranked, request.date_range),
                entry=entry,
                succeeded_tools=succeeded,
                failed_tools=failed,
            )
            session_id = self.session_store.create(user_id, succeeded, payload)
            session = self.session_store.get_session(session_id, user_id)

        log_event(
            "pipeline.completed",
            user=redact(user_id),
            activities=len(ranked),
            correlations=len(correlations),
            succeeded=list(succeeded),
            failed=[f.tool for f in failed],
        )
        return CycleResult(
            status="ok",
            succeeded_tools=succeeded,
            failed_tools=failed,
            session_id=session_id,
            expires_at=session.expires_at if session else None,
            ranked=ranked,
            correlations=correlations,
            entry=entry,
        )

    def _fan_out(
        self, user_id: str, request: FetchRequest, credentials: Mapping[Any, str]
    ) -> _FanOut:
        fan_out = _FanOut()
        runnable: list[tuple[ToolType, str]] = []
        for tool in request.tool_types:
            if (user_id, tool.value) in self.cooldown:
                counter(f"pipeline.{tool.value}.cooldown_skip")
                fan_out.failures.append(ToolFailure(tool.value, "rate_limited"))
                continue
            token = _token_for(credentials, tool)
            if not token:
                fan_out.failures.append(ToolFailure(tool.value, "not_connected", True))
                continue
            runnable.append((tool, token))

        if not runnable:
            return fan_out

        with time_block("pipeline.fetch"):
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(runnable))
            ) as executor:
                future_to_tool = {
                    executor.submit(self._fetch_one, tool, token, request): tool
                    for tool, token in runnable
                }
                for future in concurrent.futures.as_completed(future_to_tool):
                    tool = future_to_tool[future]
                    try:
                        fan_out.results.append(future.result())
                    except RateLimitError as exc:
                        self.cooldown[(user_id, tool.value)] = datetime.now(UTC).timestamp()
                        fan_out.failures.append(ToolFailure(tool.value, exc.reason))
                    except ToolFetchError as exc:
                        fan_out.failures.append(
                            ToolFailure(tool.value, exc.reason, exc.needs_reconnect)
                        )
                    except Exception as exc:
                        logger.exception("adapter %s failed unexpectedly", tool.value)
                        fan_out.failures.append(ToolFailure(tool.value, type(exc).__name__))

        # as_completed order is arbitrary; keep request order for determinism
        order = {tool.value: idx for idx, tool in enumerate(request.tool_types)}
        fan_out.results.sort(key=lambda r: order.get(r.tool_type.value, len(order)))
        for failure in fan_out.failures:
            counter(f"pipeline.{failure.tool}.failed")
        return fan_out

    def _fetch_one(self, tool: ToolType, token: str, request: FetchRequest) -> ToolFetchResult:
        adapter = self.adapter_factory(tool)
        return adapter.fetch(token, request.date_range)

    # -------------------------------------------------------------- sessions

    def load(self, session_id: str, user_id: str) -> CyclePayload:
        """
        Raises:
            SessionExpired: absent, expired or not owned by user_id
        """
        payload = self.session_store.get(session_id, user_id)
        if payload is None:
            raise SessionExpired(session_id)
        return payload

    async def generate(self, session_id: str, user_id: str) -> GenerationResult:
        """
        Generate the narrative for a stored cycle and fold it into the entry.

        Raises:
            SessionExpired: session gone
            LLMGenerationError: generation failed; the session is left untouched
        """
        if self.generator is None:
            raise RuntimeError("FetchCycle has no content generator configured")
        payload = self.load(session_id, user_id)
        generation = await self.generator.generate(
            payload.ranked, payload.correlations, payload.known_context, payload.request
        )
        entry = build_format7_entry(
            payload.ranked,
            payload.correlations,
            payload.raw_by_id,
            payload.request,
            narrative=generation.narrative,
        )
        if not self.session_store.replace(
            session_id, replace(payload, entry=entry, generation=generation), user_id
        ):
            # Expired while the model was running.
            raise SessionExpired(session_id)
        return generation

    def publish(self, session_id: str, user_id: str, sink: EntrySink) -> Any:
        """Save the entry through ``sink`` then consume the session."""
        payload = self.load(session_id, user_id)
        saved = sink.save(user_id, payload.entry)
        self.session_store.delete(session_id)
        counter("pipeline.published")
        log_event("pipeline.published", user=redact(user_id))
        return saved

    def discard(self, session_id: str) -> None:
        self.session_store.delete(session_id)

