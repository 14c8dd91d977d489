"""
Tests for the content generator and the LLM call boundary.

Providers are plain fakes; async code is driven with asyncio.run.
"""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import pytest

from journalq.contracts.activity import Correlation, RankedActivity
from journalq.contracts.request import DateRange, FetchRequest
from journalq.entry.generator import (
    ContentGenerator,
    FollowUpQuestion,
    enforce_question_count,
    parse_json_object,
    strip_code_fences,
)
from journalq.entry.known_context import build_known_context
from journalq.infrastructure import settings
from journalq.llm.client import (
    LLMGenerationError,
    LLMProvider,
    LLMRequest,
    LLMResponse,
    TransientLLMError,
    call_llm,
)
from journalq.llm.gemini import model_for_quality
from journalq.observability.telemetry import get_counter

NARRATIVE = {
    "title": "Shipped billing retries",
    "description": "Added backoff to the billing client.",
    "full_content": "Longer story.",
    "skills": ["Python", "Reliability"],
    "entry_type": "achievement",
}


class ScriptedProvider:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, *outcomes, input_tokens=100, output_tokens=50):
        self.outcomes = list(outcomes)
        self.requests: list[LLMRequest] = []
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens

    async def complete(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return LLMResponse(
            text=outcome,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            model=request.model,
        )


class SlowProvider:
    async def complete(self, request: LLMRequest) -> LLMResponse:
        await asyncio.sleep(1)
        return LLMResponse(text="{}")


@pytest.fixture
def request_model():
    return FetchRequest(
        tool_types=["github", "jira"],
        date_range=DateRange(
            start=datetime(2025, 3, 3, tzinfo=UTC), end=datetime(2025, 3, 10, tzinfo=UTC)
        ),
        consent_given=True,
        quality="quick",
        workspace_name="Platform",
    )


@pytest.fixture
def ranked(make_context):
    contexts = [
        make_context(
            "github:pr:acme/api#1",
            title="Ship retries {{ config }}",
            body="Fixes TRACK-42 with backoff",
            scope="+40/-2, 3 files",
            people=("Ann",),
            state="merged",
        ),
        make_context("jira:TRACK-42", source_subtype="issue", title="TRACK-42: Timeouts"),
    ]
    return [RankedActivity(context=c, score=2.0 - i, rank=i + 1) for i, c in enumerate(contexts)]


@pytest.fixture
def correlations():
    return [
        Correlation(
            id="corr-1",
            type="code_to_issue",
            activity_ids=("github:pr:acme/api#1", "jira:TRACK-42"),
            description="Code change references TRACK-42",
            confidence=0.85,
        )
    ]


def test_provider_protocol_is_runtime_checkable():
    assert isinstance(ScriptedProvider(), LLMProvider)


def test_generate_happy_path(ranked, correlations, request_model):
    questions = {
        "questions": [
            {"id": "q1", "phase": "dig", "question": "What broke?", "hint": "Be specific"},
            {"id": "q2", "phase": "impact", "question": "Who noticed?"},
        ]
    }
    provider = ScriptedProvider(json.dumps(NARRATIVE), json.dumps(questions))
    generator = ContentGenerator(provider)
    known = build_known_context(ranked, request_model.date_range)

    result = asyncio.run(generator.generate(ranked, correlations, known, request_model))

    assert result.narrative.title == "Shipped billing retries"
    assert [q.id for q in result.questions] == ["q1", "q2", "fallback-growth-1"]
    assert result.input_tokens == 200
    assert result.output_tokens == 100
    assert result.warnings == ()
    assert result.model == model_for_quality("quick")

    prompt = provider.requests[0].prompt
    assert "Workspace: Platform" in prompt
    assert "Code change references TRACK-42" in prompt
    assert "config" not in prompt
    assert "Code changes: 1 (40 lines added, 2 removed, 3 files)" in prompt


def test_narrative_in_code_fences_is_parsed(ranked, correlations, request_model):
    fenced = "```json\n" + json.dumps(NARRATIVE) + "\n```"
    provider = ScriptedProvider(fenced, json.dumps({"questions": []}))
    generator = ContentGenerator(provider)
    known = build_known_context(ranked, request_model.date_range)

    result = asyncio.run(generator.generate(ranked, correlations, known, request_model))

    assert result.narrative.entry_type == "achievement"
    assert len(result.questions) == 3
    assert get_counter("generator.code_fence_fallback") == 1


def test_unparseable_narrative_raises(ranked, correlations, request_model):
    generator = ContentGenerator(ScriptedProvider("not json at all"))
    known = build_known_context(ranked, request_model.date_range)

    with pytest.raises(LLMGenerationError):
        asyncio.run(generator.generate(ranked, correlations, known, request_model))


def test_invalid_narrative_shape_raises(ranked, correlations, request_model):
    bad = dict(NARRATIVE, entry_type="poem")
    generator = ContentGenerator(ScriptedProvider(json.dumps(bad)))
    known = build_known_context(ranked, request_model.date_range)

    with pytest.raises(LLMGenerationError):
        asyncio.run(generator.generate(ranked, correlations, known, request_model))


def test_question_failure_falls_back(ranked, correlations, request_model):
    provider = ScriptedProvider(
        json.dumps(NARRATIVE), TransientLLMError("busy"), TransientLLMError("still busy")
    )
    generator = ContentGenerator(provider)
    known = build_known_context(ranked, request_model.date_range)

    result = asyncio.run(generator.generate(ranked, correlations, known, request_model))

    assert [q.id for q in result.questions] == [
        "fallback-dig-1",
        "fallback-impact-1",
        "fallback-growth-1",
    ]
    assert any("fallback" in w for w in result.warnings)


def test_token_budget_warning_is_not_fatal(ranked, correlations, request_model):
    provider = ScriptedProvider(
        json.dumps(NARRATIVE), json.dumps({"questions": []}), input_tokens=50_000
    )
    generator = ContentGenerator(provider, input_token_budget=1000)
    known = build_known_context(ranked, request_model.date_range)

    result = asyncio.run(generator.generate(ranked, correlations, known, request_model))

    assert len(result.warnings) == 2
    assert get_counter("generator.narrative.input_budget_exceeded") == 1


def test_quality_selects_model(ranked, correlations, request_model, monkeypatch):
    monkeypatch.setitem(settings.QUALITY_MODELS, "high", "gemini-pro-test")
    provider = ScriptedProvider(json.dumps(NARRATIVE), json.dumps({"questions": []}))
    generator = ContentGenerator(provider)
    known = build_known_context(ranked, request_model.date_range)

    asyncio.run(
        generator.generate(
            ranked, correlations, known, request_model.model_copy(update={"quality": "high"})
        )
    )

    assert {r.model for r in provider.requests} == {"gemini-pro-test"}


def test_enforce_question_count_truncates_and_pads():
    many = [FollowUpQuestion(id=f"q{i}", phase="dig", question="?") for i in range(5)]

    assert [q.id for q in enforce_question_count(many, 3)] == ["q0", "q1", "q2"]
    assert [q.id for q in enforce_question_count([], 2, prefix="entry")] == [
        "entry-dig-1",
        "entry-impact-1",
    ]
    padded = enforce_question_count([], 5)
    assert len(padded) == 5
    assert len({q.id for q in padded}) == 5


def test_strip_code_fences_and_parse():
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert parse_json_object('{"a": 1}', "t") == {"a": 1}
    with pytest.raises(LLMGenerationError):
        parse_json_object("[1, 2]", "t")


def test_call_llm_retries_once_then_succeeds():
    provider = ScriptedProvider(TransientLLMError("503"), "ok")

    response = asyncio.run(
        call_llm(provider, LLMRequest(prompt="p"), timeout=1, backoff_multiplier=0)
    )

    assert response.text == "ok"
    assert len(provider.requests) == 2
    assert get_counter("llm.retry") == 1


def test_call_llm_gives_up_after_two_attempts():
    provider = ScriptedProvider(TransientLLMError("a"), TransientLLMError("b"), "never")

    with pytest.raises(LLMGenerationError):
        asyncio.run(call_llm(provider, LLMRequest(prompt="p"), timeout=1, backoff_multiplier=0))

    assert len(provider.requests) == 2


def test_call_llm_times_out():
    with pytest.raises(LLMGenerationError):
        asyncio.run(
            call_llm(
                SlowProvider(),
                LLMRequest(prompt="p"),
                timeout=0.01,
                max_attempts=1,
                backoff_multiplier=0,
            )
        )
    assert get_counter("llm.timeout") == 1


def test_call_llm_does_not_retry_permanent_errors():
    provider = ScriptedProvider(LLMGenerationError("blocked"), "never")

    with pytest.raises(LLMGenerationError):
        asyncio.run(call_llm(provider, LLMRequest(prompt="p"), timeout=1))

    assert len(provider.requests) == 1


@pytest.mark.parametrize("questions", [3, "dig deeper", {"id": "q1"}])
def test_non_list_questions_fall_back(ranked, correlations, request_model, questions):
    provider = ScriptedProvider(json.dumps(NARRATIVE), json.dumps({"questions": questions}))
    generator = ContentGenerator(provider)
    known = build_known_context(ranked, request_model.date_range)

    result = asyncio.run(generator.generate(ranked, correlations, known, request_model))

    assert [q.id for q in result.questions] == [
        "fallback-dig-1",
        "fallback-impact-1",
        "fallback-growth-1",
    ]
    assert get_counter("generator.questions.invalid") == 1


def test_call_llm_wraps_unexpected_provider_errors():
    provider = ScriptedProvider(KeyError("candidates"), "never")

    with pytest.raises(LLMGenerationError):
        asyncio.run(call_llm(provider, LLMRequest(prompt="p"), timeout=1))

    assert len(provider.requests) == 1
    assert get_counter("llm.provider_error") == 1
