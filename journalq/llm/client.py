"""
LLM call boundary: the single async suspension point of a fetch cycle.

``call_llm`` wraps a provider with an explicit timeout and at most one retry
(exponential backoff) on transient failures. Anything still failing after that
becomes ``LLMGenerationError``, which is fatal to the generation step only.
Provider exceptions of any other type are converted the same way.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from journalq.config import LLM_MAX_ATTEMPTS, LLM_RETRY_BACKOFF_SECONDS, LLM_TIMEOUT_SECONDS
from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)


class TransientLLMError(RuntimeError):
    """Timeout, unavailability or rate limiting: worth one retry."""


class LLMGenerationError(RuntimeError):
    """Generation failed for good (retries exhausted or unusable response)."""


@dataclass(frozen=True)
class LLMRequest:
    prompt: str
    system_instruction: str | None = None
    model: str | None = None
    max_output_tokens: int | None = None
    temperature: float | None = None
    json_response: bool = True


@dataclass(frozen=True)
class LLMResponse:
    text: str
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None


@runtime_checkable
class LLMProvider(Protocol):
    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Run one completion. Raise TransientLLMError for retryable failures."""
        ...


async def call_llm(
    provider: LLMProvider,
    request: LLMRequest,
    timeout: float = LLM_TIMEOUT_SECONDS,
    max_attempts: int = LLM_MAX_ATTEMPTS,
    backoff_multiplier: float = LLM_RETRY_BACKOFF_SECONDS,
    stage: str = "llm",
) -> LLMResponse:
    """Call ``provider`` with a per-attempt timeout and bounded retry.

    Raises:
        LLMGenerationError: all attempts failed
    """
    attempts = 0
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=backoff_multiplier, max=10),
            retry=retry_if_exception_type((TransientLLMError, TimeoutError)),
            reraise=True,
        ):
            with attempt:
                attempts += 1
                if attempts > 1:
                    counter(f"{stage}.retry")
                with time_block(f"{stage}.call"):
                    response = await asyncio.wait_for(provider.complete(request), timeout)
    except TimeoutError as exc:
        counter(f"{stage}.timeout")
        raise LLMGenerationError(f"{stage}: timed out after {attempts} attempt(s)") from exc
    except TransientLLMError as exc:
        counter(f"{stage}.exhausted")
        raise LLMGenerationError(f"{stage}: {exc}") from exc
    except LLMGenerationError:
        raise
    except Exception as exc:
        counter(f"{stage}.provider_error")
        logger.error("%s: provider raised %s: %s", stage, type(exc).__name__, exc)
        raise LLMGenerationError(f"{stage}: provider failed: {exc}") from exc

    counter(f"{stage}.success")
    log_event(
        "llm_call_complete",
        stage=stage,
        model=response.model,
        attempts=attempts,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )
    return response
