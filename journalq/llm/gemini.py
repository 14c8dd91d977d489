"""
Gemini provider.

Supports two backends:
  1. Vertex AI SDK (production) - uses GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) - uses GOOGLE_API_KEY
"""

from __future__ import annotations

import os
from functools import lru_cache

from journalq.infrastructure.settings import (
    GEMINI_LOCATION,
    GEMINI_MAX_TOKENS,
    GEMINI_MODEL,
    GEMINI_TEMPERATURE,
    GOOGLE_CLOUD_PROJECT,
    QUALITY_MODELS,
)
from journalq.llm.client import LLMGenerationError, LLMRequest, LLMResponse, TransientLLMError
from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter

logger = get_logger(__name__)

# Which backend initialized successfully: "vertexai" or "genai"
_backend: str | None = None


class GeminiInitializationError(RuntimeError):
    """Raised when Gemini model cannot be initialized."""


@lru_cache(maxsize=1)
def _init_backend() -> str:
    """
    Initialize the Gemini SDK once.

    Tries Vertex AI SDK first (production). Falls back to google-generativeai
    with GOOGLE_API_KEY for local development.

    Raises:
        GeminiInitializationError: If no backend can be initialized
    """
    global _backend
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    location = os.getenv("GEMINI_LOCATION", "") or GEMINI_LOCATION or "us-central1"

    try:
        import vertexai

        if project:
            vertexai.init(project=project, location=location)
            _backend = "vertexai"
            logger.info("Initialized Gemini (Vertex AI): project=%s, location=%s", project, location)
            return _backend
        logger.info("GOOGLE_CLOUD_PROJECT not set, trying google-generativeai fallback")
    except ImportError:
        logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")

    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError(
            "Neither GOOGLE_CLOUD_PROJECT nor GOOGLE_API_KEY is set."
        )
    genai.configure(api_key=api_key)
    _backend = "genai"
    logger.info("Initialized Gemini (google-generativeai)")
    return _backend


@lru_cache(maxsize=8)
def get_gemini_model(model_name: str = GEMINI_MODEL, system_instruction: str | None = None):
    """Cached GenerativeModel per (model, system instruction)."""
    backend = _init_backend()
    if backend == "vertexai":
        from vertexai.generative_models import GenerativeModel

        return GenerativeModel(model_name, system_instruction=system_instruction)

    import google.generativeai as genai

    return genai.GenerativeModel(model_name, system_instruction=system_instruction)


def clear_model_cache() -> None:
    """
    Clear the cached model instances.

    Useful for testing or when reconfiguration is needed.
    """
    get_gemini_model.cache_clear()
    _init_backend.cache_clear()
    logger.info("Cleared Gemini model cache")


def model_for_quality(quality: str) -> str:
    return QUALITY_MODELS.get(quality, GEMINI_MODEL)


class GeminiProvider:
    """LLMProvider backed by Gemini's async ``generate_content_async``."""

    def __init__(self, default_model: str = GEMINI_MODEL):
        self.default_model = default_model

    async def complete(self, request: LLMRequest) -> LLMResponse:
        from google.api_core.exceptions import (
            DeadlineExceeded,
            GoogleAPICallError,
            InternalServerError,
            ResourceExhausted,
            ServiceUnavailable,
        )

        model_name = request.model or self.default_model
        try:
            model = get_gemini_model(model_name, request.system_instruction)
        except GeminiInitializationError as e:
            counter("llm.gemini.init_failed")
            raise LLMGenerationError(f"Gemini unavailable: {e}") from e
        generation_config = {
            "temperature": GEMINI_TEMPERATURE if request.temperature is None else request.temperature,
            "max_output_tokens": request.max_output_tokens or GEMINI_MAX_TOKENS,
        }
        if request.json_response:
            generation_config["response_mime_type"] = "application/json"

        try:
            response = await model.generate_content_async(
                request.prompt, generation_config=generation_config
            )
        except DeadlineExceeded as e:
            counter("llm.gemini.timeout")
            raise TransientLLMError(f"Gemini deadline exceeded: {e}") from e
        except ServiceUnavailable as e:
            counter("llm.gemini.service_unavailable")
            raise TransientLLMError(f"Gemini unavailable: {e}") from e
        except ResourceExhausted as e:
            counter("llm.gemini.rate_limited")
            raise TransientLLMError(f"Gemini rate limited: {e}") from e
        except InternalServerError as e:
            counter("llm.gemini.internal_error")
            raise TransientLLMError(f"Gemini internal error: {e}") from e
        except GoogleAPICallError as e:
            counter("llm.gemini.api_error")
            raise LLMGenerationError(f"Gemini call failed: {e}") from e

        try:
            text = response.text
        except ValueError as e:
            # Raised when the candidate was blocked or has no text part.
            counter("llm.gemini.empty_response")
            raise LLMGenerationError("Gemini returned no text") from e

        usage = getattr(response, "usage_metadata", None)
        return LLMResponse(
            text=text,
            input_tokens=getattr(usage, "prompt_token_count", None),
            output_tokens=getattr(usage, "candidates_token_count", None),
            model=model_name,
        )
