"""
Prompt assembly with template-injection guarding.

Two independent protections:

1. Templates render in a Jinja2 ``SandboxedEnvironment``, so nothing reachable
   from the render context can touch private or dunder attributes of the
   engine.
2. Every string in the render context goes through ``guard_field`` first.
   Directive-like fragments that reach for engine internals are dropped from
   that field; any remaining directive syntax is backslash-escaped so it
   renders as literal text; known prompt-injection phrases become
   ``[REDACTED]``.

This is the only place presentation escaping happens. Secret stripping is done
earlier, by the normalizer.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jinja2 import FileSystemLoader, StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter

logger = get_logger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "prompts" / "templates"

# Prompt-injection phrases that should never reach the model verbatim
INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"forget\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"system\s*:",
    r"assistant\s*:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE)

DIRECTIVE_FRAGMENT = re.compile(r"\{\{.*?\}\}|\{%.*?%\}|\{#.*?#\}", re.DOTALL)
DIRECTIVE_MARKER = re.compile(r"\{\{|\}\}|\{%|%\}|\{#|#\}")
# Every brace, plus a % or # glued to a brace, gets a backslash.
ESCAPABLE = re.compile(r"[{}]|(?<=\{)[%#]|[%#](?=\})")
PRIVILEGED_ACCESS = re.compile(
    r"__\w*__|\b(?:globals|builtins|import|mro|subclasses|constructor|prototype|"
    r"func_globals|f_globals|gi_frame|cycler|joiner|namespace|lipsum|config|request)\b",
    re.IGNORECASE,
)


class TemplateInjectionRejected(ValueError):
    """A field fragment tried to reach template-engine internals."""


def _check_fragment(fragment: str) -> str:
    if PRIVILEGED_ACCESS.search(fragment):
        raise TemplateInjectionRejected(fragment[:40])
    return fragment


def _strip_unsafe_fragments(value: str) -> str:
    def _replace(match: re.Match[str]) -> str:
        try:
            return _check_fragment(match.group(0))
        except TemplateInjectionRejected:
            counter("prompt_guard.rejected")
            logger.warning("prompt guard dropped a directive fragment")
            return ""

    return DIRECTIVE_FRAGMENT.sub(_replace, value)


def escape_directives(value: str) -> str:
    """Backslash-escape directive syntax so it renders as literal text."""
    if not DIRECTIVE_MARKER.search(value):
        return value
    counter("prompt_guard.escaped")
    return ESCAPABLE.sub(lambda m: "\\" + m.group(0), value)


def guard_field(value: str) -> str:
    """Make one free-text value safe to place in a prompt. Never raises."""
    if not value:
        return value
    guarded = _strip_unsafe_fragments(value)
    guarded = escape_directives(guarded)
    guarded, hits = INJECTION_REGEX.subn("[REDACTED]", guarded)
    if hits:
        counter("prompt_guard.injection_phrase", hits)
    return guarded


def guard_context(value: Any) -> Any:
    """Recursively guard every string in a render context."""
    if isinstance(value, str):
        return guard_field(value)
    if isinstance(value, Mapping):
        return {str(k): guard_context(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [guard_context(v) for v in value]
    return value


def create_environment(templates_dir: Path | None = None) -> SandboxedEnvironment:
    return SandboxedEnvironment(
        loader=FileSystemLoader(str(templates_dir or TEMPLATES_DIR)),
        undefined=StrictUndefined,
        autoescape=False,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


class PromptRenderer:
    """Renders named prompt templates from guarded context data."""

    def __init__(self, templates_dir: Path | None = None):
        self._env = create_environment(templates_dir)

    def render(self, template_name: str, context: Mapping[str, Any]) -> str:
        template = self._env.get_template(template_name)
        return template.render(**guard_context(dict(context)))

    def render_string(self, source: str, context: Mapping[str, Any]) -> str:
        """Render an inline template (trusted source, untrusted context)."""
        return self._env.from_string(source).render(**guard_context(dict(context)))
