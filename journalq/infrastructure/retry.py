"""
Retry helper with exponential backoff and jitter for tool adapter calls.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from journalq.observability.telemetry import counter, log_event
from journalq.tools.errors import AuthExpiredError, RateLimitError, ToolFetchError

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retries transport failures only; never retries expired auth.

    A rate limit gets exactly one wait, and only when the server's
    ``Retry-After`` fits under ``max_rate_limit_wait``.
    """

    stage: str
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: float = 0.1
    max_rate_limit_wait: float = 10.0
    sleep_fn: Callable[[float], None] = time.sleep
    retryable_reasons: tuple[str, ...] = ("transport",)

    def execute(self, func: Callable[..., T], *args, **kwargs) -> T:
        attempt = 0
        rate_limited_once = False
        last_error: Exception | None = None

        while attempt < self.max_attempts:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except AuthExpiredError as exc:
                log_event("stage_error", stage=self.stage, reason=exc.reason, attempt=attempt)
                raise
            except RateLimitError as exc:
                if rate_limited_once or not self._rate_limit_wait_ok(exc):
                    log_event("stage_error", stage=self.stage, reason=exc.reason, attempt=attempt)
                    raise
                rate_limited_once = True
                last_error = exc
                if attempt >= self.max_attempts:
                    break
                self._wait(exc.retry_after or self.base_delay, attempt)
                continue
            except ToolFetchError as exc:
                log_event("stage_error", stage=self.stage, reason=exc.reason, attempt=attempt)
                if exc.reason not in self.retryable_reasons:
                    raise
                last_error = exc

            if attempt >= self.max_attempts:
                break

            self._backoff(attempt)

        assert last_error is not None
        raise last_error

    def _rate_limit_wait_ok(self, exc: RateLimitError) -> bool:
        return exc.retry_after is None or exc.retry_after <= self.max_rate_limit_wait

    def _backoff(self, attempt: int) -> None:
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        delay += random.uniform(0, self.jitter)
        self._wait(delay, attempt)

    def _wait(self, delay: float, attempt: int) -> None:
        counter("retry_count")
        log_event("retry_scheduled", stage=self.stage, attempt=attempt, delay=round(delay, 3))
        if self.sleep_fn is not None:
            self.sleep_fn(delay)
