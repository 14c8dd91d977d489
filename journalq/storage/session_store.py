"""
Ephemeral in-memory session store for fetch-cycle results.

Each session holds one cycle's materialized payload for a hard TTL (30 minutes
by default). Absent, expired and foreign-owner reads all look the same to the
caller: ``None``. Entries are replaced whole, never mutated, so a reader sees
either the full entry or nothing.

The store is an injected instance, not a module global. Tests drive expiry
with a fake clock and call ``sweep()`` directly; production calls ``start()``
to run the sweep on a daemon thread and ``close()`` on shutdown.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from journalq.config import (
    SESSION_MAX_COUNT,
    SESSION_SWEEP_INTERVAL_SECONDS,
    SESSION_TTL_SECONDS,
)
from journalq.observability.logging import get_logger
from journalq.observability.telemetry import counter, log_event
from journalq.utils.redaction import redact

logger = get_logger(__name__)


@dataclass(frozen=True)
class Session:
    session_id: str
    user_id: str
    source_types: tuple[str, ...]
    payload: Any
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class EphemeralSessionStore:
    """TTL-bound, lock-guarded session map."""

    def __init__(
        self,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        max_sessions: int = SESSION_MAX_COUNT,
        sweep_interval: float = SESSION_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._lock = threading.Lock()
        # Insertion order == creation order; replace() keeps the position.
        self._sessions: OrderedDict[str, Session] = OrderedDict()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------ lifecycle

    def start(self) -> None:
        """Start the background sweep thread (idempotent)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, name="journalq-session-sweep", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stop the sweep thread and drop every session."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        log_event("session_store.closed", dropped=count)

    def __enter__(self) -> EphemeralSessionStore:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep()

    # ------------------------------------------------------------ operations

    def create(self, user_id: str, source_types: Iterable[str], payload: Any) -> str:
        """
        Store a payload and return its opaque session id.

        Side Effects:
            - May evict the oldest sessions when the store is full
        """
        now = self._clock()
        session = Session(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            source_types=tuple(str(s) for s in source_types),
            payload=payload,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._lock:
            self._purge_expired_locked(now)
            while len(self._sessions) >= self.max_sessions:
                evicted_id, _ = self._sessions.popitem(last=False)
                counter("sessions.evicted")
                log_event("session.evicted", session=redact(evicted_id))
            self._sessions[session.session_id] = session
        counter("sessions.created")
        return session.session_id

    def get_session(self, session_id: str, user_id: str | None = None) -> Session | None:
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                counter("sessions.miss")
                return None
            if session.is_expired(now):
                del self._sessions[session_id]
                counter("sessions.expired")
                return None
        if user_id is not None and session.user_id != user_id:
            counter("sessions.foreign_read")
            logger.warning("session read by non-owner %s", redact(user_id))
            return None
        return session

    def get(self, session_id: str, user_id: str | None = None) -> Any | None:
        """Payload for ``session_id``, or None when absent, expired or not owned."""
        session = self.get_session(session_id, user_id)
        return session.payload if session is not None else None

    def replace(self, session_id: str, payload: Any, user_id: str | None = None) -> bool:
        """Swap the payload of a live session. Expiry is not extended.

        Returns False when the session is gone (absent, expired or not owned).
        """
        now = self._clock()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.is_expired(now):
                return False
            if user_id is not None and session.user_id != user_id:
                return False
            self._sessions[session_id] = replace(session, payload=payload)
        counter("sessions.replaced")
        return True

    def delete(self, session_id: str) -> None:
        """Remove a session. Deleting an unknown id is a no-op."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            counter("sessions.deleted")

    def delete_user_sessions(self, user_id: str) -> int:
        with self._lock:
            doomed = [sid for sid, s in self._sessions.items() if s.user_id == user_id]
            for sid in doomed:
                del self._sessions[sid]
        if doomed:
            counter("sessions.deleted", len(doomed))
        return len(doomed)

    def sweep(self) -> int:
        """
        Purge expired sessions. Returns the number removed.

        Side Effects:
            - Deletes entries from the in-memory map
            - Writes telemetry event when anything was purged
        """
        with self._lock:
            removed = self._purge_expired_locked(self._clock())
        if removed:
            counter("sessions.swept", removed)
            log_event("session_store.swept", removed=removed)
        return removed

    def stats(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            total = len(self._sessions)
            active = sum(1 for s in self._sessions.values() if not s.is_expired(now))
            users = len({s.user_id for s in self._sessions.values()})
        return {
            "total_sessions": total,
            "active_sessions": active,
            "expired_sessions": total - active,
            "users": users,
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge_expired_locked(self, now: float) -> int:
        expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)
