"""journalq - multi-source activity aggregation for evidence-backed journal entries"""

from __future__ import annotations

__version__ = "0.1.0"


def __getattr__(name: str):
    """
    Lazy imports to avoid loading heavy dependencies when only importing lightweight modules.
    """
    if name == "FetchCycle":
        from journalq.pipeline import FetchCycle

        return FetchCycle

    if name == "EphemeralSessionStore":
        from journalq.storage.session_store import EphemeralSessionStore

        return EphemeralSessionStore

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)


__all__ = [
    "FetchCycle",
    "EphemeralSessionStore",
]
