from __future__ import annotations

import logging
import os
from typing import Final

PACKAGE_LOGGER: Final[str] = "journalq"

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _resolve_level() -> int:
    level_name = os.getenv("JOURNALQ_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level_name, logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger under the ``journalq`` namespace.

    The single stream handler goes on the package logger, not the root, so a
    host application keeps control of its own logging setup.
    """
    global _HANDLER_ATTACHED

    level = _resolve_level()
    package = logging.getLogger(PACKAGE_LOGGER)

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        package.addHandler(handler)
        _HANDLER_ATTACHED = True
    package.setLevel(level)

    if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)
