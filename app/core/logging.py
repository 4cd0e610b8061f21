# FILE: app/core/logging.py
from __future__ import annotations

import logging
import sys
import threading
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_handler: Optional[logging.Handler] = None
_lock = threading.Lock()


def configure_logging(
    level: str | int = logging.INFO,
    *,
    stream: Any = None,
    handler: Optional[logging.Handler] = None,
) -> None:
    """Install one stream handler on the root logger (idempotent)."""
    global _handler
    with _lock:
        if _handler is not None:
            return

        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO

        h = handler or logging.StreamHandler(stream or sys.stderr)
        h.setFormatter(logging.Formatter(LOG_FORMAT))

        root = logging.getLogger()
        root.setLevel(level)
        root.addHandler(h)
        _handler = h


def reset_logging() -> None:
    """Remove the handler installed by configure_logging. FOR TESTING ONLY."""
    global _handler
    with _lock:
        if _handler is not None:
            logging.getLogger().removeHandler(_handler)
        _handler = None
