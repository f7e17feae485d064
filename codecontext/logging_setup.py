"""Logging configuration for the ``codecontext`` logger hierarchy."""

from __future__ import annotations

import logging
import os
from typing import Optional

from rich.logging import RichHandler

_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_configured = False


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Attach a rich console handler (and optionally a file handler).

    ``CODECONTEXT_LOG_LEVEL`` overrides *level*. Calling this twice is a no-op.
    """
    global _configured
    if _configured:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    env_level = os.getenv("CODECONTEXT_LOG_LEVEL")
    if env_level:
        log_level = getattr(logging, env_level.upper(), log_level)

    root = logging.getLogger("codecontext")
    root.setLevel(log_level)
    root.handlers.clear()

    console_handler = RichHandler(rich_tracebacks=True, show_path=False)
    console_handler.setLevel(log_level)
    root.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            root.addHandler(file_handler)
        except OSError:
            root.warning("Could not open log file %s, logging to console only", log_file)

    _configured = True
