"""Centralized logging configuration for clawenvelope.

Sets up Python's logging system to write to stderr and, when a log
directory is configured, to a rotating log file::

    <log_dir>/
    └── clawenvelope.log       # All Python logger output (rotating)

The formatting core never configures logging itself; only entry points
(the CLI) call :func:`setup_logging`.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def setup_logging(log_dir: Optional[str] = None, log_level: str = "info") -> None:
    """Configure the logging system with a stderr handler and an optional file handler.

    This should be called once at application startup.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # ── Root logger: stderr + optional rotating file ─────────
    root = logging.getLogger()
    root.setLevel(level)

    # Clear any existing handlers (avoid duplicate output on re-init)
    root.handlers.clear()

    fmt = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(fmt)
    root.addHandler(stream_handler)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "clawenvelope.log"),
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)  # Capture everything to file
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    logging.getLogger("clawenvelope").debug(
        "Logging initialized: log_dir=%s, level=%s", log_dir or "(none)", log_level
    )
