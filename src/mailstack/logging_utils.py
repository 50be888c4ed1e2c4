"""Logging helpers for the mailstack CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from mailstack.config import load_settings

_logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Chatty third-party loggers that drown the CLI output at DEBUG.
_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


def configure_logging(level_override: str | None = None) -> None:
    """Configure logging for the CLI process."""
    settings = load_settings()
    level_name = level_override or settings.logging.level
    level = getattr(logging, level_name.upper(), logging.WARNING)

    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    handlers.append(stream_handler)

    if settings.logging.file:
        try:
            Path(settings.logging.file).expanduser().parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(Path(settings.logging.file).expanduser())
            file_handler.setFormatter(
                logging.Formatter(_LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
            )
            handlers.append(file_handler)
        except OSError as exc:
            _logger.warning("Failed to open log file %s: %s", settings.logging.file, exc)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
