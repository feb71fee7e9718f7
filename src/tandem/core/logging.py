"""
Tandem Logging — colorized text for terminals, JSON for aggregation.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (TANDEM_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (httpx, httpcore, openai, aiosqlite)
- Configurable via TANDEM_LOG_LEVEL, TANDEM_LOG_COLOR, TANDEM_LOG_FORMAT

Structured log extra fields (pass via logger.info(..., extra={...})):
    session_id, parent_session_id, provider_id, model_id, tool_name,
    step, attempt, duration_ms, status
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone

COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
}

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "openai",
    "openai._base_client",
    "aiosqlite",
    "asyncio",
)


class ColorFormatter(logging.Formatter):
    """Colorized log formatter for terminal output."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        orig_levelname = record.levelname
        orig_name = record.name

        level_color = COLORS.get(record.levelname, "")
        record.levelname = f"{level_color}{record.levelname}{COLORS['RESET']}"
        record.name = f"{COLORS['DIM']}{record.name}{COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname
            record.name = orig_name


# Structured log fields forwarded from logger.info(..., extra={...})
_STRUCTURED_FIELDS = (
    "session_id",
    "parent_session_id",
    "provider_id",
    "model_id",
    "tool_name",
    "step",
    "attempt",
    "duration_ms",
    "status",
)


class StructuredFormatter(logging.Formatter):
    """JSON log formatter for production / log aggregation.

    Each log line is a single JSON object. Extra fields passed via
    logger.info("msg", extra={"session_id": "...", "step": 3})
    are included at the top level for easy querying.

    Enable with: TANDEM_LOG_FORMAT=json
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _should_use_color() -> bool:
    env_val = os.getenv("TANDEM_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging(level: str | None = None) -> None:
    """Configure logging for the entire application.

    Call this once at startup. An explicit level overrides TANDEM_LOG_LEVEL.

    Env vars:
        TANDEM_LOG_LEVEL  — DEBUG / INFO / WARNING / ERROR (default: INFO)
        TANDEM_LOG_COLOR  — true / false / auto (default: auto, TTY detection)
        TANDEM_LOG_FORMAT — text / json (default: text)
    """
    level_name = (level or os.getenv("TANDEM_LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("TANDEM_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(resolved)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("tandem").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
