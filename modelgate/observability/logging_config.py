"""
Structured logging configuration for modelgate.

Uses Python's built-in logging with a JSONFormatter, so every module keeps
plain logging.getLogger(__name__) calls and still produces structured
output in production.

Environments:
- production: JSON to stdout (machine-readable)
- development/staging/test: Colored text to stderr (human-readable)

Usage:
    from modelgate.observability.logging_config import configure_logging

    configure_logging()  # auto-detects from MODELGATE_ENV

    logger = logging.getLogger(__name__)
    logger.info("adapter_call_completed", extra={
        "vendor": "anthropic",
        "model": "claude-sonnet-4-20250514",
        "latency_ms": 812.4,
    })
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Optional

# ─── Run Context ──────────────────────────────────────────────────────

# A ContextVar follows asyncio tasks, so concurrent step executions on one
# event loop each see their own run_id.
_run_id: ContextVar[Optional[str]] = ContextVar("modelgate_run_id", default=None)


def set_run_id(run_id: str) -> Token:
    """
    Set the workflow run id for the current execution context.

    Every log record emitted afterwards in this context carries run_id.
    Returns a token for reset_run_id() to restore the previous value.
    """
    return _run_id.set(run_id)


def get_run_id() -> Optional[str]:
    """Get the current run_id, or None outside a run."""
    return _run_id.get()


def clear_run_id() -> None:
    """Clear the run_id from the current context."""
    _run_id.set(None)


def reset_run_id(token: Token) -> None:
    """Restore the run_id that was current before the matching set_run_id()."""
    _run_id.reset(token)


# ─── Context Filter ───────────────────────────────────────────────────


class ContextFilter(logging.Filter):
    """Injects the current run_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        run_id = get_run_id()
        if run_id and not hasattr(record, "run_id"):
            record.run_id = run_id  # type: ignore[attr-defined]
        return True


# ─── JSON Formatter (Production) ──────────────────────────────────────


_STANDARD_FIELDS = frozenset({
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName",
})


class JSONFormatter(logging.Formatter):
    """
    Outputs log records as single-line JSON objects.

    Includes timestamp, level, logger and message plus any extra fields
    passed via `logger.info("event", extra={...})`.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _STANDARD_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                entry[key] = value
            except (TypeError, ValueError):
                entry[key] = str(value)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ─── Dev Formatter (Local Development) ────────────────────────────────


class DevFormatter(logging.Formatter):
    """
    Colorful, human-readable logs for local development.

    Format: [HH:MM:SS] LEVEL logger: message [key=value key=value]
    """

    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    _EXTRA_KEYS = (
        "run_id", "agent_name", "vendor", "model", "step_name",
        "status", "tokens", "cost_usd", "latency_ms", "error",
    )

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, self.RESET)
        timestamp = self.formatTime(record, "%H:%M:%S")

        extras = []
        for key in self._EXTRA_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                extras.append(f"{key}={value}")

        extra_str = f" [{' '.join(extras)}]" if extras else ""

        formatted = (
            f"{self.RESET}[{timestamp}] "
            f"{color}{record.levelname:<8}{self.RESET} "
            f"{record.name}: {record.getMessage()}{extra_str}"
        )

        if record.exc_info and record.exc_info[1]:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


# ─── Configuration ────────────────────────────────────────────────────


def configure_logging(
    env: Optional[str] = None,
    level: int = logging.INFO,
) -> None:
    """
    Configure the root logger based on environment.

    Args:
        env: Override environment. If None, reads MODELGATE_ENV
             (defaults to "development").
        level: Log level (default: INFO).
    """
    env = (env or os.environ.get("MODELGATE_ENV", "development")).lower().strip()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if env == "production":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(DevFormatter())

    handler.addFilter(ContextFilter())
    root_logger.addHandler(handler)

    # Vendor SDKs log every request at INFO
    for noisy in ("httpx", "httpcore", "anthropic", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
