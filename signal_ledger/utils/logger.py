"""Logging setup: stdlib handlers underneath, structlog JSON events on top.

Log output goes to stderr (and the configured file) so that CLI commands can
print machine-readable results on stdout.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any, Optional

import structlog

from signal_ledger.utils.config import get_settings

REDACTED = "***REDACTED***"
SENSITIVE_KEYS = frozenset({"backup_token", "token", "x-backup-token", "secret", "password"})


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    numeric_level = getattr(logging, level_name, logging.INFO)
    log_file = settings.log_file if log_file is None else log_file

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))

    logging.basicConfig(format="%(message)s", level=numeric_level, handlers=handlers)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_command(command: str, **context: Any) -> None:
    """Attach the running CLI command to every event logged until cleared."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command, **context)


def sanitize_log_data(data: dict[str, Any]) -> dict[str, Any]:
    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if str(key).lower() in SENSITIVE_KEYS:
            sanitized[key] = REDACTED
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        elif isinstance(value, list):
            sanitized[key] = [sanitize_log_data(v) if isinstance(v, dict) else v for v in value]
        else:
            sanitized[key] = value
    return sanitized
