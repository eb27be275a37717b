from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Iterable, Sequence

from settings import get_settings

_CONTEXT_KEYS = (
    "reading_id",
    "source_id",
    "policy",
    "outcome",
    "status",
    "status_code",
    "latency_ms",
    "row_number",
    "reason",
    "row_count",
    "error_count",
)

_configured = False


class ContextualFormatter(logging.Formatter):
    """Append ``key=value`` pairs for known ``extra`` fields to each line."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = [
            f"{key}={getattr(record, key)}"
            for key in self._extra_keys
            if getattr(record, key, None) is not None
        ]
        if not context:
            return message
        return f"{message} | {' '.join(context)}"


def configure_logging(level: str | int | None = None) -> None:
    """Configure process-wide logging once; later calls are ignored."""
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "extra_keys": list(_CONTEXT_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            # httpx logs every request at INFO.
            "loggers": {"httpx": {"level": "WARNING"}, "httpcore": {"level": "WARNING"}},
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
