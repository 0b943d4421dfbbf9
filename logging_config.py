from __future__ import annotations

import logging
from enum import Enum
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

from settings import get_settings

CONTEXT_KEYS = (
    "epoch",
    "mode",
    "date_range_mode",
    "state",
    "pending",
    "reading_id",
    "query",
    "path",
    "status_code",
    "reason",
)

_QUIET_LIBRARIES = ("httpx", "httpcore")

_configured = False


def _render_value(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    text = str(value)
    if not text or any(char.isspace() for char in text):
        return repr(text)
    return text


class ContextualFormatter(logging.Formatter):
    """Formatter appending ``key=value`` pairs for acquisition context.

    Only keys listed in ``extra_keys`` are rendered, in that order; ``None``
    values are omitted and values containing whitespace are quoted.
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or CONTEXT_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        pairs: list[str] = []
        for key in self._extra_keys:
            value = getattr(record, key, None)
            if value is not None:
                pairs.append(f"{key}={_render_value(value)}")
        if not pairs:
            return message
        return f"{message} | {' '.join(pairs)}"


def configure_logging(level: str | int | None = None, *, force: bool = False) -> None:
    """Install the contextual console handler on the root logger.

    Runs once per process; ``force`` re-applies the configuration, which the
    CLI uses to switch to DEBUG for ``--verbose``.
    """
    global _configured
    if _configured and not force:
        return

    log_level = level if level is not None else get_settings().log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S%z",
                    "extra_keys": list(CONTEXT_KEYS),
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "contextual",
                    "stream": "ext://sys.stderr",
                }
            },
            "loggers": {name: {"level": "WARNING"} for name in _QUIET_LIBRARIES},
            "root": {"handlers": ["console"], "level": log_level},
        }
    )

    _configured = True
