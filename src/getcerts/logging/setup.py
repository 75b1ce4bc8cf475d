"""Log output for getcerts runs.

Interactive runs get one text line per record; unattended runs can
switch to JSON lines.  Either way every record names the domain and
the action being processed, bound once per domain with
:func:`bind_context` instead of being repeated in each message.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from getcerts.config.settings import LoggingSettings

# Everything a bare LogRecord carries; any other attribute on a record
# came from ``extra=`` and is copied into the JSON object.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}
_CONTEXT_ATTRS = ("domain", "action")

_run_context: contextvars.ContextVar[dict[str, str]] = contextvars.ContextVar(
    "getcerts_run_context",
)


@contextlib.contextmanager
def bind_context(**values: str) -> Iterator[None]:
    """Attach *values* (``domain``, ``action``) to every record logged inside."""
    merged = {**_run_context.get({}), **values}
    token = _run_context.set(merged)
    try:
        yield
    finally:
        _run_context.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, for cron and systemd runs.

    The object carries ``timestamp``, ``level``, ``logger`` and
    ``message``; ``domain`` and ``action`` when a run context is bound;
    and every attribute handed over through ``extra=`` (order URLs,
    challenge tokens, HTTP statuses).
    """

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        data: dict = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in _CONTEXT_ATTRS:
            value = getattr(record, attr, "-")
            if value != "-":
                data[attr] = value

        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in _CONTEXT_ATTRS and key[0] != "_"
        }
        for key, value in extras.items():
            data.setdefault(key, value)

        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """``getcerts: <time> <LEVEL> [<domain>] <message>`` lines for terminals."""

    _FMT = "getcerts: %(asctime)s.%(msecs)03d %(levelname)-7s [%(domain)s] %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y/%m/%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RunContextFilter(logging.Filter):
    """Stamp records with the domain and action bound by :func:`bind_context`.

    Values given explicitly through ``extra=`` are left alone; outside
    any bound block both attributes read ``"-"``.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        bound = _run_context.get({})
        for attr in _CONTEXT_ATTRS:
            if attr not in vars(record):
                setattr(record, attr, bound.get(attr, "-"))
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings, verbosity: int = 0) -> logging.Logger:
    """Send the ``getcerts`` logger tree to stderr in the configured format.

    Parameters
    ----------
    settings:
        The ``logging`` configuration section.
    verbosity:
        Count of ``-v`` flags; any value above zero means ``DEBUG``.

    Returns
    -------
    logging.Logger
        The ``getcerts`` logger, with exactly one handler attached.

    """
    level = logging.DEBUG if verbosity > 0 else logging.getLevelName(settings.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    if settings.format == "json":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(TextFormatter())

    logger = logging.getLogger("getcerts")
    for old in list(logger.handlers):
        logger.removeHandler(old)
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
