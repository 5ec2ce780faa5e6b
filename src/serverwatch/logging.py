"""Structured logging configuration for Serverwatch.

Every module logs through ``get_logger(__name__)``. Per-address context
(``address``, ``attempt``, ``cycle``) is attached with
``logger.with_context(...)`` or the ``extra`` dict and rendered by both
formatters.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

# Record attributes rendered as context by both formatters
_TEXT_CONTEXT_KEYS = ("address", "attempt", "cycle")
_JSON_CONTEXT_KEYS = ("address", "attempt", "cycle", "status", "gamemode", "error_type")

# Diagnostic tags used in the codebase
PROBE_TAG = "probe"
QUEUE_TAG = "queue"


class DiagnosticFilter(logging.Filter):
    """Suppresses tagged DEBUG records unless their tag is enabled.

    A cycle over twenty thousand servers produces several DEBUG lines per
    address. Those lines carry ``extra={"diagnostic_tag": "probe"}`` (failed
    optional requests, retries) or ``"queue"`` (nack and backoff
    bookkeeping), and stay hidden until ``SERVERWATCH_DIAGNOSTIC_TAGS`` names
    the tag. ``"*"`` enables every tag. Untagged records and anything above
    DEBUG always pass.
    """

    def __init__(self, enabled_tags: frozenset[str] | None = None) -> None:
        super().__init__()
        self.enabled_tags: frozenset[str] = enabled_tags or frozenset()
        self.allow_all: bool = "*" in self.enabled_tags

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno != logging.DEBUG:
            return True

        tag: str | None = getattr(record, "diagnostic_tag", None)
        if tag is None or self.allow_all:
            return True
        return tag in self.enabled_tags

    @classmethod
    def from_config_string(cls, tags_csv: str) -> DiagnosticFilter:
        """Build a filter from ``"probe,queue"``-style config text; blank enables nothing."""
        tags = frozenset(t.strip() for t in tags_csv.split(",") if t.strip())
        return cls(tags)


def _component(record: logging.LogRecord) -> str:
    # "serverwatch.worker_pool" -> "worker_pool"
    return record.name.rsplit(".", 1)[-1]


def _timestamp(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=UTC)


class StructuredFormatter(logging.Formatter):
    """One line per record: UTC time, level, module, probe context, message.

    Example::

        2026-05-01 12:00:03.120 [INFO    ] [reconciler  ] [address=203.0.113.7:27015 cycle=42] ...
    """

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            _timestamp(record).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{record.levelname:8}]",
            f"[{_component(record):12}]",
        ]

        context = [
            f"{key}={getattr(record, key)}" for key in _TEXT_CONTEXT_KEYS if hasattr(record, key)
        ]
        if context:
            parts.append(f"[{' '.join(context)}]")

        parts.append(record.getMessage())
        if record.exc_info:
            parts.append(self.formatException(record.exc_info))
        return " ".join(parts)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with status, gamemode and error type when set."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": _timestamp(record).isoformat(),
            "level": record.levelname,
            "component": _component(record),
            "message": record.getMessage(),
        }
        log_data.update(
            {key: getattr(record, key) for key in _JSON_CONTEXT_KEYS if hasattr(record, key)}
        )
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Merges bound probe context into each record's ``extra``."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.get("extra", {})
        if self.extra is not None:
            extra.update(self.extra)
        kwargs["extra"] = extra
        return msg, kwargs


class ServerwatchLogger(logging.Logger):
    """Logger class installed for every ``serverwatch.*`` module."""

    def with_context(self, **context: Any) -> ContextAdapter:
        """Bind fields such as ``address`` or ``cycle`` to every message.

        Example::

            logger.with_context(address=task.address, attempt=task.attempt).info(
                "Probe failed, retrying"
            )
        """
        return ContextAdapter(self, context)


logging.setLoggerClass(ServerwatchLogger)


def get_logger(name: str) -> ServerwatchLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    replace_handlers: bool = True,
    diagnostic_tags: str = "",
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Level name from ``SERVERWATCH_LOG_LEVEL``.
        json_format: Use ``JSONFormatter`` instead of ``StructuredFormatter``.
        replace_handlers: Drop handlers already on the root logger first.
        diagnostic_tags: Value of ``SERVERWATCH_DIAGNOSTIC_TAGS``, e.g. ``"probe"``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    if replace_handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(StructuredFormatter())

    handler.addFilter(DiagnosticFilter.from_config_string(diagnostic_tags))

    root_logger.addHandler(handler)

    logging.getLogger("serverwatch").setLevel(numeric_level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
