# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Ourochronos Contributors

"""Structured logging for agentoverflow.

Every public service operation runs under a correlation id, so the gate
decision and the storage writes of one request can be joined in the logs.
Gate decisions carry their deny reason and retry hint as a ``decision``
attribute on the record, which both formatters render.
"""

from __future__ import annotations

import functools
import json
import logging
import sys
import uuid
from collections.abc import Callable, Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from .exceptions import ConfigException

if TYPE_CHECKING:
    from .guards import GateResult

F = TypeVar("F", bound=Callable[..., Any])

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def new_correlation_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def correlation_context(correlation_id: str | None = None) -> Generator[str, None, None]:
    """Scope a correlation id.

    Without an explicit id the enclosing one is kept, so an operation that
    calls another operation logs under a single id. A fresh id is generated
    only at the outermost call.
    """
    cid = correlation_id or get_correlation_id() or new_correlation_id()
    token = _correlation_id.set(cid)
    try:
        yield cid
    finally:
        _correlation_id.reset(token)


def traced(func: F) -> F:
    """Run ``func`` inside a correlation context."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        with correlation_context():
            return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        cid = get_correlation_id()
        if cid:
            entry["correlation_id"] = cid
        decision = getattr(record, "decision", None)
        if decision is not None:
            entry["decision"] = decision
        if record.levelno >= logging.ERROR:
            entry["source"] = f"{record.pathname}:{record.lineno}"
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class StandardFormatter(logging.Formatter):
    """Single-line text for terminals.

    Denials are suffixed with their reason and retry hint.
    """

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)-7s %(name)s %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        cid = get_correlation_id()
        if cid:
            line = f"{line} [{cid[:8]}]"
        decision = getattr(record, "decision", None)
        if decision and not decision.get("allowed", True):
            line += f" reason={decision.get('reason')}"
            if decision.get("retry_after") is not None:
                line += f" retry_after={decision['retry_after']}s"
        return line


def configure_logging(
    level: str | int | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> None:
    """Install the agentoverflow handlers on the root logger.

    Arguments left as None come from ``AGENTOVERFLOW_LOG_LEVEL``,
    ``AGENTOVERFLOW_LOG_FORMAT`` ("json", "text", or empty to pick JSON when
    stderr is not a terminal) and ``AGENTOVERFLOW_LOG_FILE``. The log file
    always gets JSON.

    Raises:
        ConfigException: If the level name is unknown
    """
    from .config import get_config

    config = get_config()
    level = level if level is not None else config.log_level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ConfigException(f"Unknown log level: {level}", ["AGENTOVERFLOW_LOG_LEVEL"])
        level = resolved

    if json_format is None:
        fmt = config.log_format.lower()
        json_format = fmt == "json" or (fmt != "text" and not sys.stderr.isatty())
    log_file = log_file if log_file is not None else config.log_file

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(JSONFormatter() if json_format else StandardFormatter())
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    logging.getLogger("psycopg2").setLevel(logging.WARNING)


class DecisionLogger:
    """Logs abuse-prevention outcomes.

    Allowed actions log at DEBUG and denials at INFO. Subject fields longer
    than ``MAX_FIELD_LENGTH`` are cut so error messages pasted by clients
    cannot flood the log.
    """

    MAX_FIELD_LENGTH = 200

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("agentoverflow.decisions")

    def log_decision(
        self,
        action: str,
        result: GateResult,
        subject: dict[str, Any] | None = None,
    ) -> None:
        decision = {"action": str(action), **result.to_dict(), "subject": self._truncate(subject or {})}
        if result.allowed:
            self.logger.debug(f"Allowed {action}", extra={"decision": decision})
        else:
            self.logger.info(f"Denied {action}: {result.reason}", extra={"decision": decision})

    def _truncate(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: self._truncate(value) for key, value in data.items()}
        if isinstance(data, str) and len(data) > self.MAX_FIELD_LENGTH:
            return data[: self.MAX_FIELD_LENGTH] + "..."
        return data


decision_logger = DecisionLogger()
