"""
JSON-lines logging for the sync layer.

Every line carries service/env/version/sha, the bound operation id and a
stable `event_type`, so a migration run or a subscription can be followed
across threads. Use `log_event` for anything a dashboard or alert keys on.
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum
from typing import IO, TYPE_CHECKING, Any, Iterator, Optional

if TYPE_CHECKING:
    from tradelog.common.config import SyncSettings

_operation_id: ContextVar[Optional[str]] = ContextVar("tradelog_operation_id", default=None)

# Attributes every LogRecord has; anything else on a record came from `extra`.
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime", "taskName"}
_LINE_KEYS = frozenset({"timestamp", "severity", "service", "env", "version", "sha", "operation_id", "event_type"})

_SEVERITIES = {"WARN": "WARNING", "FATAL": "CRITICAL"}


def _text(value: Any, limit: int) -> str:
    s = "" if value is None else str(value)
    s = " ".join(s.splitlines()).strip()
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _first_env(*names: str, default: str) -> str:
    for name in names:
        v = (os.getenv(name) or "").strip()
        if v:
            return _text(v, 128)
    return default


def severity_name(level: str | int | None) -> str:
    if isinstance(level, int):
        level = logging.getLevelName(level)
    s = str(level or "INFO").strip().upper()
    s = _SEVERITIES.get(s, s)
    return s if s in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL") else "INFO"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    # Firestore sentinels (SERVER_TIMESTAMP) and anything else opaque.
    return _text(value, 512)


def get_operation_id() -> Optional[str]:
    return _operation_id.get()


@contextmanager
def bind_operation_id(*, operation_id: str | None = None) -> Iterator[str]:
    """
    Tag every log line inside the block with one operation id (generated if
    not given). Worker threads started through `asyncio.to_thread` inherit it.
    """
    oid = _text(operation_id, 128) or uuid.uuid4().hex
    token = _operation_id.set(oid)
    try:
        yield oid
    finally:
        _operation_id.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(
        self,
        *,
        service: str | None = None,
        env: str | None = None,
        version: str | None = None,
        sha: str | None = None,
    ) -> None:
        super().__init__()
        self._identity = {
            "service": service or _first_env("TRADELOG_SERVICE_NAME", "K_SERVICE", default="tradelog"),
            "env": env or _first_env("TRADELOG_ENV", "ENV", default="unknown"),
            "version": version or _first_env("APP_VERSION", "K_REVISION", default="unknown"),
            "sha": sha or _first_env("GIT_SHA", "COMMIT_SHA", default="unknown"),
        }

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        line: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "severity": severity_name(getattr(record, "severity", None) or record.levelno),
            **self._identity,
            "operation_id": getattr(record, "operation_id", None) or get_operation_id(),
            "event_type": getattr(record, "event_type", None) or "log",
            "message": _text(record.getMessage(), 4000),
            "logger": record.name,
        }
        if record.exc_info:
            line["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key in _LINE_KEYS or key.startswith("_"):
                continue
            line[key] = value

        return json.dumps(line, ensure_ascii=False, separators=(",", ":"), default=_jsonable)


def init_structured_logging(
    settings: "SyncSettings | None" = None,
    *,
    level: str | int | None = None,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """
    Route the root logger to one JSON-lines handler (stdout by default).

    Idempotent: a second call replaces the handler installed by the first.
    """
    lvl = severity_name(level or (settings.log_level if settings else None) or os.getenv("LOG_LEVEL"))
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        JsonLogFormatter(
            service=settings.service_name if settings else None,
            env=settings.env if settings else None,
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(lvl)
    logging.captureWarnings(True)
    return handler


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """Emit one semantic event; `fields` become top-level JSON keys."""
    extra: dict[str, Any] = {"event_type": event_type, **fields}
    # Capture the bound id now; handlers may format later or on another thread.
    if "operation_id" not in extra:
        extra["operation_id"] = get_operation_id()
    logger.log(
        getattr(logging, severity_name(severity)),
        message or event_type,
        exc_info=exc_info,
        extra=extra,
    )
