from __future__ import annotations

import enum
import json
import logging
from contextvars import ContextVar, Token
from datetime import date, datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}

# Request-scoped fields (request id, acting branch) stamped on every line logged
# while the request is served, including from worker threads started with
# ``asyncio.to_thread``, which copies the context.
_request_context: ContextVar[dict[str, Any]] = ContextVar("absensi_request_context", default={})


def bind_request_context(**fields: Any) -> Token[dict[str, Any]]:
    merged = {**_request_context.get(), **{key: value for key, value in fields.items() if value is not None}}
    return _request_context.set(merged)


def reset_request_context(token: Token[dict[str, Any]]) -> None:
    _request_context.reset(token)


def _json_default(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    Field precedence, lowest first: the fixed header, the bound request
    context, then the record's own ``extra=`` fields.
    """

    def __init__(self, service: str | None = None):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_request_context.get(),
        }
        payload.update(
            (key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, ensure_ascii=True)


def setup_json_logging(level: int | str = logging.INFO, *, service: str | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(service))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level.upper() if isinstance(level, str) else level)

    # Request lines already come from the request middleware.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
