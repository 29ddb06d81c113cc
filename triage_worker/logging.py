from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"

# Set per request by RequestContextMiddleware; copied into threadpool handlers.
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes promoted to top-level JSON fields when passed via ``extra=``.
STRUCTURED_FIELDS = ("request_id", "session", "phase", "method", "path", "status", "duration_ms")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        data: Dict[str, Any] = {
            "level": record.levelname,
            "ts": int(record.created * 1000),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                data[key] = value
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def resolve_level(value: Union[str, int, None], default: int = logging.INFO) -> int:
    """Turn ``"debug"``, ``"10"`` or ``10`` into a logging level; junk gives ``default``."""
    if value is None:
        return default
    if isinstance(value, int):
        return value
    value = value.strip()
    if not value:
        return default
    if value.isdigit():
        return int(value)
    lvl = logging.getLevelName(value.upper())
    if isinstance(lvl, str):
        return default
    return int(lvl)


def setup_logging(level: Union[str, int, None] = None) -> int:
    """Install the JSON handler on the root logger. Returns the level in effect.

    ``level`` normally comes from ``Settings.log_level``; without it
    ``WORKER_LOG_LEVEL`` is read from the environment.
    """
    resolved_level = resolve_level(level if level is not None else os.getenv("WORKER_LOG_LEVEL"))
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(resolved_level)
    for name in ("app", "app.access", "app.transcribe", "app.categorize", "app.session"):
        logging.getLogger(name).setLevel(resolved_level)
    return resolved_level


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = rid
        reset = request_id_var.set(rid)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(reset)
        dur_ms = int((time.perf_counter() - start) * 1000)
        response.headers[REQUEST_ID_HEADER] = rid
        logging.getLogger("app.access").info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "duration_ms": dur_ms,
            },
        )
        return response


def install_app_logging(app: FastAPI) -> None:
    app.add_middleware(RequestContextMiddleware)
