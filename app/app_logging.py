"""Logging setup for the Pulse agents API.

Two rotating log files are written under ``LOG_DIR``: ``app.log`` for the
``app`` logger tree and ``access.log`` for one structured line per HTTP
request. Every record emitted while a request is in flight carries that
request's id, so an orchestration log line can be matched with its access
line.

Employee replies travel in the ``content`` field, which is scrubbed from
request bodies and query strings along with credentials and email
addresses.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC, LOG_SKIP_PATHS, LOG_SCRUB_FIELDS.
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextvars import ContextVar
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Iterable, cast
from uuid import uuid4

from fastapi import FastAPI, Request

_request_id: ContextVar[str] = ContextVar("request_id", default="-")

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "access_token",
        "refresh_token",
        "content",
        "email",
    }
)


def current_request_id() -> str:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    """Stamp ``record.request_id`` with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, used when LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _get_formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter(
        "[%(asctime)s] %(levelname)s in %(name)s [%(request_id)s]: %(message)s"
    )


def _sensitive_fields() -> frozenset[str]:
    extra = {f.strip().lower() for f in os.getenv("LOG_SCRUB_FIELDS", "").split(",") if f.strip()}
    return SENSITIVE_FIELDS | extra


def _scrub(data: object, fields: Iterable[str] | None = None) -> object:
    """Recursively mask sensitive keys in dictionaries and lists."""

    masked = frozenset(fields) if fields is not None else _sensitive_fields()
    if isinstance(data, dict):
        return {
            k: ("***" if str(k).lower() in masked else _scrub(v, masked)) for k, v in data.items()
        }
    if isinstance(data, list):
        return [_scrub(v, masked) for v in data]
    return data


def _install_access_logging(app: FastAPI) -> None:
    """Install the access-log middleware on ``app``.

    Requests to ``LOG_SKIP_PATHS`` (health and metrics by default) are not
    logged. The request id comes from ``X-Request-Id`` when the caller sends
    one and is echoed back on the response.
    """

    log_request_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    skip_paths = {
        p.strip()
        for p in os.getenv("LOG_SKIP_PATHS", "/api/health,/api/metrics").split(",")
        if p.strip()
    }
    fields = _sensitive_fields()
    access_logger = logging.getLogger("uvicorn.access")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in skip_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        start = time.perf_counter()

        try:
            body: object = None
            if log_request_bodies:
                raw = await request.body()

                async def receive() -> dict:  # pragma: no cover - internal
                    return {"type": "http.request", "body": raw, "more_body": False}

                request._receive = receive  # type: ignore[attr-defined]
                if raw:
                    try:
                        body = _scrub(json.loads(raw), fields)
                    except ValueError:
                        body = f"<{len(raw)} bytes>"

            response = await call_next(request)

            client_ip = request.headers.get("X-Forwarded-For")
            if not client_ip and request.client is not None:
                client_ip = request.client.host

            entry = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": _scrub(dict(request.query_params), fields),
                "status": response.status_code,
                "latency_ms": round((time.perf_counter() - start) * 1000, 2),
                "client_ip": client_ip,
                "headers": _scrub(dict(request.headers), fields),
            }
            if body is not None:
                entry["body"] = body

            response.headers["X-Request-Id"] = request_id
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            access_logger.log(level, json.dumps(entry, default=str))
            return response
        finally:
            _request_id.reset(token)


def _rotating_handler(path: str, retention_days: int, rotate_utc: bool) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(path, when="midnight", backupCount=retention_days, utc=rotate_utc)
    handler.addFilter(RequestContextFilter())
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Configure the ``app`` and access loggers, then wire ``app`` if given."""

    log_dir = os.getenv("LOG_DIR", "logs")
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    formatter = _get_formatter(os.getenv("LOG_JSON", "false").lower() == "true")
    retention_days = int(os.getenv("LOG_RETENTION_DAYS", "7"))
    rotate_utc = os.getenv("LOG_ROTATE_UTC", "false").lower() == "true"

    os.makedirs(log_dir, exist_ok=True)

    app_logger = logging.getLogger("app")
    if not app_logger.handlers:
        handler = _rotating_handler(os.path.join(log_dir, "app.log"), retention_days, rotate_utc)
        handler.setFormatter(formatter)
        app_logger.addHandler(handler)
    app_logger.setLevel(level)

    # uvicorn installs its own access handler; ours replaces it.
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.handlers.clear()
    handler = _rotating_handler(os.path.join(log_dir, "access.log"), retention_days, rotate_utc)
    handler.setFormatter(formatter)
    access_logger.addHandler(handler)
    access_logger.setLevel(level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)
