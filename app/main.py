"""FastAPI application for Pulse Agents.

Mounts the agent management, conversation and insights routers in front of
the orchestration core, with rate limiting, Prometheus metrics at
``/api/metrics`` and rotating file logs. Request validation failures are
reported as ``400`` naming the offending field, the same shape the core uses
for its own validation errors.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.config import get_settings
from .routers import agents, conversations, insights
from .routers.errors import request_validation_handler

load_dotenv()

logger = logging.getLogger("app.main")

RATE_LIMIT = os.getenv("RATE_LIMIT", "120/minute")


def get_client_ip(request: Request) -> str:
    """Rate-limit key: first ``X-Forwarded-For`` hop, else the peer address."""

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@asynccontextmanager
async def lifespan(_: FastAPI):
    settings = get_settings()
    logger.info(
        "Pulse Agents %s starting (timezone=%s, max_message_length=%d, default_max_messages=%d)",
        __version__,
        settings.default_timezone,
        settings.max_message_length,
        settings.default_max_messages,
    )
    yield


def _admin_ui_origins() -> list[str]:
    return [o.strip() for o in os.getenv("ADMIN_UI_ORIGINS", "").split(",") if o.strip()]


limiter = Limiter(key_func=get_client_ip, default_limits=[RATE_LIMIT])

app = FastAPI(title="Pulse Agents", version=__version__, lifespan=lifespan)
init_logging(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_middleware(SlowAPIMiddleware)
if _admin_ui_origins():
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_admin_ui_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
    )

for module in (agents, conversations, insights):
    app.include_router(module.router)

Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/api/metrics")


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }
