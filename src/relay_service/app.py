from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx
import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relay_service.api.middleware.request_context import RequestContextMiddleware
from relay_service.api.v1.routers import health, usage, ws
from relay_service.application.exceptions import (
    AccessError,
    AppError,
    AuthError,
    PersistError,
    QuotaExceededError,
    UpstreamError,
    ValidationError,
)
from relay_service.config import settings
from relay_service.infrastructure.auth.hs256_verifier import HS256Verifier
from relay_service.infrastructure.bus.redis_pubsub import (
    RedisRoomPublisher,
    RedisRoomSubscriber,
)
from relay_service.infrastructure.completion.openrouter import OpenRouterClient
from relay_service.infrastructure.db.session import open_uow
from relay_service.infrastructure.ws.manager import ConnectionManager
from relay_service.services.message_pipeline import MessagePipeline
from relay_service.services.relay import Relay

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    app.state.redis = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
    logger.info("Redis connection pool created")

    subscriber: RedisRoomSubscriber | None = None
    if settings.RELAY_FANOUT == "redis":
        manager = ConnectionManager(
            publisher=RedisRoomPublisher(app.state.redis, settings.REDIS_PUBSUB_CHANNEL),
            typing_timeout=settings.TYPING_TIMEOUT_SECONDS,
        )
        subscriber = RedisRoomSubscriber(
            app.state.redis, settings.REDIS_PUBSUB_CHANNEL, manager.deliver_local,
        )
        await subscriber.start()
    else:
        manager = ConnectionManager(typing_timeout=settings.TYPING_TIMEOUT_SECONDS)

    http = httpx.AsyncClient(
        base_url=settings.OPENROUTER_BASE_URL,
        timeout=httpx.Timeout(settings.COMPLETION_TIMEOUT_SECONDS, connect=10.0),
    )
    completion = OpenRouterClient(
        http,
        api_key=settings.OPENROUTER_API_KEY,
        model=settings.OPENROUTER_MODEL,
        temperature=settings.COMPLETION_TEMPERATURE,
        max_tokens=settings.COMPLETION_MAX_TOKENS,
        streaming=settings.COMPLETION_STREAMING,
        referer=settings.OPENROUTER_REFERER,
        title=settings.OPENROUTER_TITLE,
    )
    if not settings.OPENROUTER_API_KEY:
        logger.warning("OPENROUTER_API_KEY is not set; completions will fail")

    pipeline = MessagePipeline(
        manager,
        open_uow,
        completion,
        history_limit=settings.HISTORY_LIMIT,
        completion_timeout=settings.COMPLETION_TIMEOUT_SECONDS,
    )
    verifier = HS256Verifier(settings.JWT_SECRET, settings.JWT_ALGORITHM)
    app.state.uow_factory = open_uow
    app.state.relay = Relay(manager, pipeline, open_uow, verifier)
    logger.info("Relay started (fanout=%s)", settings.RELAY_FANOUT)

    yield

    await app.state.relay.close()
    if subscriber is not None:
        await subscriber.stop()
    await http.aclose()
    await app.state.redis.aclose()
    logger.info("Relay stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="SensaCall Relay",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestContextMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(usage.router)
    app.include_router(ws.router)

    return app


_STATUS_BY_ERROR: list[tuple[type[AppError], int]] = [
    (AuthError, 401),
    (AccessError, 404),
    (QuotaExceededError, 429),
    (ValidationError, 422),
    (UpstreamError, 502),
    (PersistError, 503),
]


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(_req: Request, exc: AppError) -> JSONResponse:
        status_code = next(
            (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400,
        )
        return JSONResponse(status_code=status_code, content=exc.to_payload())
