"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (Redis pool, database engine).
Middleware, CORS, and routers all registered here.

Redis being down at startup is not fatal. The client is kept and
reconnects on its own; until Redis is back, requests still store their
data and each broadcast fails fast with a TransportError that the
broadcaster logs (and records, for safety-critical events).
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError

from safespace import __version__
from safespace.api import api_router
from safespace.config import settings

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    logger.info(
        "safespace.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from safespace.realtime.pubsub import close_redis, init_redis
    try:
        await init_redis()
        logger.info("safespace.redis_connected", url=settings.redis_url)
    except (RedisError, OSError) as e:
        logger.warning("safespace.redis_unavailable", error=str(e))

    yield

    logger.info("safespace.shutdown")
    await close_redis()

    from safespace.db.engine import engine
    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="SafeSpace Realtime",
        description="Messaging, support groups and panic alerts with live fan-out",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → CORS → handler

    from safespace.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    from safespace.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: safespace.main:app)
app = create_app()
