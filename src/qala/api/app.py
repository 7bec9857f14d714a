"""Chat API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler that builds, starts and closes the chat services
- Health endpoint at GET /api/health
- Chat and stats routers
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from qala import __version__
from qala.api.deps import ChatServices, build_services
from qala.api.middleware import register_error_handlers
from qala.api.routers.chat import router as chat_router
from qala.api.routers.stats import router as stats_router
from qala.config import QalaConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background work on startup and release upstream clients on shutdown."""
    services: ChatServices | None = getattr(app.state, "services", None)
    if services is None:
        services = build_services(app.state.config)
        app.state.services = services

    await services.start()
    logger.info(
        "Chat services started: pool=%d throttling=%s api_key=%s",
        services.pool.max_connections,
        "on" if services.throttler.enabled else "off",
        "set" if services.llm.api_key_configured else "missing",
    )

    yield

    await services.aclose()


def create_app(
    config: QalaConfig | None = None,
    services: ChatServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Application configuration; defaults are used when omitted.
    services:
        Pre-built services.  When given they are attached immediately, so
        the app can serve requests even without running the lifespan.
    """
    if config is None:
        config = services.config if services is not None else QalaConfig()

    app = FastAPI(
        title="Qala Chat API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    app.state.config = config
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(chat_router)
    app.include_router(stats_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
