"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance bound to one Gateway. Lifespan starts the gateway's housekeeping
(session restore, cleanup and snapshot loops) and runs its full graceful
shutdown when the server stops.

The WebSocket endpoint and the HTTP side channel share that gateway through
`app.state.gateway`, so both surfaces see the same sessions and specialists.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from paired_bridge import __version__
from paired_bridge.api import api_router
from paired_bridge.config import settings
from paired_bridge.gateway import Gateway
from paired_bridge.realtime.websocket import router as ws_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Gateway.stop() is idempotent, so a fatal-error shutdown that
    already ran it is harmless here.
    """
    gateway: Gateway = app.state.gateway
    logger.info(
        "bridge.starting",
        version=__version__,
        environment=gateway.settings.environment,
        default_agent=gateway.specialists.default_agent,
    )

    await gateway.start()

    yield

    logger.info("bridge.shutdown")
    await gateway.stop()


def create_app(gateway: Optional[Gateway] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="PAIRED Bridge",
        description="WebSocket gateway routing editor requests to specialist agents",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.gateway = gateway if gateway is not None else Gateway(settings)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket routes
    app.include_router(ws_router)

    return app
