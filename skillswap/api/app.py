"""
FastAPI application for the SkillSwap exchange engine.

Start with: uvicorn skillswap.api.app:app --reload --port 8082
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from skillswap.builder import BarterEngine, EngineBuilder
from skillswap.infra.channels import ChannelManager
from skillswap.infra.config import SkillSwapConfig
from skillswap.infra.database import SQLStore
from skillswap.infra.event_pusher import WebSocketEventPusher

from .routes import install_error_handlers, router, ws_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup unless one was injected; dispose on shutdown."""
    config = SkillSwapConfig()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    owned = getattr(app.state, "engine", None) is None
    if owned:
        app.state.engine = (
            EngineBuilder()
            .with_config(config)
            .with_event_pusher(WebSocketEventPusher(app.state.channels))
            .build()
        )

    logger.info("SkillSwap API started")
    yield

    store = app.state.engine.store
    if owned and isinstance(store, SQLStore):
        store.dispose()
    logger.info("SkillSwap API shutdown")


def create_app(engine: Optional[BarterEngine] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SkillSwap API",
        description="Skill barter exchanges, disputes and reputation",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.channels = ChannelManager()
    if engine is not None:
        app.state.engine = engine

    install_error_handlers(app)
    app.include_router(router)
    app.include_router(ws_router)

    return app


app = create_app()
