"""FastAPI app hosting the healthcheck endpoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from allclear import __version__
from allclear.api.health_routes import health_router
from allclear.config import settings
from allclear.health.cache import build_cache_store
from allclear.health.engine import HealthEngine
from allclear.health.loader import load_checks_file
from allclear.health.registry import CheckRegistry

logger = logging.getLogger(__name__)


def build_engine(checks_file: str | Path | None = None) -> HealthEngine:
    """Registry + cache + engine wired from settings and the checks file."""
    registry = CheckRegistry(env=settings.app_env, default_timeout=settings.check_timeout)
    try:
        load_checks_file(checks_file or settings.checks_file, registry)
    except Exception:
        logger.exception("Failed to load checks file, continuing with %d checks", len(registry))
    return HealthEngine(registry, cache=build_cache_store(settings))


def create_app(engine: HealthEngine | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the engine on startup unless one was injected."""
        if getattr(app.state, "health_engine", None) is None:
            app.state.health_engine = build_engine()
            logger.info(
                "Health engine ready: %d checks, env=%s",
                len(app.state.health_engine.registry), settings.app_env,
            )
        yield

    app = FastAPI(
        title="allclear - Health Checks",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.health_engine = engine
    app.include_router(health_router)
    return app
