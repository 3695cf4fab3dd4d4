"""
FastAPI application entry point.

Run with:
    uvicorn service_template.app.main:create_app --factory --port 8000

Or:
    python -m service_template.app.main

Capabilities are assembled inside ``create_app`` before the app object
exists; a bootstrap failure means no app at all.
"""

from __future__ import annotations

import asyncio
import contextlib
import sys
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from service_template.app.api.v1.features import router as feature_router
from service_template.app.api.v1.health import router as health_router
from service_template.app.api.v1.settings import router as settings_router
from service_template.app.bootstrap import ServiceContext, bootstrap
from service_template.app.core.config import Settings, get_settings
from service_template.app.core.configuration import ConfigSource
from service_template.app.core.errors import BootstrapError, register_error_handlers
from service_template.app.core.logging_config import get_logger
from service_template.app.core.middleware import RequestLoggingMiddleware
from service_template.app.providers.selector import ProviderSelector

logger = get_logger(__name__)


def _lifespan(context: ServiceContext):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = context.settings
        logger.info("Starting %s v%s [%s]", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
        watcher = asyncio.create_task(context.loader.watch(settings.CONFIG_REFRESH_SECONDS))
        yield
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
        closed = await context.registry.close()
        logger.info("Shutting down %s (closed: %s)", settings.APP_NAME, ", ".join(closed) or "none")

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    *,
    sources: Optional[Sequence[ConfigSource]] = None,
    selector: Optional[ProviderSelector] = None,
) -> FastAPI:
    settings = settings or get_settings()
    context = bootstrap(settings, sources=sources, selector=selector)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Backend service template. Logging sink, cache, data store and "
            "key management are selected from layered configuration at startup."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=_lifespan(context),
    )
    app.state.context = context
    app.state.token_validator = context.token_validator

    # ── Middleware stack (outermost first) ──
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    register_error_handlers(app, debug=settings.is_development)

    app.include_router(health_router)
    app.include_router(feature_router)
    app.include_router(settings_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "providers": {
                handle.capability.value: handle.provider for handle in context.registry
            },
            "docs": "/docs",
        }

    return app


def main() -> int:
    settings = get_settings()
    try:
        app = create_app(settings)
    except BootstrapError as exc:
        logger.critical(
            "Startup aborted [%s]: %s | details=%s", exc.error_code, exc.message, exc.details,
        )
        return 1
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
