"""
FastAPI application entry point.

``create_app`` builds the strategy factory, the schema registry and the
request validator, keeps them on ``app.state`` and wires routers, middleware
and error handlers around them. Plugins are loaded in the lifespan handler.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Iterable, Optional, Union

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import GatewaySettings, load_settings
from ..models.factory import StrategyFactory
from ..models.loader import PluginEntry, load_plugins, register_all
from ..models.providers import SimulatedProvider
from ..models.registry import SchemaRegistry
from .controllers import ModelController
from .errors import install_error_handlers
from .routers import health, models
from .validation import RequestValidator

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)

API_NAME = "AI Gateway API"
API_DESCRIPTION = "Multimodal AI Gateway with plugin architecture"


def create_app(
    settings: Optional[GatewaySettings] = None,
    factory: Optional[StrategyFactory] = None,
    registry: Optional[SchemaRegistry] = None,
    plugins_dir: Union[Path, str, None] = None,
    load_builtin: bool = True,
    entries: Optional[Iterable[PluginEntry]] = None,
) -> FastAPI:
    """
    Factory function to create and configure the FastAPI application.

    ``entries`` is a static registration table applied at startup, before the
    plugins directory is scanned. ``load_builtin=False`` skips the directory
    scan entirely, which tests use to run against their own models only.
    """
    settings = settings or load_settings()
    factory = factory if factory is not None else StrategyFactory()
    registry = registry if registry is not None else SchemaRegistry(settings.uploads)
    validator = RequestValidator(registry)
    static_entries = list(entries or ())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(f"Starting {API_NAME} ({settings.environment})...")
        SimulatedProvider.configure(settings.provider)

        if static_entries:
            report = register_all(factory, registry, static_entries)
            logger.info(f"Static registration: {len(report.loaded)} loaded, {len(report.failed)} failed")
        if load_builtin:
            directory = plugins_dir or settings.plugins.directory
            await load_plugins(factory, registry, directory, allow=settings.plugins.allow, deny=settings.plugins.deny)

        logger.info(f"Registered models: {', '.join(factory.list_models()) or 'None'}")
        yield

        logger.info(f"Shutting down {API_NAME}...")
        factory.clear()
        registry.clear()
        validator.forget()

    app = FastAPI(
        title=API_NAME,
        description=API_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.factory = factory
    app.state.registry = registry
    app.state.validator = validator
    app.state.controller = ModelController(factory, registry, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.server.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-API-Key"],
    )

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = req_id
        method, path = request.method, request.url.path
        t0 = time.perf_counter()
        logger.info(f"[req {req_id}] -> {method} {path}")

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - t0) * 1000
        response.headers["X-Request-ID"] = req_id
        logger.info(f"[req {req_id}] <- {method} {path} | {response.status_code} | {elapsed_ms:.1f} ms")
        return response

    install_error_handlers(app)

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(models.router, prefix="/api", tags=["models"])

    @app.get("/")
    async def root():
        """Root endpoint with basic API information."""
        return {
            "name": API_NAME,
            "version": __version__,
            "status": "operational",
            "endpoints": {
                "health": "/health",
                "info": "/api/info",
                "models": "/api/models",
                "docs": "/docs",
                "redoc": "/redoc",
            },
        }

    @app.get("/api/info")
    async def api_info():
        available = factory.list_models()
        return {
            "name": API_NAME,
            "version": __version__,
            "description": API_DESCRIPTION,
            "availableModels": available,
            "totalModels": len(available),
        }

    return app


# Create the FastAPI app instance
app = create_app()
