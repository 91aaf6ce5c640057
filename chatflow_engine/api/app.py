"""
FastAPI application factory.

Creates and configures the chatflow engine API application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatflow_engine import __version__
from chatflow_engine.api.routes import health_router, router
from chatflow_engine.config import get_settings
from chatflow_engine.config.settings import Settings
from chatflow_engine.executors import NodeDispatcher, default_registry
from chatflow_engine.services.container import Services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Services are built by create_app; shutdown releases their connections.
    """
    settings = app.state.settings
    logger.info(
        f"Chatflow Engine started - Environment: {settings.environment.value}, "
        f"executors: {len(app.state.dispatcher.registry)}"
    )

    yield

    logger.info("Shutting down Chatflow Engine...")
    await app.state.dispatcher.services.aclose()
    logger.info("Chatflow Engine shutdown complete")


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings to use (defaults to get_settings())
        services: Prebuilt services, e.g. fakes in tests (defaults to
            Services.from_settings)
    """
    settings = settings or get_settings()

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title=settings.app_name,
        description="Stateless conversational workflow engine",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.state.settings = settings
    app.state.dispatcher = NodeDispatcher(
        registry=default_registry,
        services=services or Services.from_settings(settings),
        settings=settings,
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(router)
    app.include_router(health_router)

    # Root endpoint
    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": settings.app_name,
            "version": __version__,
            "status": "running",
        }

    return app


# Application instance for uvicorn
app = create_app()
