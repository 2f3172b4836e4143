"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from meal_vision_api.api.routes import analysis, images
from meal_vision_api.core.config import get_settings
from meal_vision_api.core.exceptions import APIError
from meal_vision_api.db.mongo import MongoDB
from meal_vision_api.services.vision_provider import clear_provider_cache, get_vision_provider

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Starting {settings.app_name} v{settings.api_version}")
    logger.info(
        f"Vision provider: {settings.vision_provider.value} "
        f"(model={settings.preferred_vision_model}, forced={settings.force_vision_model})"
    )
    if not settings.is_provider_configured:
        logger.warning(f"Vision provider {settings.vision_provider.value} is not configured")

    logger.info(f"Connecting to MongoDB at {settings.mongo_uri[:20]}...")
    MongoDB.connect(settings.mongo_uri, settings.db_name)

    yield

    # Shutdown
    logger.info("Shutting down...")
    if get_vision_provider.cache_info().currsize:
        await get_vision_provider().close()
        clear_provider_cache()
    MongoDB.close()
    logger.info("MongoDB connection closed")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI instance
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.api_version,
        description="Meal photo analysis with vision language models",
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Exception handlers
    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError):
        """Handle custom API errors."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.message,
                "details": exc.details,
            },
        )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.api_version,
            "mongodb": MongoDB.is_connected(),
            "vision": {
                "provider": settings.vision_provider.value,
                "model": settings.preferred_vision_model,
                "fallback_models": settings.fallback_vision_models,
                "force_mode": settings.force_vision_model,
                "configured": settings.is_provider_configured,
            },
        }

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with API info."""
        return {
            "name": settings.app_name,
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
            "analyze": "/analyze-image",
        }

    # Include routers
    app.include_router(analysis.router, tags=["Analysis"])
    app.include_router(images.router, tags=["Images"])

    return app


# Create app instance
app = create_app()
