"""
FastAPI main application for HK Render Studio
"""
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from render_api import __version__
from render_api.core.config import Settings, settings as default_settings
from render_api.core.errors import CallerError
from render_api.core.logging import setup_logging
from render_api.dependencies import ServiceContainer, build_services
from render_api.middleware.logging_middleware import RequestLoggingMiddleware
from render_api.routers import design

logger = logging.getLogger(__name__)


def _key_preview(key: str) -> str:
    return f"{key[:7]}...{key[-4:]}" if len(key) > 11 else "***"


def _validation_error(exc: RequestValidationError) -> CallerError:
    """Describe the first schema violation in the same shape as every other render failure."""
    errors = exc.errors()
    if not errors:
        return CallerError("Invalid request", error_code="INVALID_REQUEST")
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid request: {location} {first.get('msg', '')}".strip() if location else "Invalid request body"
    return CallerError(message, error_code="INVALID_REQUEST")


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the application. Tests pass their own settings and service container."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info(f"Starting {settings.app_name}...")

        logger.info("=" * 60)
        logger.info("ENVIRONMENT VARIABLES CHECK")
        logger.info("=" * 60)
        if settings.stepfun_api_key:
            logger.info(f"✅ STEPFUN_API_KEY is set: {_key_preview(settings.stepfun_api_key)}")
        elif settings.stepfun_image_api_key:
            logger.warning(
                f"⚠️ Using legacy STEPFUN_IMAGE_API_KEY: {_key_preview(settings.stepfun_image_api_key)}"
            )
        else:
            logger.error("❌ STEPFUN_API_KEY is NOT set - image generation will fail with MISSING_KEY")
        logger.info(f"Store backend: {settings.store_backend}")
        logger.info("=" * 60)

        app.state.services = services or build_services(settings)
        logger.info("Application started")

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        await app.state.services.close()
        logger.info("Application stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Interior redesign render API",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.environment == "development" else None,
        redoc_url="/redoc" if settings.environment == "development" else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        error = _validation_error(exc)
        logger.warning(f"Rejected request to {request.url.path}: {error.message}")
        return JSONResponse(status_code=error.http_status, content=error.to_payload())

    @app.get("/health")
    async def health_check():
        """Health check endpoint for load balancers"""
        return {
            "status": "healthy",
            "timestamp": time.time(),
            "version": __version__,
            "store": settings.store_backend,
        }

    @app.get("/api/env-check")
    async def env_check():
        """Report which credentials are present, never their values"""
        return {
            "stepfun_api_key": bool(settings.stepfun_api_key),
            "stepfun_image_api_key_legacy": bool(settings.stepfun_image_api_key),
            "image_api_configured": bool(settings.image_api_key),
            "image_model": settings.image_model,
            "store_backend": settings.store_backend,
        }

    app.include_router(design.router, prefix="/api")

    # Durable results from the local store are served straight from disk
    if settings.store_backend.lower() == "local":
        results_dir = Path(settings.local_store_dir) / "results"
        results_dir.mkdir(parents=True, exist_ok=True)
        mount = "/" + settings.static_mount_path.strip("/")
        app.mount(f"{mount}/results", StaticFiles(directory=str(results_dir)), name="results")

    return app


def main():
    import uvicorn

    uvicorn.run(
        "render_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=default_settings.environment == "development",
        log_config=None,  # Use our custom logging
        access_log=False,  # We handle this in middleware
    )


setup_logging()
app = create_app()

if __name__ == "__main__":
    main()
