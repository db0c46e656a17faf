"""FastAPI application entrypoint.

Configures logging, Sentry, CORS and uniform JSON error bodies, and includes
the tracking routers under /api/v1.
"""

import logging
import os

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

from touchline import __version__
from touchline.deps import get_settings
from touchline.routers import conversions as conversions_router
from touchline.routers import events as events_router
from touchline.routers import identify as identify_router
from touchline.routers import probes as probes_router
from touchline.routers import sessions as sessions_router
from touchline.telemetry import capture_exception, init_sentry

# Import models so Alembic can discover metadata
from touchline import models  # noqa: F401


def _allowed_origins(raw: str):
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app() -> FastAPI:
    settings = get_settings()

    # Settings may come from .env; sentry reads the process environment
    if settings.SENTRY_DSN and not os.environ.get("SENTRY_DSN"):
        os.environ["SENTRY_DSN"] = settings.SENTRY_DSN
    init_sentry()

    app = FastAPI(
        title="touchline API",
        description="""
        Marketing event ingestion and multi-touch attribution.

        - Events, sessions, identify/alias: visitor journey tracking
        - Conversions: business outcomes, attributed asynchronously

        ## Authentication

        Every endpoint except /api/v1/health requires
        `Authorization: Bearer sk_{test|live}_{key}`.
        """,
        version=__version__,
    )

    allowed_origins = _allowed_origins(settings.BACKEND_CORS_ORIGINS)
    logger.info(f"[CORS] Allowed origins: {allowed_origins}")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Uniform error bodies: {error: "..."} / {errors: [...]}
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Malformed request body"})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("[API] Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        capture_exception(exc, extra={"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Internal server error"})

    app.include_router(probes_router.router)
    app.include_router(events_router.router)
    app.include_router(sessions_router.router)
    app.include_router(conversions_router.router)
    app.include_router(identify_router.router)

    return app


app = create_app()
