"""
SmallStreet Bot Application

Community Discord bot with weighted monthly polls and QR membership
verification, served alongside a small FastAPI health and results API.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.v1 import router as api_v1_router
from core.config import settings
from core.events import create_start_app_handler, create_stop_app_handler
from core.exceptions import (
    PollAlreadyResolved,
    PollBusy,
    PollNotFound,
    TransientFetchError,
)
from services.provider import get_bot_status

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    # Startup
    await create_start_app_handler(app)()
    yield
    # Shutdown
    await create_stop_app_handler(app)()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title=settings.APP_NAME,
        description="SmallStreet community bot: weighted polls and membership verification",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # Include routers
    application.include_router(api_v1_router, prefix="/api/v1")

    @application.exception_handler(PollNotFound)
    async def poll_not_found_handler(request: Request, exc: PollNotFound) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @application.exception_handler(PollAlreadyResolved)
    async def poll_resolved_handler(request: Request, exc: PollAlreadyResolved) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @application.exception_handler(PollBusy)
    async def poll_busy_handler(request: Request, exc: PollBusy) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @application.exception_handler(TransientFetchError)
    async def transient_error_handler(request: Request, exc: TransientFetchError) -> JSONResponse:
        logger.warning("upstream_unavailable", error=str(exc), path=request.url.path)
        return JSONResponse(
            status_code=503,
            content={"detail": "An upstream service is temporarily unavailable. Please try again later."},
        )

    @application.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch unhandled exceptions and return a structured JSON response."""
        logger.exception(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "An internal server error occurred. Please try again later.",
                "error_type": type(exc).__name__ if settings.DEBUG else "InternalServerError",
            },
        )

    return application


app = create_application()


def _health() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "botStatus": get_bot_status(),
    }


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Health check for the hosting platform."""
    return _health()


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers and monitoring."""
    return _health()


def run() -> None:
    """Serve the API (and the bot, via the lifespan) with uvicorn."""
    uvicorn.run("main:app", host="0.0.0.0", port=settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
