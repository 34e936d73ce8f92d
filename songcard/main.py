"""
SongCard - Main Application

Single-container FastAPI application that serves:
- Track metadata lookups (NetEase) with an in-memory cache
- An image proxy so browsers can read cross-origin artwork pixels
- Share-link resolution
- Server-side card rendering to PNG
- Health check endpoint

The application is stateless: every cache lives in the
:class:`~songcard.services.context.CardServices` created at startup and is
dropped on shutdown.
"""

import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from songcard.config import APP_ENV, APP_HOST, APP_PORT, APP_VERSION, DEBUG, LOG_LEVEL
from songcard.errors import CardError
from songcard.routes.api import router as api_router
from songcard.services.context import CardServices

# ---------------------------------------------------------------------------
# Logging setup: stdout only (no file logging for stateless containers)
# ---------------------------------------------------------------------------
logger.remove()

logger.add(
    sys.stdout,
    level="DEBUG" if DEBUG else LOG_LEVEL,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    colorize=True,
)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    On startup the shared services (HTTP client and caches) are created
    unless the app was built with its own.  On shutdown services this
    handler created are closed.
    """
    logger.info("🚀 Starting SongCard v{}", APP_VERSION)
    logger.info("📋 Environment: {} | Debug: {}", APP_ENV, DEBUG)

    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = CardServices.create()
        logger.info("🧰 Services initialized")

    logger.success("✅ Application ready — listening on {}:{}", APP_HOST, APP_PORT)

    yield

    logger.info("🛑 Shutting down SongCard …")
    if owned:
        await app.state.services.aclose()
        app.state.services = None
    logger.info("👋 Shutdown complete")


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------
def create_app(services: Optional[CardServices] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing *services* (tests, embedding) skips creating and closing them
    in the lifespan.
    """

    app = FastAPI(
        title="SongCard",
        description=(
            "Renders shareable music cards from track metadata and cover art, "
            "with a metadata API and an artwork proxy."
        ),
        version=APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
    )
    app.state.services = services

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    @app.exception_handler(CardError)
    async def card_error_handler(request: Request, exc: CardError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("💥 Unexpected error on {} {}", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "details": str(exc)},
        )

    # ------------------------------------------------------------------
    # Request logging middleware
    # ------------------------------------------------------------------
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log every incoming HTTP request with timing information."""
        start = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            duration = round(time.time() - start, 3)
            logger.error(
                "❌ {method} {path} — unhandled error after {duration}s: {exc}",
                method=request.method,
                path=request.url.path,
                duration=duration,
                exc=exc,
            )
            raise

        duration = round(time.time() - start, 3)
        status = response.status_code

        if status >= 500:
            log = logger.error
        elif status >= 400:
            log = logger.warning
        else:
            log = logger.info
        log(
            "📤 {method} {path} — {status} [{duration}s]",
            method=request.method,
            path=request.url.path,
            status=status,
            duration=duration,
        )
        return response

    # ------------------------------------------------------------------
    # Register routers
    # ------------------------------------------------------------------
    app.include_router(api_router)

    return app


# ---------------------------------------------------------------------------
# Create the app instance (used by Uvicorn)
# ---------------------------------------------------------------------------
app = create_app()


# ---------------------------------------------------------------------------
# Direct execution (development)
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "songcard.main:app",
        host=APP_HOST,
        port=APP_PORT,
        reload=DEBUG,
        log_level="debug" if DEBUG else "info",
    )
