"""
main.py — Moodify analytics FastAPI application entry point.

Start with: uvicorn moodify.main:app --reload --port 8000
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from moodify.config import settings
from moodify.database import absolute_database_url

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


# ---------------------------------------------------------------------------
# Migrations
# ---------------------------------------------------------------------------
def run_migrations(database_url: str) -> str:
    """
    `alembic upgrade head` in a subprocess rooted at the package directory.

    The subprocess gets DATABASE_URL explicitly, so it migrates the database the
    app engine will open no matter where either process resolves relative paths.
    Returns Alembic's output; raises RuntimeError when the upgrade fails.
    """
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=PACKAGE_DIR,
        env={**os.environ, "DATABASE_URL": database_url},
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    return (result.stdout + result.stderr).strip()


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Migrate the schema on startup; release pooled connections on shutdown."""
    output = run_migrations(absolute_database_url(settings.database_url))
    logger.info("Alembic: %s", output or "No pending migrations")

    logger.info("Moodify analytics v%s starting up", settings.app_version)
    yield

    from moodify.database import async_engine
    await async_engine.dispose()
    logger.info("Moodify analytics shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Moodify Analytics API",
    version=settings.app_version,
    description=(
        "Listening and interaction analytics for the Moodify mood-based playlist app. "
        "Ingests client events and serves per-user and global statistics."
    ),
    lifespan=lifespan,
    docs_url=f"{settings.api_prefix}/docs",
    redoc_url=f"{settings.api_prefix}/redoc",
    openapi_url=f"{settings.api_prefix}/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error envelope: {error: {code, message, details}}
#
# Analytics routes answer their own persistence failures with
# {success: false, error}; these handlers cover everything that never reaches
# a route body (unknown paths, wrong methods, invalid JSON) and crashes.
# ---------------------------------------------------------------------------
_HTTP_ERROR_CODES = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def error_envelope(
    status_code: int,
    code: str,
    message: str,
    details: Optional[list[dict[str, Any]]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "details": details or []}},
    )


def _field_path(loc: tuple) -> Optional[str]:
    # ("body", "events", 0, "eventType") -> "events.0.eventType"
    path = ".".join(str(part) for part in loc if part != "body")
    return path or None


@app.exception_handler(RequestValidationError)
async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Every field violation of the request, e.g. an event without eventType."""
    details = [{"field": _field_path(err["loc"]), "issue": err["msg"]} for err in exc.errors()]
    logger.info(
        "Rejected %s %s: %d validation error(s)", request.method, request.url.path, len(details)
    )
    return error_envelope(422, "VALIDATION_ERROR", "Request validation failed", details)


@app.exception_handler(StarletteHTTPException)
async def on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = _HTTP_ERROR_CODES.get(exc.status_code, f"HTTP_{exc.status_code}")
    return error_envelope(exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def on_unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    """Traceback goes to the server log; the body only names the exception in debug mode."""
    logger.error("Unhandled exception on %s %s", request.method, request.url.path, exc_info=True)
    details = [{"issue": f"{type(exc).__name__}: {exc}"}] if settings.debug else []
    return error_envelope(500, "INTERNAL_ERROR", "An unexpected error occurred", details)


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------
@app.get(f"{settings.api_prefix}/health", tags=["System"])
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from moodify.analytics.routes import router as analytics_router  # noqa: E402

app.include_router(analytics_router)
