"""
runewatch.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn runewatch.api.main:app --reload --port 8000

or ``python -m runewatch``.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from runewatch import __version__  # noqa: E402
from runewatch.api.deps import close_runtime, get_config, get_engine, get_runtime  # noqa: E402
from runewatch.api.routes.bingo import router as bingo_router  # noqa: E402
from runewatch.api.routes.leaderboard import router as leaderboard_router  # noqa: E402
from runewatch.api.routes.sync import router as sync_router  # noqa: E402
from runewatch.errors import (  # noqa: E402
    Conflict,
    NotFound,
    ParseError,
    RateLimited,
    RuneWatchError,
    StoreUnavailable,
    UpstreamUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[RuneWatchError], int] = {
    NotFound: 404,
    Conflict: 409,
    ValidationError: 422,
    RateLimited: 429,
    UpstreamUnavailable: 502,
    ParseError: 502,
    StoreUnavailable: 503,
}


def status_for(exc: RuneWatchError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return _ERROR_STATUS[cls]
    return 500


def _cors_origins() -> list[str]:
    """Comma-separated ``CORS_ALLOW_ORIGINS``, else ``FRONTEND_URL``."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — start the scheduler if enabled."""
    if os.getenv("DATABASE_URL"):
        try:
            config = get_config()
        except FileNotFoundError as exc:
            logger.warning("No config file; scheduler disabled (%s)", exc)
        else:
            if config.enable_scheduler:
                get_runtime(get_engine(), config).scheduler.start()
    logger.info("RuneWatch API %s started", __version__)
    yield
    await close_runtime()
    logger.info("RuneWatch API shutting down")


app = FastAPI(
    title="RuneWatch API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RuneWatchError)
async def runewatch_error_handler(request: Request, exc: RuneWatchError) -> JSONResponse:
    status_code = status_for(exc)
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(int(exc.retry_after))}
    if status_code >= 500:
        logger.warning("%s %s → %d %s", request.method, request.url.path, status_code, exc.kind)
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


app.include_router(sync_router, prefix="/api")
app.include_router(leaderboard_router, prefix="/api")
app.include_router(bingo_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok", "version": __version__}
