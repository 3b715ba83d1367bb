"""
hackx.api.main — FastAPI application entry point
==================================================

Run with::

    uvicorn hackx.api.main:app --reload --port 8000
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

from hackx.api.deps import get_config, get_engine  # noqa: E402
from hackx.api.routes.dao import router as dao_router  # noqa: E402
from hackx.api.routes.staking import router as staking_router  # noqa: E402
from hackx.database.engine import configure_retries  # noqa: E402
from hackx.engine.errors import GovernanceError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — apply retry tuning, warm the DB engine."""
    try:
        cfg = get_config()
    except FileNotFoundError:
        logger.warning("config.yaml not found — using default storage retry settings")
    else:
        configure_retries(attempts=cfg.db_retry_attempts, base_delay=cfg.db_retry_base_delay)

    engine = get_engine()
    logger.info("HackX API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("HackX API shutting down")


app = FastAPI(
    title="HackX Staking & Governance API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "error": exc.to_dict()},
    )


# Mount routers
app.include_router(staking_router, prefix="/api")
app.include_router(dao_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
