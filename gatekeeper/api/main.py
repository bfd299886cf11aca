"""
gatekeeper.api.main — FastAPI application entry point
=======================================================

Run with::

    uvicorn gatekeeper.api.main:app --port 8000
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

from gatekeeper.api.deps import get_discovery, get_engine, get_role_platform  # noqa: E402
from gatekeeper.api.routes.verification import router as verification_router  # noqa: E402
from gatekeeper.errors import GatekeeperError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env.

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
    """Startup/shutdown lifecycle — warm the DB engine, close HTTP clients."""
    engine = get_engine()
    logger.info("Gatekeeper API started — engine ready (%s)", engine.url.database)
    yield
    await get_discovery().aclose()
    platform = get_role_platform()
    if platform is not None:
        await platform.aclose()
    logger.info("Gatekeeper API shutting down")


app = FastAPI(
    title="Gatekeeper Verification API",
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


@app.exception_handler(GatekeeperError)
async def gatekeeper_error_handler(request: Request, exc: GatekeeperError):
    if exc.status_code >= 500:
        logger.warning("%s %s → %s: %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(verification_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
