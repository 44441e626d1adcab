"""
raidkeeper.api.main — FastAPI application entry point
=====================================================

Read-mostly dashboard API over the same database the bot writes to.

Run with::

    uvicorn raidkeeper.api.main:app --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from raidkeeper.api.deps import get_engine, signing_secret  # noqa: E402
from raidkeeper.api.routes.quotas import router as quotas_router  # noqa: E402
from raidkeeper.api.routes.raids import router as raids_router  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Comma-separated ``CORS_ALLOW_ORIGINS``; empty means same-origin only."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — check the token secret, warm the DB engine."""
    signing_secret()
    engine = get_engine()
    logger.info("RaidKeeper API started — engine ready (%s)", engine.url.database)
    yield
    logger.info("RaidKeeper API shutting down")


app = FastAPI(
    title="RaidKeeper Dashboard API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(raids_router, prefix="/api")
app.include_router(quotas_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
