"""
FastAPI Backend for the CRM records store.

Duplicate detection, merge preview and merge endpoints for contacts and
companies, plus the per-tenant duplicate matching settings.
"""

import logging
import os
import subprocess

from dotenv import load_dotenv

load_dotenv()

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from api.routes import duplicate_settings, duplicates
from crm import __version__
from crm.cache import get_redis_client
from crm.config import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting CRM API...")
    get_redis_client()  # Initialize Redis connection (falls back to memory)
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="CRM Records API",
    description="Duplicate detection and merge for contacts and companies",
    version=__version__,
    lifespan=lifespan,
)

# CORS (configured via API_CORS_ORIGINS env var)
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Tenant-Id", "X-User-Id"],
)

# Scan pages and comparisons can be large
app.add_middleware(GZipMiddleware, minimum_size=500)

app.include_router(duplicates.router, prefix="/api/duplicates", tags=["duplicates"])
app.include_router(duplicate_settings.router, prefix="/api/duplicate-settings", tags=["duplicate-settings"])


def _get_build_hash() -> str:
    """Get build hash from env var or git."""
    env_hash = os.environ.get("BUILD_HASH")
    if env_hash:
        return env_hash
    try:
        return subprocess.check_output(
            ["git", "rev-parse", "--short", "HEAD"],
            stderr=subprocess.DEVNULL,
        ).decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


BUILD_HASH = _get_build_hash()


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__, "commit": BUILD_HASH, "service": "CRM Records API"}
