"""
Preview Environments — Intent API

Main entrypoint. Sets up FastAPI with:
  - CORS for dashboard access
  - Rate limiting (slowapi)
  - Prometheus metrics (/metrics)
  - Health check (/health) with Redis status
  - Preview routes (/api/previews)
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from preview_operator import __version__
from preview_operator.store import ObjectStore

from .config import settings
from .routers.previews import get_redis, limiter, router as previews_router, update_gauges
from .services.previews import get_store

# --- Logging ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("intent-api")


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Preview Intent API starting...")
    yield
    logger.info("Preview Intent API shutting down...")


# --- FastAPI app ---
app = FastAPI(
    title="Preview Environments API",
    description="Intent API for TTL-bounded pull request preview environments",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(previews_router, prefix="/api")


# --- Health check ---
@app.get("/health")
def health():
    """Health check with Redis connectivity status."""
    redis_status = "disabled"
    r = get_redis()
    if r:
        try:
            r.ping()
            redis_status = "connected"
        except redis.RedisError:
            redis_status = "disconnected"

    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "redis": redis_status,
        "version": __version__,
    }


# --- Prometheus metrics endpoint ---
@app.get("/metrics", response_class=PlainTextResponse)
def metrics(store: ObjectStore = Depends(get_store)):
    """Expose Prometheus metrics."""
    update_gauges(store)
    return PlainTextResponse(content=generate_latest().decode("utf-8"), media_type=CONTENT_TYPE_LATEST)


# --- Global exception handler ---
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def run():
    uvicorn.run(
        "intent_api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        log_level="info",
        reload=False,
    )


# --- Entry point ---
if __name__ == "__main__":
    run()
