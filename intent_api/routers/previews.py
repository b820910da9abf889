"""
Preview API routes — CI-facing endpoints for PreviewEnvironment records.

Features:
  - Idempotent upsert per (repo, PR) for CI pipelines
  - Rate limiting per-IP via slowapi
  - Prometheus counters for accepted intents
  - Redis Stream read-back of the operator's per-record event log
"""

import logging
from typing import Optional

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from prometheus_client import Counter, Gauge
from slowapi import Limiter
from slowapi.util import get_remote_address

from preview_operator.events import stream_key
from preview_operator.store import ConflictError, ObjectStore, StoreError

from ..config import settings
from ..models import (
    ErrorResponse, PreviewEvent, PreviewListResponse, PreviewResponse, PreviewUpsertRequest,
)
from ..services.previews import (
    count_previews_by_phase, delete_preview, get_preview, get_store, list_previews, upsert_preview,
)

logger = logging.getLogger("previews")

router = APIRouter(prefix="/previews", tags=["previews"])
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

EVENTS_PAGE_SIZE = 50


# --- Prometheus metrics ---
PREVIEWS_UPSERTED = Counter(
    "preview_api_upserts_total",
    "Preview intents accepted from CI",
    ["result"],
)
PREVIEWS_DELETED = Counter(
    "preview_api_deletes_total",
    "Preview deletions requested through the API",
)
API_FAILURES = Counter(
    "preview_api_failures_total",
    "Store errors surfaced by the API",
)
PREVIEWS_TOTAL = Gauge(
    "preview_api_previews_total",
    "Current PreviewEnvironments by phase",
    ["phase"],
)


def update_gauges(store: ObjectStore):
    counts = count_previews_by_phase(store)
    for phase in ["Pending", "Creating", "Ready", "Expiring", "Failed"]:
        PREVIEWS_TOTAL.labels(phase=phase).set(counts.get(phase, 0))


# --- Redis client (optional) ---
_redis_client = None


def get_redis():
    """Lazy-init Redis. Returns None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None
    try:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _redis_client.ping()
        logger.info(f"Redis connected: {settings.REDIS_URL}")
        return _redis_client
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable (non-fatal): {e}")
        _redis_client = None
        return None


# =========================================================================
# REST Endpoints
# =========================================================================

@router.post("", response_model=PreviewResponse, status_code=201,
             responses={200: {"model": PreviewResponse}, 409: {"model": ErrorResponse},
                        429: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
def upsert_preview_endpoint(req: PreviewUpsertRequest, request: Request, response: Response,
                            store: ObjectStore = Depends(get_store)):
    """Create or roll forward the preview for a PR. 201 on create, 200 otherwise."""
    try:
        preview, created = upsert_preview(store, req)
    except ConflictError as e:
        PREVIEWS_UPSERTED.labels(result="conflict").inc()
        raise HTTPException(status_code=409, detail=str(e))
    except StoreError as e:
        API_FAILURES.inc()
        logger.error(f"Failed to upsert preview {req.record_name}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to upsert preview: {e}")

    PREVIEWS_UPSERTED.labels(result="created" if created else "updated").inc()
    if not created:
        response.status_code = 200
    return preview


@router.get("", response_model=PreviewListResponse)
@limiter.limit(settings.RATE_LIMIT)
def list_previews_endpoint(
    request: Request,
    repo: Optional[str] = Query(None, description="Filter by repository"),
    user: Optional[str] = Query(None, description="Filter by PR author"),
    store: ObjectStore = Depends(get_store),
):
    """List previews, optionally filtered by repository and/or author."""
    previews = list_previews(store, repo=repo, user=user)
    return PreviewListResponse(previews=previews, total=len(previews))


@router.get("/{name}", response_model=PreviewResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
def get_preview_endpoint(name: str, request: Request, store: ObjectStore = Depends(get_store)):
    preview = get_preview(store, name)
    if not preview:
        raise HTTPException(status_code=404, detail=f"Preview '{name}' not found")
    return preview


@router.delete("/{name}", status_code=202,
               responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
def delete_preview_endpoint(name: str, request: Request, store: ObjectStore = Depends(get_store)):
    """Request teardown. Returns 202 Accepted; the operator finishes the cleanup."""
    if not delete_preview(store, name):
        raise HTTPException(status_code=404, detail=f"Preview '{name}' not found")
    PREVIEWS_DELETED.inc()
    return {"message": f"Preview '{name}' deletion initiated", "status": "accepted"}


@router.get("/{name}/events", response_model=list[PreviewEvent],
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
def get_preview_events(name: str, request: Request, store: ObjectStore = Depends(get_store)):
    """
    Operator events for one preview, oldest first.
    Empty when Redis is not configured or unreachable.
    """
    if not get_preview(store, name):
        raise HTTPException(status_code=404, detail=f"Preview '{name}' not found")

    r = get_redis()
    if r is None:
        return []
    try:
        entries = r.xrange(stream_key(name), count=EVENTS_PAGE_SIZE)
    except redis.RedisError as e:
        logger.debug(f"Redis stream read failed: {e}")
        return []
    return [
        PreviewEvent(
            timestamp=data.get("timestamp", ""),
            type=data.get("type", ""),
            message=data.get("message", ""),
            phase=data.get("phase", ""),
        )
        for _, data in entries
    ]
