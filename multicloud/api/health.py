# multicloud/api/health.py
"""
Health endpoints for shallow and deep readiness checks.
"""
from fastapi import APIRouter, HTTPException
from starlette.status import HTTP_200_OK, HTTP_503_SERVICE_UNAVAILABLE

from multicloud import __version__
from multicloud.db.session import check_db_ready
from multicloud.providers.registry import list_providers

router = APIRouter(tags=["health"])


@router.get("/health", status_code=HTTP_200_OK)
async def health() -> dict:
    """Shallow health endpoint."""
    return {"status": "ok", "version": __version__, "providers": list_providers()}


@router.get("/ready", status_code=HTTP_200_OK)
async def ready() -> dict:
    """Deep readiness: the database must answer."""
    if not await check_db_ready():
        raise HTTPException(status_code=HTTP_503_SERVICE_UNAVAILABLE, detail="Database not ready")
    return {"status": "ready"}
