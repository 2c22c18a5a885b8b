"""Resync endpoint and cached data."""

from typing import Any

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from casesync.api.dependencies import ServicesDep
from casesync.api.schemas import CacheListResponse, ErrorResponse
from casesync.sync import SyncStatus

router = APIRouter(tags=["sync"])


@router.post(
    "/sync",
    responses={502: {"description": "Every resource failed to refresh"}},
)
async def run_sync(services: ServicesDep) -> JSONResponse:
    """Refresh the local cache from the system-of-record.

    Returns 502 when every resource failed so HTTP sync triggers see a failure.
    """
    summary = await services.refresher.refresh()
    code = status.HTTP_502_BAD_GATEWAY if summary.all_failed else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=summary.to_dict())


@router.get("/sync/status")
async def sync_status(services: ServicesDep) -> dict[str, Any]:
    """Status of the server-side background sync, if running."""
    engine = services.background
    if engine is None:
        return {"state": "idle", **SyncStatus().to_dict()}
    return {"state": engine.state.value, **engine.status.to_dict()}


@router.get(
    "/cache/{resource}",
    response_model=CacheListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_cached(resource: str, services: ServicesDep) -> CacheListResponse:
    """Records from the last successful resync."""
    if resource not in services.refresher.resources:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown resource: {resource}",
        )
    data = await services.cache.list(resource)
    return CacheListResponse(resource=resource, count=len(data), data=data)
