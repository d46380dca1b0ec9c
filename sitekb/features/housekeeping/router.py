"""Admin maintenance endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from sitekb.core.errors import MaintenanceBusy
from sitekb.features.auth import verify_admin_token

from .service import (
    HousekeepingService,
    PurgeResult,
    ReprocessResult,
    SweepResult,
    get_housekeeping_service,
)

router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_token)],
)


@router.post("/housekeeping/sweep", response_model=SweepResult)
async def sweep_stale(service: HousekeepingService = Depends(get_housekeeping_service)):
    """Fail resources stuck in queued, processing or crawling."""
    return await service.sweep_stale()


@router.post("/housekeeping/purge-cache", response_model=PurgeResult)
async def purge_cache(service: HousekeepingService = Depends(get_housekeeping_service)):
    """Delete expired page cache entries."""
    return await service.purge_cache()


@router.post("/process-websites", response_model=ReprocessResult)
async def process_websites(service: HousekeepingService = Depends(get_housekeeping_service)):
    """Re-crawl every website resource that is not already in flight."""
    try:
        return await service.process_websites()
    except MaintenanceBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
