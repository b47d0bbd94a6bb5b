"""
Sync endpoints - operator triggers and sync log reads.

Triggers are fire-and-forget: the reconciliation runs in the background and
the response returns immediately with 202.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.schemas.api_responses import (
    SyncLogListResponse,
    SyncLogSummary,
    SyncStatsResponse,
    SyncTriggerResponse,
)
from src.services.provider_resolver import check_provider_connection, get_platform_by_slug
from src.services.reconciliation import (
    is_webhook_only,
    trigger_all_sync,
    trigger_platform_sync,
)
from src.services.sync_logs import SYNC_TYPES, get_stats, list_sync_logs
from src.utils.errors import (
    PlatformNotFoundError,
    ProviderNotConfiguredError,
    UnsupportedPlatformError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/sync", tags=["sync"])


async def _platform_id_for(db: AsyncSession, platform_slug: Optional[str]):
    if not platform_slug:
        return None
    try:
        platform = await get_platform_by_slug(db, platform_slug)
    except PlatformNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown platform: {platform_slug}")
    return platform.id


@router.post("/platforms/{platform_slug}", status_code=202, response_model=SyncTriggerResponse)
async def sync_one_platform(
    platform_slug: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        platform = await get_platform_by_slug(db, platform_slug)
    except PlatformNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown platform: {platform_slug}")

    if is_webhook_only(platform):
        return SyncTriggerResponse(
            status="skipped",
            platform=platform.slug,
            message=f"{platform.slug} is webhook-only and is not polled",
        )
    await trigger_platform_sync(db, platform.slug)
    return SyncTriggerResponse(platform=platform.slug, message=f"Sync started for {platform.slug}")


@router.get("/platforms/{platform_slug}/connection")
async def check_platform_connection(
    platform_slug: str,
    db: AsyncSession = Depends(get_db),
):
    """Resolve the platform's adapter and check that its credentials authenticate."""
    try:
        connected = await check_provider_connection(db, platform_slug)
    except PlatformNotFoundError:
        raise HTTPException(status_code=404, detail=f"Unknown platform: {platform_slug}")
    except (ProviderNotConfiguredError, UnsupportedPlatformError) as e:
        return {"platform": platform_slug, "connected": False, "error": str(e)}
    return {"platform": platform_slug, "connected": connected}


@router.post("/all", status_code=202, response_model=SyncTriggerResponse)
async def sync_every_platform():
    trigger_all_sync()
    return SyncTriggerResponse(message="Sync started for all enabled platforms")


@router.get("/logs", response_model=SyncLogListResponse)
async def get_sync_logs(
    platform: Optional[str] = Query(default=None),
    sync_type: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    if sync_type and sync_type not in SYNC_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid sync_type: {sync_type}")
    platform_id = await _platform_id_for(db, platform)
    logs = await list_sync_logs(db, platform_id=platform_id, sync_type=sync_type, limit=limit)
    return SyncLogListResponse(
        logs=[
            SyncLogSummary(
                id=str(log.id),
                platform_id=str(log.platform_id),
                sync_type=log.sync_type,
                status=log.status,
                started_at=log.started_at,
                completed_at=log.completed_at,
                records_synced=log.records_synced,
                records_failed=log.records_failed,
                missing_records_found=log.missing_records_found,
                error_details=log.error_details,
            )
            for log in logs
        ],
        total=len(logs),
    )


@router.get("/stats", response_model=SyncStatsResponse)
async def get_sync_stats(
    platform: Optional[str] = Query(default=None),
    days: int = Query(default=7, ge=1, le=90),
    db: AsyncSession = Depends(get_db),
):
    platform_id = await _platform_id_for(db, platform)
    return SyncStatsResponse(**await get_stats(db, platform_id=platform_id, days=days))
