"""
Sync log service - one SyncLog row per reconciliation run per (platform, type).
A run is created as running and closed exactly once as completed or failed.
"""
import logging
import traceback
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.sync_log import SyncLog
from src.utils.timezone import ensure_utc, utc_now

logger = logging.getLogger(__name__)

SYNC_TYPES = ("subscriptions", "transactions", "customers")


async def create_sync_log(db: AsyncSession, platform_id: uuid.UUID, sync_type: str) -> SyncLog:
    sync_log = SyncLog(
        platform_id=platform_id,
        sync_type=sync_type,
        status="running",
        started_at=utc_now(),
        records_synced=0,
        records_failed=0,
        missing_records_found=0,
    )
    db.add(sync_log)
    await db.flush()
    logger.info("Sync log created: platform=%s type=%s id=%s", str(platform_id)[:8], sync_type, str(sync_log.id)[:8])
    return sync_log


async def complete_sync_log(
    db: AsyncSession,
    sync_log: SyncLog,
    records_synced: int = 0,
    records_failed: int = 0,
    missing_records_found: int = 0,
) -> SyncLog:
    sync_log.status = "completed"
    sync_log.completed_at = utc_now()
    sync_log.records_synced = records_synced
    sync_log.records_failed = records_failed
    sync_log.missing_records_found = missing_records_found
    await db.flush()
    return sync_log


async def fail_sync_log(db: AsyncSession, sync_log: SyncLog, error: BaseException) -> SyncLog:
    now = utc_now()
    sync_log.status = "failed"
    sync_log.completed_at = now
    sync_log.error_details = {
        "message": str(error),
        "type": error.__class__.__name__,
        "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        "timestamp": now.isoformat(),
    }
    await db.flush()
    return sync_log


async def find_recent(
    db: AsyncSession, platform_id: uuid.UUID, sync_type: str, hours: int = 24
) -> list[SyncLog]:
    since = utc_now() - timedelta(hours=hours)
    result = await db.execute(
        select(SyncLog)
        .where(
            and_(
                SyncLog.platform_id == platform_id,
                SyncLog.sync_type == sync_type,
                SyncLog.started_at >= since,
            )
        )
        .order_by(SyncLog.started_at.desc())
    )
    return list(result.scalars().all())


async def list_sync_logs(
    db: AsyncSession,
    platform_id: Optional[uuid.UUID] = None,
    sync_type: Optional[str] = None,
    limit: int = 50,
) -> list[SyncLog]:
    query = select(SyncLog)
    if platform_id:
        query = query.where(SyncLog.platform_id == platform_id)
    if sync_type:
        query = query.where(SyncLog.sync_type == sync_type)
    result = await db.execute(query.order_by(SyncLog.started_at.desc()).limit(limit))
    return list(result.scalars().all())


async def get_stats(
    db: AsyncSession, platform_id: Optional[uuid.UUID] = None, days: int = 7
) -> dict:
    """Aggregate run counts, record totals and mean duration of completed runs."""
    since = utc_now() - timedelta(days=days)
    conditions = [SyncLog.started_at >= since]
    if platform_id:
        conditions.append(SyncLog.platform_id == platform_id)

    totals = await db.execute(
        select(
            func.count(SyncLog.id),
            func.coalesce(func.sum(SyncLog.records_synced), 0),
            func.coalesce(func.sum(SyncLog.missing_records_found), 0),
        ).where(and_(*conditions))
    )
    total_syncs, total_synced, total_missing = totals.one()

    by_status = await db.execute(
        select(SyncLog.status, func.count(SyncLog.id))
        .where(and_(*conditions))
        .group_by(SyncLog.status)
    )
    status_counts = {status: count for status, count in by_status.all()}

    completed = await db.execute(
        select(SyncLog.started_at, SyncLog.completed_at).where(
            and_(*conditions, SyncLog.status == "completed", SyncLog.completed_at.isnot(None))
        )
    )
    durations = [
        (ensure_utc(done) - ensure_utc(started)).total_seconds()
        for started, done in completed.all()
    ]
    avg_duration = sum(durations) / len(durations) if durations else 0.0

    return {
        "total_syncs": total_syncs,
        "successful_syncs": status_counts.get("completed", 0),
        "failed_syncs": status_counts.get("failed", 0),
        "total_records_synced": int(total_synced),
        "total_missing_found": int(total_missing),
        "avg_sync_duration_seconds": round(avg_duration, 2),
    }
