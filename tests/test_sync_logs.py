"""
Tests for src/services/sync_logs.py.
"""
from datetime import timedelta

import pytest

from src.models.sync_log import SyncLog
from src.services.sync_logs import (
    complete_sync_log,
    create_sync_log,
    fail_sync_log,
    find_recent,
    get_stats,
    list_sync_logs,
)
from src.utils.timezone import utc_now


class TestLifecycle:
    async def test_create_starts_running(self, db, stripe_platform):
        sync_log = await create_sync_log(db, stripe_platform.id, "subscriptions")
        assert sync_log.status == "running"
        assert sync_log.records_synced == 0
        assert sync_log.completed_at is None

    async def test_complete_records_counters(self, db, stripe_platform):
        sync_log = await create_sync_log(db, stripe_platform.id, "transactions")
        await complete_sync_log(db, sync_log, records_synced=4, records_failed=1, missing_records_found=2)
        await db.commit()

        assert sync_log.status == "completed"
        assert sync_log.completed_at is not None
        assert (sync_log.records_synced, sync_log.records_failed, sync_log.missing_records_found) == (4, 1, 2)

    async def test_fail_keeps_error_details(self, db, stripe_platform):
        sync_log = await create_sync_log(db, stripe_platform.id, "customers")
        try:
            raise ConnectionError("stripe unreachable")
        except ConnectionError as e:
            await fail_sync_log(db, sync_log, e)

        assert sync_log.status == "failed"
        assert sync_log.error_details["message"] == "stripe unreachable"
        assert sync_log.error_details["type"] == "ConnectionError"
        assert "Traceback" in sync_log.error_details["traceback"]
        assert "timestamp" in sync_log.error_details


class TestQueries:
    async def test_find_recent_filters_window_and_type(self, db, stripe_platform):
        recent = await create_sync_log(db, stripe_platform.id, "subscriptions")
        old = await create_sync_log(db, stripe_platform.id, "subscriptions")
        old.started_at = utc_now() - timedelta(hours=30)
        await create_sync_log(db, stripe_platform.id, "customers")
        await db.commit()

        found = await find_recent(db, stripe_platform.id, "subscriptions", hours=24)
        assert [log.id for log in found] == [recent.id]

    async def test_list_newest_first(self, db, stripe_platform, hotmart_platform):
        first = await create_sync_log(db, stripe_platform.id, "subscriptions")
        first.started_at = utc_now() - timedelta(minutes=10)
        second = await create_sync_log(db, stripe_platform.id, "transactions")
        await create_sync_log(db, hotmart_platform.id, "subscriptions")
        await db.commit()

        logs = await list_sync_logs(db, platform_id=stripe_platform.id)
        assert [log.id for log in logs] == [second.id, first.id]
        assert len(await list_sync_logs(db, sync_type="subscriptions")) == 2
        assert len(await list_sync_logs(db, limit=1)) == 1


class TestStats:
    async def test_aggregates(self, db, stripe_platform):
        now = utc_now()
        done = await create_sync_log(db, stripe_platform.id, "subscriptions")
        await complete_sync_log(db, done, records_synced=3, missing_records_found=2)
        done.started_at = now - timedelta(seconds=30)
        done.completed_at = now

        other = await create_sync_log(db, stripe_platform.id, "customers")
        await complete_sync_log(db, other, records_synced=1)
        other.started_at = now - timedelta(seconds=10)
        other.completed_at = now

        broken = await create_sync_log(db, stripe_platform.id, "transactions")
        await fail_sync_log(db, broken, RuntimeError("boom"))

        ancient = await create_sync_log(db, stripe_platform.id, "transactions")
        ancient.started_at = now - timedelta(days=30)
        await db.commit()

        stats = await get_stats(db, platform_id=stripe_platform.id, days=7)

        assert stats["total_syncs"] == 3
        assert stats["successful_syncs"] == 2
        assert stats["failed_syncs"] == 1
        assert stats["total_records_synced"] == 4
        assert stats["total_missing_found"] == 2
        assert stats["avg_sync_duration_seconds"] == pytest.approx(20.0, abs=0.01)

    async def test_empty(self, db):
        stats = await get_stats(db)
        assert stats == {
            "total_syncs": 0,
            "successful_syncs": 0,
            "failed_syncs": 0,
            "total_records_synced": 0,
            "total_missing_found": 0,
            "avg_sync_duration_seconds": 0.0,
        }
