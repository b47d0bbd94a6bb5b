"""
Reconciliation - compares each polled platform's recent records against the
local store and repairs drift.

For every record fetched in the lookback window:
- no local row    -> synthetic WebhookEvent + process_webhook job (missing)
- drifted fields  -> field-level update in place (synced)
- error           -> savepoint rolled back, counted as failed, batch continues

Webhook-only platforms are never polled.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.database import async_session_factory
from src.integrations.provider_base import PaymentProviderBase
from src.models.customer import Customer
from src.models.platform import Platform
from src.models.subscription import Subscription
from src.models.sync_log import SyncLog
from src.models.transaction import Transaction
from src.schemas.canonical import FetchParams
from src.services.event_store import record_synthetic_event
from src.services.persistence import transaction_status_can_change
from src.services.provider_resolver import get_platform_by_slug, get_provider
from src.services.sync_logs import complete_sync_log, create_sync_log, fail_sync_log
from src.services.task_dispatch import notify_task_processor
from src.utils.alerting import AlertType, send_alert
from src.utils.errors import ProviderNotConfiguredError
from src.utils.timezone import same_instant, utc_now

logger = logging.getLogger(__name__)

# Strong references to fire-and-forget runs started by operator triggers
_background_tasks: set[asyncio.Task] = set()


def _apply_subscription_drift(row: Subscription, record) -> bool:
    changed = False
    for field in ("status", "is_trial", "recurring_amount"):
        if getattr(row, field) != getattr(record, field):
            setattr(row, field, getattr(record, field))
            changed = True
    if not same_instant(row.current_period_end, record.current_period_end):
        row.current_period_end = record.current_period_end
        changed = True
    return changed


def _apply_transaction_drift(row: Transaction, record) -> bool:
    changed = False
    # Stripe keeps a refunded charge's invoice "paid"
    if row.status != record.status and transaction_status_can_change(row.status, record.status):
        row.status = record.status
        changed = True
    if row.amount != record.amount:
        row.amount = record.amount
        changed = True
    if not same_instant(row.transaction_date, record.created_at):
        row.transaction_date = record.created_at
        changed = True
    return changed


def _apply_customer_drift(row: Customer, record) -> bool:
    changed = False
    for field in ("email", "name", "phone"):
        value = getattr(record, field)
        # Platforms often omit contact fields; absence is not drift
        if value is not None and getattr(row, field) != value:
            setattr(row, field, value)
            changed = True
    return changed


@dataclass(frozen=True)
class _SyncSpec:
    sync_type: str
    event_type: str
    fetch: Callable[[PaymentProviderBase, FetchParams], Any]
    model: type
    key_field: str
    apply_drift: Callable[[Any, Any], bool]


SYNC_SPECS = (
    _SyncSpec(
        sync_type="subscriptions",
        event_type="subscription.created",
        fetch=lambda provider, params: provider.fetch_subscriptions(params),
        model=Subscription,
        key_field="external_subscription_id",
        apply_drift=_apply_subscription_drift,
    ),
    _SyncSpec(
        sync_type="transactions",
        event_type="transaction.created",
        fetch=lambda provider, params: provider.fetch_transactions(params),
        model=Transaction,
        key_field="external_transaction_id",
        apply_drift=_apply_transaction_drift,
    ),
    _SyncSpec(
        sync_type="customers",
        event_type="customer.created",
        fetch=lambda provider, params: provider.fetch_customers(params),
        model=Customer,
        key_field="external_customer_id",
        apply_drift=_apply_customer_drift,
    ),
)


def is_webhook_only(platform: Platform) -> bool:
    settings = get_settings()
    return bool(platform.webhook_only) or platform.slug in settings.webhook_only_platform_slugs


def _fetch_params() -> FetchParams:
    settings = get_settings()
    end_date = utc_now()
    return FetchParams(
        start_date=end_date - timedelta(hours=settings.sync_lookback_hours),
        end_date=end_date,
        limit=settings.sync_page_size,
    )


async def _reconcile_record(db: AsyncSession, platform: Platform, spec: _SyncSpec, record) -> str:
    """Returns "missing", "synced" or "unchanged"."""
    key_column = getattr(spec.model, spec.key_field)
    result = await db.execute(
        select(spec.model).where(
            and_(
                spec.model.platform_id == platform.id,
                key_column == getattr(record, spec.key_field),
            )
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        await record_synthetic_event(
            db, platform.id, spec.event_type, record.model_dump(mode="json")
        )
        return "missing"
    if spec.apply_drift(row, record):
        await db.flush()
        return "synced"
    return "unchanged"


async def _run_sync_type(db: AsyncSession, platform: Platform, spec: _SyncSpec) -> dict:
    settings = get_settings()
    sync_log = await create_sync_log(db, platform.id, spec.sync_type)
    sync_log_id = sync_log.id
    await db.commit()

    synced = failed = missing = 0
    try:
        provider = await get_provider(db, platform.slug)
        records = await spec.fetch(provider, _fetch_params())

        for record in records:
            try:
                async with db.begin_nested():
                    outcome = await _reconcile_record(db, platform, spec, record)
            except Exception as e:
                failed += 1
                logger.error(
                    "Failed to reconcile %s %s for %s: %s",
                    spec.sync_type, getattr(record, spec.key_field, "?"), platform.slug, str(e),
                )
                continue
            if outcome == "missing":
                missing += 1
            elif outcome == "synced":
                synced += 1

        await complete_sync_log(db, sync_log, synced, failed, missing)
        await db.commit()
    except Exception as e:
        await db.rollback()
        sync_log = await db.get(SyncLog, sync_log_id, populate_existing=True)
        await fail_sync_log(db, sync_log, e)
        await db.commit()
        logger.error("%s sync failed for %s: %s", spec.sync_type, platform.slug, str(e))
        if isinstance(e, ProviderNotConfiguredError):
            await send_alert(
                AlertType.PROVIDER_NOT_CONFIGURED, str(e), severity="warning", dedup_key=platform.slug,
            )
        else:
            await send_alert(
                AlertType.SYNC_FAILED,
                f"{spec.sync_type} sync failed for {platform.slug}: {str(e)}",
                dedup_key=f"{platform.slug}:{spec.sync_type}",
            )
        return {"sync_type": spec.sync_type, "status": "failed", "error": str(e)}

    logger.info(
        "%s sync completed for %s: %d synced, %d failed, %d missing",
        spec.sync_type, platform.slug, synced, failed, missing,
        extra={"platform": platform.slug, "sync_type": spec.sync_type},
    )
    if missing:
        await notify_task_processor(str(sync_log_id))
    if missing > settings.sync_missing_alert_threshold:
        await send_alert(
            AlertType.SYNC_MISSING_RECORDS,
            f"High number of missing {spec.sync_type} found for {platform.slug}: {missing}",
            severity="warning",
            extra={"platform": platform.slug, "sync_type": spec.sync_type, "missing": missing},
            dedup_key=f"{platform.slug}:{spec.sync_type}",
        )

    return {
        "sync_type": spec.sync_type,
        "status": "completed",
        "records_synced": synced,
        "records_failed": failed,
        "missing_records_found": missing,
    }


async def sync_platform(db: AsyncSession, platform: Platform) -> list[dict]:
    """
    Reconcile subscriptions, transactions and customers for one platform.
    Each type runs independently; a failed type does not stop the others.
    """
    if is_webhook_only(platform):
        logger.info("Skipping sync for %s - webhook-only platform", platform.slug)
        return []

    logger.info("Starting sync for platform: %s", platform.slug)
    results = []
    for spec in SYNC_SPECS:
        results.append(await _run_sync_type(db, platform, spec))
    logger.info("Completed sync for platform: %s", platform.slug)
    return results


async def sync_all_platforms() -> dict[str, list[dict]]:
    """Reconcile every enabled platform; one platform's crash stops only that platform."""
    async with async_session_factory() as db:
        result = await db.execute(
            select(Platform).where(Platform.is_enabled.is_(True)).order_by(Platform.slug)
        )
        platforms = list(result.scalars().all())

    logger.info("Starting scheduled sync for %d enabled platforms", len(platforms))
    summary: dict[str, list[dict]] = {}
    for platform in platforms:
        try:
            async with async_session_factory() as db:
                summary[platform.slug] = await sync_platform(db, platform)
        except Exception as e:
            logger.error("Failed to sync platform %s: %s", platform.slug, str(e))
            summary[platform.slug] = [{"status": "failed", "error": str(e)}]
    return summary


async def _sync_platform_by_id(platform_id: uuid.UUID) -> None:
    try:
        async with async_session_factory() as db:
            platform = await db.get(Platform, platform_id)
            if platform:
                await sync_platform(db, platform)
    except Exception as e:
        logger.error("Triggered sync for %s failed: %s", str(platform_id)[:8], str(e))


def _spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def trigger_platform_sync(db: AsyncSession, platform_slug: str) -> Platform:
    """
    Validate the platform and start its sync in the background.
    Returns immediately; raises PlatformNotFoundError for an unknown slug.
    """
    platform = await get_platform_by_slug(db, platform_slug)
    _spawn(_sync_platform_by_id(platform.id))
    logger.info("Manual sync triggered for %s", platform.slug)
    return platform


def trigger_all_sync() -> asyncio.Task:
    """Start a full reconciliation in the background and return immediately."""
    logger.info("Manual sync triggered for all platforms")
    return _spawn(sync_all_platforms())
