"""
Webhook worker - polls the task_queue table for process_webhook jobs and runs
one processing attempt per job.

Uses BRPOP on a Redis notification key for near-instant wake on new events,
with a 30-second timeout falling back to DB poll as safety net.
Retries are cooperative: a failed attempt reschedules its job row instead of
sleeping inside the worker.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import async_session_factory
from src.models.task_queue import TaskQueue
from src.services.task_dispatch import PROCESS_WEBHOOK_TASK, TASK_NOTIFY_KEY
from src.services.webhook_processor import process_webhook_event
from src.utils.alerting import AlertType, send_alert
from src.utils.errors import PermanentError

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 30  # Fallback DB poll interval
MAX_TASKS_PER_CYCLE = 10
BRPOP_TIMEOUT = 30  # seconds to wait for Redis notification
HEARTBEAT_KEY = "paysync:worker_health:webhook_worker"
# A job still "processing" after this long belongs to a worker that died
STALE_TASK_MINUTES = 10


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=120)
    except Exception as e:
        logger.debug("Heartbeat write failed: %s", str(e))


async def run_webhook_worker():
    """Main loop - wait for notification or poll every 30s."""
    logger.info("Webhook worker started (adaptive polling, BRPOP %ds timeout)", BRPOP_TIMEOUT)

    while True:
        try:
            await process_cycle()
        except Exception as e:
            logger.error("Webhook worker cycle error: %s", str(e))
            await send_alert(
                AlertType.WORKER_CYCLE_ERROR,
                f"Webhook worker cycle error: {str(e)}",
                dedup_key="webhook_worker",
            )

        await _heartbeat()

        # Wait for either a Redis notification or timeout
        try:
            from src.utils.redis_client import get_redis
            redis = await get_redis()
            result = await redis.brpop(TASK_NOTIFY_KEY, timeout=BRPOP_TIMEOUT)
            if result:
                # Drain any additional notifications to avoid stacking
                while await redis.rpop(TASK_NOTIFY_KEY):
                    pass
        except Exception as e:
            # If Redis is unavailable, fall back to sleep
            logger.debug("Redis BRPOP unavailable, falling back to sleep: %s", str(e))
            await asyncio.sleep(POLL_INTERVAL_SECONDS)


async def _claim_tasks(db: AsyncSession) -> list[TaskQueue]:
    """Claim due jobs; SKIP LOCKED keeps concurrent workers off the same rows."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        select(TaskQueue)
        .where(
            and_(
                TaskQueue.task_type == PROCESS_WEBHOOK_TASK,
                TaskQueue.status == "pending",
                TaskQueue.scheduled_at <= now,
            )
        )
        .order_by(TaskQueue.priority.desc(), TaskQueue.created_at)
        .limit(MAX_TASKS_PER_CYCLE)
        .with_for_update(skip_locked=True)
    )
    tasks = list(result.scalars().all())
    for task in tasks:
        task.status = "processing"
        task.started_at = now
        task.attempts = (task.attempts or 0) + 1
    await db.commit()
    return tasks


async def _requeue_stale_tasks(db: AsyncSession) -> int:
    """Put jobs abandoned in "processing" back on the queue."""
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(TaskQueue)
        .where(
            and_(
                TaskQueue.task_type == PROCESS_WEBHOOK_TASK,
                TaskQueue.status == "processing",
                TaskQueue.started_at < now - timedelta(minutes=STALE_TASK_MINUTES),
            )
        )
        .values(status="pending", scheduled_at=now, error_message="Requeued after stalled attempt")
    )
    await db.commit()
    if result.rowcount:
        logger.warning("Requeued %d stalled webhook jobs", result.rowcount)
    return result.rowcount


async def _release_tasks(task_ids: list[uuid.UUID]) -> None:
    """Return claimed but unfinished jobs to pending (worker shutdown)."""
    if not task_ids:
        return
    async with async_session_factory() as db:
        await db.execute(
            update(TaskQueue)
            .where(and_(TaskQueue.id.in_(task_ids), TaskQueue.status == "processing"))
            .values(status="pending", scheduled_at=datetime.now(timezone.utc))
        )
        await db.commit()
    logger.info("Released %d unfinished webhook jobs", len(task_ids))


async def process_cycle() -> int:
    """Find and execute due process_webhook jobs. Returns the number handled."""
    async with async_session_factory() as db:
        await _requeue_stale_tasks(db)
        tasks = await _claim_tasks(db)
        if not tasks:
            return 0

        logger.info("Processing %d webhook jobs", len(tasks))
        done = 0
        try:
            for task in tasks:
                await _execute_task(db, task)
                await db.commit()
                done += 1
        except asyncio.CancelledError:
            await _release_tasks([task.id for task in tasks[done:]])
            raise

    return len(tasks)


async def _execute_task(db: AsyncSession, task: TaskQueue) -> None:
    """Run one attempt in its own session and record the outcome on the job row."""
    payload = task.payload or {}
    try:
        event_id = uuid.UUID(str(payload.get("webhook_event_id")))
    except ValueError:
        task.status = "failed"
        task.error_message = f"Invalid webhook_event_id: {payload.get('webhook_event_id')}"
        task.completed_at = datetime.now(timezone.utc)
        logger.warning("Webhook job %s has invalid payload", str(task.id)[:8])
        return

    try:
        async with async_session_factory() as attempt_db:
            outcome = await process_webhook_event(attempt_db, event_id)
    except PermanentError as e:
        task.status = "failed"
        task.error_message = str(e)
        task.completed_at = datetime.now(timezone.utc)
        logger.error("Webhook job failed permanently: id=%s error=%s", str(task.id)[:8], str(e))
        return
    except Exception as e:
        # Bookkeeping failure outside the attempt; retry the job later
        task.status = "pending"
        task.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=POLL_INTERVAL_SECONDS)
        task.error_message = str(e)
        logger.error("Webhook job error: id=%s error=%s", str(task.id)[:8], str(e))
        return

    if outcome.should_retry:
        task.status = "pending"
        task.scheduled_at = datetime.now(timezone.utc) + timedelta(seconds=outcome.retry_in_seconds)
        task.error_message = outcome.error
        return

    task.status = "completed" if outcome.status == "processed" else "failed"
    task.error_message = outcome.error
    task.completed_at = datetime.now(timezone.utc)
    task.result_data = {"event_status": outcome.status}
    logger.info(
        "Webhook job done: id=%s event=%s status=%s",
        str(task.id)[:8], str(event_id)[:8], outcome.status,
    )
