"""
Task dispatch service - enqueue jobs on the durable task queue.

Also pushes a notification to Redis so the webhook worker can wake
immediately via BRPOP instead of waiting for its next poll.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.database import async_session_factory
from src.models.task_queue import TaskQueue

logger = logging.getLogger(__name__)

TASK_NOTIFY_KEY = "paysync:task_notify"

PROCESS_WEBHOOK_TASK = "process_webhook"


async def notify_task_processor(task_id: str) -> None:
    """Wake the worker (non-blocking, best-effort)."""
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.lpush(TASK_NOTIFY_KEY, task_id)
    except Exception as e:
        logger.debug("Failed to notify task processor: %s", str(e))


async def enqueue_task(
    task_type: str,
    payload: Optional[dict] = None,
    priority: int = 5,
    delay_seconds: float = 0,
    db: Optional[AsyncSession] = None,
) -> str:
    """
    Enqueue a task for background processing.

    Args:
        task_type: Type of task (process_webhook)
        payload: Task-specific data as JSON-serializable dict
        priority: 0=low, 5=normal, 10=high
        delay_seconds: Delay before task becomes eligible for processing
        db: When given, the task joins the caller's transaction and the caller
            is responsible for committing and calling notify_task_processor.

    Returns:
        Task ID as string
    """
    scheduled_at = datetime.now(timezone.utc)
    if delay_seconds > 0:
        scheduled_at = scheduled_at + timedelta(seconds=delay_seconds)

    task = TaskQueue(
        task_type=task_type,
        payload=payload or {},
        priority=priority,
        scheduled_at=scheduled_at,
    )

    if db is not None:
        db.add(task)
        await db.flush()
        task_id = str(task.id)
    else:
        async with async_session_factory() as session:
            session.add(task)
            await session.commit()
            task_id = str(task.id)

    logger.info(
        "Task enqueued: type=%s priority=%d delay=%ss id=%s",
        task_type, priority, delay_seconds, task_id[:8],
    )

    if db is None and delay_seconds == 0:
        await notify_task_processor(task_id)

    return task_id
