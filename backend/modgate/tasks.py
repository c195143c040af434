from typing import Any

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job

from modgate.core.config import settings

# Redis connection settings
redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)


async def get_redis_pool() -> ArqRedis:
    """Get or create Redis pool for arq"""
    return await create_pool(redis_settings)


async def enqueue_task(task_name: str, *args: Any, **kwargs: Any) -> Job | None:
    """
    Enqueue a task to the arq worker.

    Args:
        task_name: Name of the task function
        *args: Positional arguments for the task
        **kwargs: Keyword arguments for the task

    Returns:
        Job object from arq, or None if a job with the same id is already queued
    """
    pool = await get_redis_pool()
    try:
        return await pool.enqueue_job(task_name, *args, **kwargs)
    finally:
        await pool.close()


async def enqueue_reconciliation(
    subscription_id: str, period_start: str | None = None
) -> Job | None:
    """Enqueue reconciliation of one subscription's pending module removals.

    The job id is derived from the subscription so repeated triggers collapse
    into a single queued job.
    """
    return await enqueue_task(
        "reconcile_subscription_task",
        subscription_id,
        period_start,
        _job_id=f"reconcile:{subscription_id}",
    )
