import logging
from datetime import datetime
from typing import Any

from arq import cron

from modgate.core.config import settings
from modgate.core.database import SessionLocal
from modgate.repositories.webhook_event_repository import WebhookEventRepository
from modgate.services.billing_gateway import get_billing_gateway
from modgate.services.reconciliation import ReconciliationWorker
from modgate.tasks import redis_settings

logger = logging.getLogger(__name__)


async def reconcile_subscription_task(
    ctx: dict[str, Any], subscription_id: str, period_start: str | None = None
) -> dict[str, int]:
    """Background task: explicit retry of renewal-time reconciliation.

    Rows whose line item could not be deleted stay pending; running the task
    again only touches those.
    """
    db = SessionLocal()
    try:
        worker = ReconciliationWorker(db, get_billing_gateway())
        summary = worker.reconcile(
            subscription_id,
            period_start=datetime.fromisoformat(period_start) if period_start else None,
        )
        if summary.failed > 0:
            logger.warning(
                "Reconciliation of %s left %d module(s) pending",
                subscription_id,
                summary.failed,
            )
        return {
            "examined": summary.examined,
            "removed": summary.removed,
            "failed": summary.failed,
            "skipped": summary.skipped,
        }
    finally:
        db.close()


async def prune_webhook_events_task(ctx: dict[str, Any]) -> int:
    """Background task: delete processed webhook event records past retention.

    Runs daily.
    """
    db = SessionLocal()
    try:
        count = WebhookEventRepository(db).delete_older_than(
            settings.WEBHOOK_EVENT_RETENTION_DAYS
        )
        if count > 0:
            logger.info("Pruned %d processed webhook events", count)
        return count
    finally:
        db.close()


class WorkerSettings:
    functions = [
        reconcile_subscription_task,
        prune_webhook_events_task,
    ]
    cron_jobs = [
        cron(prune_webhook_events_task, hour=3, minute=0),  # daily at 03:00
    ]
    redis_settings = redis_settings
