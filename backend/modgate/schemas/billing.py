from datetime import datetime

from pydantic import BaseModel


class WebhookAck(BaseModel):
    received: bool = True
    status: str
    reason: str | None = None
    removed: int | None = None
    failed: int | None = None
    synced: int | None = None


class ReconciliationRequest(BaseModel):
    period_start: datetime | None = None


class ReconciliationQueued(BaseModel):
    subscription_id: str
    job_id: str | None = None
    status: str = "queued"
