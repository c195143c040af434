"""Repository for processed billing-provider webhook events."""

from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modgate.models.shared import generate_uuid
from modgate.models.webhook_event import WebhookEvent


class WebhookEventRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_event_id(self, event_id: str) -> WebhookEvent | None:
        return self.db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()

    def is_processed(self, event_id: str) -> bool:
        return self.get_by_event_id(event_id) is not None

    def mark_processed(
        self,
        *,
        event_id: str,
        event_type: str,
        subscription_id: str | None = None,
    ) -> WebhookEvent | None:
        """Record the event; returns None if it was recorded concurrently."""
        event = WebhookEvent(
            id=generate_uuid(),
            event_id=event_id,
            event_type=event_type,
            subscription_id=subscription_id,
        )
        self.db.add(event)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return None
        self.db.refresh(event)
        return event

    def delete_older_than(self, max_age_days: int) -> int:
        cutoff = datetime.now(UTC) - timedelta(days=max_age_days)
        count = (
            self.db.query(WebhookEvent)
            .filter(WebhookEvent.processed_at < cutoff)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return int(count)
