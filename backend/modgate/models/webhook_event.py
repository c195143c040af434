"""WebhookEvent model for billing-provider webhook idempotency."""

from sqlalchemy import Column, DateTime, String, func

from modgate.core.database import Base
from modgate.models.shared import UUIDType, generate_uuid


class WebhookEvent(Base):
    """Records provider events that have already been handled."""

    __tablename__ = "webhook_events"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    event_id = Column(String(255), nullable=False, unique=True, index=True)
    event_type = Column(String(100), nullable=False)
    subscription_id = Column(String(255), nullable=True, index=True)
    processed_at = Column(DateTime(timezone=True), server_default=func.now())
