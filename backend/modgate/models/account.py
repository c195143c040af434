from sqlalchemy import Boolean, Column, DateTime, Integer, String, func

from modgate.core.database import Base
from modgate.models.shared import UUIDType, generate_uuid


class Account(Base):
    __tablename__ = "accounts"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    billing_customer_id = Column(String(255), nullable=True, index=True)
    billing_subscription_id = Column(String(255), nullable=True, index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    is_legacy_pricing = Column(Boolean, nullable=False, default=False)
    # Quantity charged on each module line item (one unit per venue).
    billing_quantity = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
