"""AccountModule model: the entitlement of one account to one module."""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from modgate.core.database import Base
from modgate.models.shared import UUIDType, as_utc, generate_uuid


class EntitlementState(str, Enum):
    ACTIVE = "active"
    PENDING_DEACTIVATION = "pending_deactivation"
    INACTIVE = "inactive"


class AccountModule(Base):
    """Entitlement row, kept as history once the module is switched off.

    ``version`` is bumped by every write and is the compare-and-swap token
    used by ``AccountModuleRepository.compare_and_set``.
    """

    __tablename__ = "account_modules"
    __table_args__ = (
        UniqueConstraint("account_id", "module_code", name="uq_account_modules_account_module"),
    )

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    account_id = Column(
        UUIDType,
        ForeignKey("accounts.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    module_code = Column(
        String(50),
        ForeignKey("modules.code", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    enabled_at = Column(DateTime(timezone=True), nullable=False)
    disabled_at = Column(DateTime(timezone=True), nullable=True)
    billing_item_id = Column(String(255), nullable=True, index=True)
    pending_deletion = Column(Boolean, nullable=False, default=False, index=True)
    pending_deletion_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def state(self, now: datetime) -> EntitlementState:
        disabled_at = as_utc(self.disabled_at)  # type: ignore[arg-type]
        if disabled_at is None:
            return EntitlementState.ACTIVE
        if disabled_at > now:
            return EntitlementState.PENDING_DEACTIVATION
        return EntitlementState.INACTIVE

    def is_active(self, now: datetime) -> bool:
        return self.state(now) != EntitlementState.INACTIVE
