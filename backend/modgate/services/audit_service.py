"""Audit service for recording entitlement history."""

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from modgate.models.account_module import AccountModule
from modgate.repositories.audit_log_repository import AuditLogRepository

ENTITLEMENT_RESOURCE = "account_module"


class AuditService:
    """Service for recording audit trail entries."""

    def __init__(self, db: Session):
        self.repo = AuditLogRepository(db)

    def log_transition(
        self,
        entitlement: AccountModule,
        action: str,
        changes: dict[str, Any] | None = None,
        actor_type: str = "system",
        actor_id: UUID | str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an entitlement state transition."""
        self.repo.create(
            account_id=UUID(str(entitlement.account_id)),
            resource_type=ENTITLEMENT_RESOURCE,
            resource_id=UUID(str(entitlement.id)),
            action=action,
            changes=changes or {},
            actor_type=actor_type,
            actor_id=str(actor_id) if actor_id is not None else None,
            metadata={"module_code": str(entitlement.module_code), **(metadata or {})},
        )

    def log_billing_failure(
        self,
        entitlement: AccountModule,
        operation: str,
        error: Exception,
        billing_item_id: str | None,
    ) -> None:
        """Log a failed billing call that did not roll back the entitlement."""
        self.repo.create(
            account_id=UUID(str(entitlement.account_id)),
            resource_type=ENTITLEMENT_RESOURCE,
            resource_id=UUID(str(entitlement.id)),
            action="billing_sync_failed",
            changes={},
            actor_type="system",
            metadata={
                "module_code": str(entitlement.module_code),
                "operation": operation,
                "billing_item_id": billing_item_id,
                "error": str(error),
            },
        )
