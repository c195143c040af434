"""Renewal-time reconciliation of deferred module removals.

When the billing provider starts a new period for a subscription, every module
whose access ended at or before the period start still has its line item on the
subscription. This worker deletes those items and clears the pending flag on
the entitlement row. Access state (``disabled_at``) is never touched here.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from modgate.models.account_module import AccountModule
from modgate.models.shared import as_utc, utc_now
from modgate.repositories.account_module_repository import AccountModuleRepository
from modgate.services.audit_service import AuditService
from modgate.services.billing_gateway import BillingGateway, BillingGatewayError

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationSummary:
    subscription_id: str
    cutoff: datetime
    examined: int = 0
    removed: int = 0
    failed: int = 0
    skipped: int = 0
    removed_item_ids: list[str] = field(default_factory=list)


class ReconciliationWorker:
    def __init__(
        self,
        db: Session,
        billing_gateway: BillingGateway,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.billing_gateway = billing_gateway
        self.clock = clock
        self.entitlement_repo = AccountModuleRepository(db)
        self.audit = AuditService(db)

    def reconcile(
        self, subscription_id: str, period_start: datetime | None = None
    ) -> ReconciliationSummary:
        """Finalize billing-side removal for modules whose access has ended.

        Args:
            subscription_id: Provider subscription that renewed.
            period_start: Start of the new billing period. Read from the
                provider when not supplied by the triggering event.
                A period start later than the current time is capped at now,
                so rows still inside their paid period are never finalized.

        Raises:
            BillingGatewayError: If ``period_start`` is missing and the
                subscription cannot be read.
        """
        if period_start is None:
            snapshot = self.billing_gateway.retrieve_subscription(subscription_id)
            period_start = snapshot.current_period_start
        cutoff: datetime = as_utc(period_start)  # type: ignore[assignment]
        now = self.clock()
        if cutoff > now:
            logger.warning(
                "Period start %s for subscription %s is in the future, reconciling up to %s",
                cutoff.isoformat(),
                subscription_id,
                now.isoformat(),
            )
            cutoff = now

        summary = ReconciliationSummary(subscription_id=subscription_id, cutoff=cutoff)
        pending = self.entitlement_repo.get_pending_deletions_for_subscription(subscription_id)

        for entitlement in pending:
            # Rows reload after every commit; one may have been finalized meanwhile.
            if not entitlement.pending_deletion:
                continue
            disabled_at = as_utc(entitlement.disabled_at)  # type: ignore[arg-type]
            if disabled_at is None or disabled_at > cutoff:
                continue

            summary.examined += 1
            target = as_utc(entitlement.pending_deletion_at)  # type: ignore[arg-type]
            if target != disabled_at:
                logger.warning(
                    "Skipping entitlement %s: deletion target %s does not match disabled_at %s",
                    entitlement.id,
                    target,
                    disabled_at,
                )
                summary.skipped += 1
                continue

            item_id = str(entitlement.billing_item_id) if entitlement.billing_item_id else None
            outcome = self._finalize(entitlement, item_id)
            if outcome == "removed":
                summary.removed += 1
                if item_id is not None:
                    summary.removed_item_ids.append(item_id)
            elif outcome == "failed":
                summary.failed += 1
            else:
                summary.skipped += 1

        logger.info(
            "Reconciled subscription %s up to %s: examined=%d removed=%d failed=%d skipped=%d",
            subscription_id,
            cutoff.isoformat(),
            summary.examined,
            summary.removed,
            summary.failed,
            summary.skipped,
        )
        return summary

    def _finalize(self, entitlement: AccountModule, item_id: str | None) -> str:
        """Delete the line item and clear the pending flag.

        Returns "removed", "failed" (billing error, row left pending) or
        "changed" (row was written concurrently and is left alone).
        """
        entitlement_id = UUID(str(entitlement.id))
        expected_version = int(entitlement.version)

        if item_id is not None:
            try:
                self.billing_gateway.delete_line_item(item_id)
            except BillingGatewayError as e:
                logger.error(
                    "Failed to delete subscription item %s for entitlement %s: %s",
                    item_id,
                    entitlement_id,
                    e,
                )
                self.audit.log_billing_failure(entitlement, "delete_line_item", e, item_id)
                return "failed"

        written = self.entitlement_repo.compare_and_set(
            entitlement_id,
            expected_version,
            billing_item_id=None,
            pending_deletion=False,
            pending_deletion_at=None,
        )
        if not written:
            logger.info(
                "Entitlement %s changed during reconciliation, leaving it as is",
                entitlement_id,
            )
            return "changed"

        self.audit.log_transition(
            entitlement,
            "billing_item_removed",
            changes={"billing_item_id": {"old": item_id, "new": None}},
        )
        return "removed"
