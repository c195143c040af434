"""Entitlement sync for subscriptions created at checkout.

Modules bought through checkout arrive as line items on the new subscription,
tagged with ``metadata.module_code``. This service links the subscription to
its account and makes sure every such module has an active entitlement row
pointing at its line item. Rows the owner has scheduled for removal keep their
schedule unless checkout bought the module again on a new item.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from modgate.core.config import settings
from modgate.models.account import Account
from modgate.models.account_module import EntitlementState
from modgate.models.shared import utc_now
from modgate.repositories.account_module_repository import AccountModuleRepository
from modgate.repositories.account_repository import AccountRepository
from modgate.repositories.module_repository import ModuleRepository
from modgate.repositories.user_repository import UserRepository
from modgate.services.audit_service import AuditService
from modgate.services.billing_gateway import BillingGateway, BillingGatewayError, LineItem

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    subscription_id: str
    account_id: UUID | None = None
    legacy: bool = False
    synced: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class SubscriptionSync:
    def __init__(
        self,
        db: Session,
        billing_gateway: BillingGateway,
        clock: Callable[[], datetime] = utc_now,
        write_attempts: int | None = None,
    ):
        self.db = db
        self.billing_gateway = billing_gateway
        self.clock = clock
        self.write_attempts = write_attempts or settings.ENTITLEMENT_WRITE_ATTEMPTS
        self.account_repo = AccountRepository(db)
        self.entitlement_repo = AccountModuleRepository(db)
        self.module_repo = ModuleRepository(db)
        self.user_repo = UserRepository(db)
        self.audit = AuditService(db)

    def sync(
        self,
        subscription_id: str,
        customer_id: str | None = None,
        customer_email: str | None = None,
    ) -> SyncSummary:
        """Create or refresh entitlement rows from the subscription's module items.

        Args:
            subscription_id: Subscription created by checkout.
            customer_id: Provider customer; falls back to the subscription's.
            customer_email: Used to find the account of a first-time customer
                whose customer id is not stored yet.

        Raises:
            BillingGatewayError: If the subscription cannot be read.
        """
        snapshot = self.billing_gateway.retrieve_subscription(subscription_id)
        customer_id = customer_id or snapshot.customer_id
        summary = SyncSummary(subscription_id=subscription_id)

        account = self._find_account(subscription_id, customer_id, customer_email)
        if account is None:
            logger.warning(
                "No account found for subscription %s (customer %s)",
                subscription_id,
                customer_id,
            )
            return summary
        summary.account_id = UUID(str(account.id))

        account = self.account_repo.link_subscription(
            account,
            subscription_id=subscription_id,
            customer_id=customer_id,
            is_paid=snapshot.covers_paid_period,
        )

        module_items: dict[str, LineItem] = {}
        for item in snapshot.line_items:
            if item.module_code:
                module_items[item.module_code] = item

        if not module_items and snapshot.is_legacy_pricing and not account.is_legacy_pricing:
            self.account_repo.mark_legacy_pricing(account)
            logger.info("Account %s marked as legacy pricing", account.id)
        if account.is_legacy_pricing:
            summary.legacy = True
            return summary

        for module_code, item in module_items.items():
            if module_code == settings.CORE_MODULE_CODE:
                summary.skipped.append(module_code)
                continue
            if self.module_repo.get_by_code(module_code) is None:
                logger.warning(
                    "Subscription item %s references unknown module %s",
                    item.item_id,
                    module_code,
                )
                summary.skipped.append(module_code)
                continue

            changed = self._sync_module(account, module_code, item.item_id)
            if changed is None:
                logger.error(
                    "Gave up syncing module %s for account %s after %d conflicting writes",
                    module_code,
                    account.id,
                    self.write_attempts,
                )
                summary.skipped.append(module_code)
            elif changed:
                summary.synced.append(module_code)
            else:
                summary.unchanged.append(module_code)

        logger.info(
            "Synced subscription %s for account %s: synced=%s unchanged=%s skipped=%s",
            subscription_id,
            account.id,
            summary.synced,
            summary.unchanged,
            summary.skipped,
        )
        return summary

    def _find_account(
        self,
        subscription_id: str,
        customer_id: str | None,
        customer_email: str | None,
    ) -> Account | None:
        accounts = self.account_repo.get_by_billing_subscription_id(subscription_id)
        if accounts:
            return accounts[0]
        if customer_id:
            account = self.account_repo.get_by_billing_customer_id(customer_id)
            if account is not None:
                return account
        if customer_email:
            user = self.user_repo.get_by_email(customer_email)
            if user is not None and user.account_id is not None:
                return self.account_repo.get_by_id(UUID(str(user.account_id)))
        return None

    def _sync_module(self, account: Account, module_code: str, item_id: str) -> bool | None:
        """Returns whether the row changed, or None after repeated lost writes."""
        for _ in range(self.write_attempts):
            changed = self._try_sync_module(account, module_code, item_id)
            if changed is not None:
                return changed
        return None

    def _try_sync_module(self, account: Account, module_code: str, item_id: str) -> bool | None:
        account_id = UUID(str(account.id))
        now = self.clock()
        entitlement = self.entitlement_repo.get_by_account_and_module(account_id, module_code)

        if entitlement is None:
            created = self.entitlement_repo.create(
                account_id=account_id,
                module_code=module_code,
                enabled_at=now,
                billing_item_id=item_id,
            )
            if created is None:
                return None
            self.audit.log_transition(
                created,
                "activated",
                changes={"billing_item_id": {"old": None, "new": item_id}},
                metadata={"source": "subscription_sync"},
            )
            return True

        state = entitlement.state(now)
        current_item = str(entitlement.billing_item_id) if entitlement.billing_item_id else None
        if current_item == item_id and state != EntitlementState.INACTIVE:
            return False

        values: dict[str, Any] = {
            "billing_item_id": item_id,
            "disabled_at": None,
            "pending_deletion": False,
            "pending_deletion_at": None,
        }
        if state == EntitlementState.INACTIVE:
            values["enabled_at"] = now

        written = self.entitlement_repo.compare_and_set(
            UUID(str(entitlement.id)), int(entitlement.version), **values
        )
        if not written:
            return None

        self.audit.log_transition(
            entitlement,
            "activated" if state == EntitlementState.INACTIVE else "billing_item_linked",
            changes={"billing_item_id": {"old": current_item, "new": item_id}},
            metadata={"source": "subscription_sync"},
        )

        if current_item is not None and current_item != item_id:
            try:
                self.billing_gateway.delete_line_item(current_item)
            except BillingGatewayError as e:
                logger.warning(
                    "Could not remove replaced subscription item %s: %s", current_item, e
                )
                self.audit.log_billing_failure(entitlement, "delete_line_item", e, current_item)
        return True
