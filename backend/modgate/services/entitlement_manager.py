"""Entitlement lifecycle: granting and revoking access to optional modules.

Deactivation is either immediate or deferred to the end of the billing period
the account already paid for. The entitlement row is the source of truth for
access; billing line items only follow it. Every write to an existing row is a
compare-and-swap on its version, and a lost race re-reads the row and runs the
row-level checks again instead of overwriting.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from modgate.core.auth import ActingUser
from modgate.core.config import settings
from modgate.core.result import Err, ErrorKind, Ok, Result
from modgate.models.account import Account
from modgate.models.account_module import AccountModule, EntitlementState
from modgate.models.shared import as_utc, utc_now
from modgate.repositories.account_module_repository import AccountModuleRepository
from modgate.repositories.account_repository import AccountRepository
from modgate.repositories.module_repository import ModuleRepository
from modgate.services.audit_service import AuditService
from modgate.services.billing_gateway import BillingGateway, BillingGatewayError

logger = logging.getLogger(__name__)


@dataclass
class DeactivationOutcome:
    module_code: str
    access_until: datetime
    immediate: bool
    # None when no billing item had to be flagged.
    billing_marked: bool | None
    message: str


@dataclass
class ActivationOutcome:
    module_code: str
    enabled_at: datetime
    billing_item_id: str | None
    reactivated: bool
    message: str


@dataclass
class _OwnerContext:
    user: ActingUser
    account: Account


class EntitlementManager:
    """Orchestrates module activation and deactivation for account owners."""

    def __init__(
        self,
        db: Session,
        billing_gateway: BillingGateway,
        clock: Callable[[], datetime] = utc_now,
        module_prices: dict[str, dict[str, str]] | None = None,
        write_attempts: int | None = None,
    ):
        self.db = db
        self.billing_gateway = billing_gateway
        self.clock = clock
        self.module_prices = (
            module_prices if module_prices is not None else settings.MODULE_PRICE_IDS
        )
        self.write_attempts = write_attempts or settings.ENTITLEMENT_WRITE_ATTEMPTS
        self.account_repo = AccountRepository(db)
        self.entitlement_repo = AccountModuleRepository(db)
        self.module_repo = ModuleRepository(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Deactivation
    # ------------------------------------------------------------------

    def request_deactivation(
        self, module_code: str | None, identity: Result[ActingUser]
    ) -> Result[DeactivationOutcome]:
        """Revoke access to a module, now or at the end of the paid period.

        Checks run in a fixed order and stop at the first failure: module code
        present, not the core module, authenticated, owner role, account
        found, not legacy pricing, module enabled, not already disabled.
        """
        if not module_code:
            return Err(ErrorKind.MODULE_CODE_REQUIRED)
        if module_code == settings.CORE_MODULE_CODE:
            return Err(ErrorKind.CORE_MODULE_PROTECTED)

        authorized = self._authorize_owner(identity)
        if isinstance(authorized, Err):
            return authorized
        context = authorized.value

        for attempt in range(1, self.write_attempts + 1):
            result = self._try_deactivate(module_code, context)
            if result is not None:
                return result
            logger.info(
                "Concurrent update while deactivating %s for account %s (attempt %d)",
                module_code,
                context.account.id,
                attempt,
            )
        return Err(ErrorKind.CONCURRENT_MODIFICATION)

    def _try_deactivate(
        self, module_code: str, context: _OwnerContext
    ) -> Result[DeactivationOutcome] | None:
        account = context.account
        entitlement = self.entitlement_repo.get_by_account_and_module(
            UUID(str(account.id)), module_code
        )
        if entitlement is None:
            return Err(ErrorKind.MODULE_NOT_ENABLED)

        now = self.clock()
        state = entitlement.state(now)
        if state == EntitlementState.INACTIVE:
            return Err(ErrorKind.ALREADY_DISABLED)
        if state == EntitlementState.PENDING_DEACTIVATION:
            return Err(ErrorKind.ALREADY_DISABLED, "Module is already scheduled for removal")

        expected_version = int(entitlement.version)
        billing_item_id = str(entitlement.billing_item_id) if entitlement.billing_item_id else None

        disabled_at, immediate = self._effective_deactivation_time(account, now)
        mark_billing = not immediate and billing_item_id is not None

        written = self.entitlement_repo.compare_and_set(
            UUID(str(entitlement.id)),
            expected_version,
            disabled_at=disabled_at,
            pending_deletion=mark_billing,
            pending_deletion_at=disabled_at if mark_billing else None,
        )
        if not written:
            return None

        self.audit.log_transition(
            entitlement,
            "deactivated" if immediate else "deactivation_scheduled",
            changes={"disabled_at": {"old": None, "new": disabled_at.isoformat()}},
            actor_type="user",
            actor_id=context.user.user_id,
        )
        if immediate and billing_item_id is not None:
            # Nothing reconciles this item; it is replaced on the next activation.
            logger.warning(
                "Module %s for account %s disabled immediately, subscription item %s "
                "stays on the subscription",
                module_code,
                account.id,
                billing_item_id,
            )
            self.audit.log_transition(
                entitlement,
                "billing_item_retained",
                metadata={"billing_item_id": billing_item_id},
            )

        billing_marked: bool | None = None
        if mark_billing and billing_item_id is not None:
            billing_marked = self._mark_pending_deletion(entitlement, billing_item_id, disabled_at)

        logger.info(
            "Module %s for account %s disabled %s",
            module_code,
            account.id,
            "immediately" if immediate else f"at {disabled_at.isoformat()}",
        )
        return Ok(
            DeactivationOutcome(
                module_code=module_code,
                access_until=disabled_at,
                immediate=immediate,
                billing_marked=billing_marked,
                message=(
                    "Module disabled"
                    if immediate
                    else "Module will be removed at the end of your billing period"
                ),
            )
        )

    def _effective_deactivation_time(
        self, account: Account, now: datetime
    ) -> tuple[datetime, bool]:
        """Return ``(disabled_at, immediate)`` for the account's billing state.

        Raises:
            BillingGatewayError: If the subscription cannot be read.
        """
        if not account.is_paid or not account.billing_subscription_id:
            return now, True

        snapshot = self.billing_gateway.retrieve_subscription(
            str(account.billing_subscription_id)
        )
        if not snapshot.covers_paid_period:
            logger.info(
                "Subscription %s is %s, disabling immediately",
                snapshot.subscription_id,
                snapshot.status,
            )
            return now, True
        return snapshot.current_period_end, False

    def _mark_pending_deletion(
        self, entitlement: AccountModule, item_id: str, target_time: datetime
    ) -> bool:
        # The entitlement is already committed; reconciliation at the next
        # renewal removes the item even if this flag never reaches billing.
        try:
            self.billing_gateway.mark_pending_deletion(item_id, target_time)
        except BillingGatewayError as e:
            logger.warning(
                "Could not flag subscription item %s for deletion at %s: %s",
                item_id,
                target_time.isoformat(),
                e,
            )
            self.audit.log_billing_failure(entitlement, "mark_pending_deletion", e, item_id)
            return False
        return True

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def request_activation(
        self, module_code: str | None, identity: Result[ActingUser]
    ) -> Result[ActivationOutcome]:
        """Grant access to a module.

        A module still inside its paid period after a deactivation request is
        simply switched back on. Otherwise the row is (re)created and, for
        paid accounts, a new billing line item is added to the subscription.
        """
        if not module_code:
            return Err(ErrorKind.MODULE_CODE_REQUIRED)

        authorized = self._authorize_owner(identity)
        if isinstance(authorized, Err):
            return authorized
        context = authorized.value

        if self.module_repo.get_by_code(module_code) is None:
            return Err(ErrorKind.UNKNOWN_MODULE)

        for attempt in range(1, self.write_attempts + 1):
            result = self._try_activate(module_code, context)
            if result is not None:
                return result
            logger.info(
                "Concurrent update while activating %s for account %s (attempt %d)",
                module_code,
                context.account.id,
                attempt,
            )
        return Err(ErrorKind.CONCURRENT_MODIFICATION)

    def _try_activate(
        self, module_code: str, context: _OwnerContext
    ) -> Result[ActivationOutcome] | None:
        account = context.account
        account_id = UUID(str(account.id))
        entitlement = self.entitlement_repo.get_by_account_and_module(account_id, module_code)
        now = self.clock()

        if entitlement is not None:
            state = entitlement.state(now)
            if state == EntitlementState.ACTIVE:
                return Err(ErrorKind.ALREADY_ENABLED)
            if state == EntitlementState.PENDING_DEACTIVATION:
                return self._cancel_pending_deactivation(entitlement, context)

        expected_version = int(entitlement.version) if entitlement is not None else None
        stale_item_id = (
            str(entitlement.billing_item_id)
            if entitlement is not None and entitlement.billing_item_id
            else None
        )

        billing: tuple[str, str] | None = None
        if account.is_paid:
            billable = self._billing_target(module_code, account)
            if isinstance(billable, Err):
                return billable
            billing = billable.value

        if stale_item_id is not None:
            # Leftover item from an earlier period; never leave it orphaned.
            self.billing_gateway.delete_line_item(stale_item_id)

        new_item_id: str | None = None
        if billing is not None:
            subscription_id, price_id = billing
            line_item = self.billing_gateway.create_line_item(
                subscription_id,
                price_id,
                quantity=max(int(account.billing_quantity or 1), 1),
                metadata={"module_code": module_code, "account_id": str(account_id)},
            )
            new_item_id = line_item.item_id

        if entitlement is None:
            created = self.entitlement_repo.create(
                account_id=account_id,
                module_code=module_code,
                enabled_at=now,
                billing_item_id=new_item_id,
            )
            written = created is not None
            entitlement = created
        else:
            written = self.entitlement_repo.compare_and_set(
                UUID(str(entitlement.id)),
                expected_version,  # type: ignore[arg-type]
                enabled_at=now,
                disabled_at=None,
                billing_item_id=new_item_id,
                pending_deletion=False,
                pending_deletion_at=None,
            )

        if not written or entitlement is None:
            if new_item_id is not None:
                self._discard_line_item(new_item_id)
            return None

        self.audit.log_transition(
            entitlement,
            "activated",
            changes={"billing_item_id": {"old": stale_item_id, "new": new_item_id}},
            actor_type="user",
            actor_id=context.user.user_id,
        )
        logger.info("Module %s enabled for account %s", module_code, account_id)
        return Ok(
            ActivationOutcome(
                module_code=module_code,
                enabled_at=now,
                billing_item_id=new_item_id,
                reactivated=False,
                message=(
                    "Module added to subscription"
                    if new_item_id is not None
                    else "Module enabled for trial"
                ),
            )
        )

    def _cancel_pending_deactivation(
        self, entitlement: AccountModule, context: _OwnerContext
    ) -> Result[ActivationOutcome] | None:
        expected_version = int(entitlement.version)
        item_id = str(entitlement.billing_item_id) if entitlement.billing_item_id else None
        previous_disabled_at = as_utc(entitlement.disabled_at)  # type: ignore[arg-type]

        written = self.entitlement_repo.compare_and_set(
            UUID(str(entitlement.id)),
            expected_version,
            disabled_at=None,
            pending_deletion=False,
            pending_deletion_at=None,
        )
        if not written:
            return None

        self.audit.log_transition(
            entitlement,
            "reactivated",
            changes={
                "disabled_at": {
                    "old": previous_disabled_at.isoformat() if previous_disabled_at else None,
                    "new": None,
                }
            },
            actor_type="user",
            actor_id=context.user.user_id,
        )

        if item_id is not None:
            try:
                self.billing_gateway.clear_pending_deletion(item_id)
            except BillingGatewayError as e:
                logger.warning(
                    "Could not clear deletion flag on subscription item %s: %s", item_id, e
                )
                self.audit.log_billing_failure(entitlement, "clear_pending_deletion", e, item_id)

        return Ok(
            ActivationOutcome(
                module_code=str(entitlement.module_code),
                enabled_at=as_utc(entitlement.enabled_at),  # type: ignore[arg-type]
                billing_item_id=item_id,
                reactivated=True,
                message="Module removal cancelled",
            )
        )

    def _billing_target(self, module_code: str, account: Account) -> Result[tuple[str, str]]:
        """Resolve ``(subscription_id, price_id)`` for a new module line item."""
        if not account.billing_subscription_id:
            return Err(ErrorKind.NO_ACTIVE_SUBSCRIPTION)

        subscription_id = str(account.billing_subscription_id)
        snapshot = self.billing_gateway.retrieve_subscription(subscription_id)
        if not snapshot.covers_paid_period:
            return Err(ErrorKind.SUBSCRIPTION_INACTIVE)

        price_id = self.module_prices.get(module_code, {}).get(snapshot.interval)
        if not price_id:
            return Err(ErrorKind.MODULE_PRICING_NOT_CONFIGURED)
        return Ok((subscription_id, price_id))

    def _discard_line_item(self, item_id: str) -> None:
        try:
            self.billing_gateway.delete_line_item(item_id)
        except BillingGatewayError as e:
            logger.error("Orphaned subscription item %s could not be removed: %s", item_id, e)

    # ------------------------------------------------------------------

    def _authorize_owner(self, identity: Result[ActingUser]) -> Result[_OwnerContext]:
        if isinstance(identity, Err):
            return identity
        user = identity.value
        if user.role != settings.OWNER_ROLE:
            return Err(ErrorKind.FORBIDDEN)
        if user.account_id is None:
            return Err(ErrorKind.ACCOUNT_NOT_FOUND, "No account found for user")
        account = self.account_repo.get_by_id(user.account_id)
        if account is None:
            return Err(ErrorKind.ACCOUNT_NOT_FOUND)
        if account.is_legacy_pricing:
            return Err(ErrorKind.LEGACY_ACCOUNT_IMMUTABLE)
        return Ok(_OwnerContext(user=user, account=account))
