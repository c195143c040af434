"""Repository for AccountModule entitlement rows.

Every mutation of an existing row goes through ``compare_and_set``, which only
applies when the row still carries the version the caller read. A ``False``
return means another writer got there first and the caller must re-read.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modgate.models.account import Account
from modgate.models.account_module import AccountModule
from modgate.models.shared import generate_uuid


class AccountModuleRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, entitlement_id: UUID) -> AccountModule | None:
        return self.db.query(AccountModule).filter(AccountModule.id == entitlement_id).first()

    def get_by_account_and_module(
        self, account_id: UUID, module_code: str
    ) -> AccountModule | None:
        return (
            self.db.query(AccountModule)
            .filter(
                AccountModule.account_id == account_id,
                AccountModule.module_code == module_code,
            )
            .first()
        )

    def get_by_account(self, account_id: UUID) -> list[AccountModule]:
        return (
            self.db.query(AccountModule)
            .filter(AccountModule.account_id == account_id)
            .order_by(AccountModule.module_code)
            .all()
        )

    def get_pending_deletions_for_subscription(
        self, subscription_id: str
    ) -> list[AccountModule]:
        return (
            self.db.query(AccountModule)
            .join(Account, Account.id == AccountModule.account_id)
            .filter(
                Account.billing_subscription_id == subscription_id,
                AccountModule.pending_deletion.is_(True),
            )
            .order_by(AccountModule.module_code)
            .all()
        )

    def create(
        self,
        *,
        account_id: UUID,
        module_code: str,
        enabled_at: datetime,
        billing_item_id: str | None = None,
    ) -> AccountModule | None:
        """Insert a new entitlement row.

        Returns None when a row for the same account and module was inserted
        concurrently.
        """
        entitlement = AccountModule(
            id=generate_uuid(),
            account_id=account_id,
            module_code=module_code,
            enabled_at=enabled_at,
            billing_item_id=billing_item_id,
            pending_deletion=False,
            version=1,
        )
        self.db.add(entitlement)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            return None
        self.db.refresh(entitlement)
        return entitlement

    def compare_and_set(
        self,
        entitlement_id: UUID,
        expected_version: int,
        **values: Any,
    ) -> bool:
        """Apply ``values`` only if the row is still at ``expected_version``."""
        result = self.db.execute(
            update(AccountModule)
            .where(
                AccountModule.id == entitlement_id,
                AccountModule.version == expected_version,
            )
            .values(version=expected_version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return bool(result.rowcount == 1)  # type: ignore[attr-defined]
