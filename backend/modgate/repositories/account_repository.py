from uuid import UUID

from sqlalchemy.orm import Session

from modgate.models.account import Account


class AccountRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, account_id: UUID) -> Account | None:
        return self.db.query(Account).filter(Account.id == account_id).first()

    def get_by_billing_subscription_id(self, subscription_id: str) -> list[Account]:
        return (
            self.db.query(Account)
            .filter(Account.billing_subscription_id == subscription_id)
            .all()
        )

    def get_by_billing_customer_id(self, customer_id: str) -> Account | None:
        return self.db.query(Account).filter(Account.billing_customer_id == customer_id).first()

    def link_subscription(
        self,
        account: Account,
        *,
        subscription_id: str,
        customer_id: str | None,
        is_paid: bool,
    ) -> Account:
        """Bind the account to its billing subscription."""
        account.billing_subscription_id = subscription_id  # type: ignore[assignment]
        if customer_id:
            account.billing_customer_id = customer_id  # type: ignore[assignment]
        account.is_paid = is_paid  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(account)
        return account

    def mark_legacy_pricing(self, account: Account) -> Account:
        account.is_legacy_pricing = True  # type: ignore[assignment]
        self.db.commit()
        self.db.refresh(account)
        return account
