"""Shared test fixtures for all test modules."""

import contextlib
import dataclasses
import json
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from modgate.core import database as db_module
from modgate.core.auth import ActingUser
from modgate.core.config import settings
from modgate.core.database import Base, get_db
from modgate.core.result import Ok
from modgate.main import app
from modgate.models.account import Account
from modgate.models.account_module import AccountModule
from modgate.models.module import Module
from modgate.models.shared import generate_uuid
from modgate.models.user import User, UserRole
from modgate.services.billing_gateway import (
    BillingGateway,
    BillingGatewayError,
    LineItem,
    SubscriptionSnapshot,
    WebhookSignatureError,
    get_billing_gateway,
)

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)

CATALOG = [
    ("feedback", "Feedback", 0),
    ("nps", "NPS", 1),
    ("analytics", "Analytics", 2),
]

WEBHOOK_SIGNATURE = "t=1,v1=test-signature"

PRICES = {
    "nps": {"month": "price_nps_month", "year": "price_nps_year"},
    "analytics": {"month": "price_analytics_month", "year": "price_analytics_year"},
}


def _seed_module_catalog(session: Session) -> None:
    for code, name, order in CATALOG:
        if session.query(Module).filter(Module.code == code).first() is None:
            session.add(Module(code=code, name=name, display_order=order))
    session.commit()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    session = _TestSessionLocal()
    try:
        _seed_module_catalog(session)
    finally:
        session.close()

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


class FakeBillingGateway(BillingGateway):
    """In-memory billing provider that records every call it receives.

    Calls are recorded before any configured failure is raised, so tests can
    assert on attempted as well as successful calls.
    """

    def __init__(self) -> None:
        self.subscriptions: dict[str, SubscriptionSnapshot] = {}
        self.items: dict[str, LineItem] = {}
        self.pending: dict[str, datetime] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.failures: dict[str, Exception] = {}
        self._next_item = 0

    def add_subscription(
        self,
        subscription_id: str,
        status: str = "active",
        period_start: datetime | None = None,
        period_end: datetime | None = None,
        interval: str = "month",
        customer_id: str | None = None,
        is_legacy_pricing: bool = False,
    ) -> SubscriptionSnapshot:
        period_start = period_start or datetime(2024, 5, 1, tzinfo=UTC)
        snapshot = SubscriptionSnapshot(
            subscription_id=subscription_id,
            status=status,
            current_period_start=period_start,
            current_period_end=period_end or period_start + timedelta(days=31),
            interval=interval,
            customer_id=customer_id,
            is_legacy_pricing=is_legacy_pricing,
        )
        self.subscriptions[subscription_id] = snapshot
        return snapshot

    def add_item(
        self,
        item_id: str,
        subscription_id: str,
        price_id: str = "price_x",
        module_code: str | None = None,
    ) -> None:
        self.items[item_id] = LineItem(
            item_id=item_id,
            subscription_id=subscription_id,
            price_id=price_id,
            quantity=1,
            module_code=module_code,
        )

    def calls_to(self, operation: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == operation]

    def _record(self, operation: str, *args: Any) -> None:
        self.calls.append((operation, *args))
        if operation in self.failures:
            raise self.failures[operation]

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        self._record("retrieve_subscription", subscription_id)
        if subscription_id not in self.subscriptions:
            raise BillingGatewayError(f"No such subscription: {subscription_id}")
        items = [item for item in self.items.values() if item.subscription_id == subscription_id]
        return dataclasses.replace(self.subscriptions[subscription_id], line_items=items)

    def create_line_item(
        self,
        subscription_id: str,
        price_id: str,
        quantity: int,
        metadata: dict[str, str] | None = None,
    ) -> LineItem:
        self._record("create_line_item", subscription_id, price_id, quantity, metadata)
        self._next_item += 1
        item = LineItem(
            item_id=f"si_fake_{self._next_item}",
            subscription_id=subscription_id,
            price_id=price_id,
            quantity=quantity,
            module_code=(metadata or {}).get("module_code"),
        )
        self.items[item.item_id] = item
        return item

    def mark_pending_deletion(self, item_id: str, target_time: datetime) -> None:
        self._record("mark_pending_deletion", item_id, target_time)
        self.pending[item_id] = target_time

    def clear_pending_deletion(self, item_id: str) -> None:
        self._record("clear_pending_deletion", item_id)
        self.pending.pop(item_id, None)

    def delete_line_item(self, item_id: str) -> None:
        self._record("delete_line_item", item_id)
        self.items.pop(item_id, None)
        self.pending.pop(item_id, None)

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        self._record("construct_event", signature)
        if signature != WEBHOOK_SIGNATURE:
            raise WebhookSignatureError("No signatures found matching the expected signature")
        return dict(json.loads(payload))


@pytest.fixture
def billing_gateway():
    return FakeBillingGateway()


@pytest.fixture
def client(billing_gateway):
    app.dependency_overrides[get_billing_gateway] = lambda: billing_gateway
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_billing_gateway, None)


@pytest.fixture
def make_account(db_session):
    def _make(
        *,
        is_paid: bool = False,
        subscription_id: str | None = None,
        is_legacy_pricing: bool = False,
        billing_quantity: int = 1,
    ) -> Account:
        account = Account(
            id=generate_uuid(),
            name="Harbour Bistro",
            billing_customer_id="cus_test" if is_paid else None,
            billing_subscription_id=subscription_id,
            is_paid=is_paid,
            is_legacy_pricing=is_legacy_pricing,
            billing_quantity=billing_quantity,
        )
        db_session.add(account)
        db_session.commit()
        db_session.refresh(account)
        return account

    return _make


@pytest.fixture
def make_user(db_session):
    def _make(account: Account | None, role: str = UserRole.MASTER.value) -> User:
        user_id = generate_uuid()
        user = User(
            id=user_id,
            email=f"{user_id.hex[:12]}@example.com",
            role=role,
            account_id=account.id if account is not None else None,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def enable_module(db_session):
    def _enable(
        account: Account,
        module_code: str,
        *,
        billing_item_id: str | None = None,
        enabled_at: datetime | None = None,
        disabled_at: datetime | None = None,
        pending_deletion: bool = False,
        pending_deletion_at: datetime | None = None,
    ) -> AccountModule:
        entitlement = AccountModule(
            id=generate_uuid(),
            account_id=account.id,
            module_code=module_code,
            enabled_at=enabled_at or datetime(2024, 1, 10, tzinfo=UTC),
            disabled_at=disabled_at,
            billing_item_id=billing_item_id,
            pending_deletion=pending_deletion,
            pending_deletion_at=pending_deletion_at,
            version=1,
        )
        db_session.add(entitlement)
        db_session.commit()
        db_session.refresh(entitlement)
        return entitlement

    return _enable


def acting(user: User) -> Ok[ActingUser]:
    """Resolved identity for ``user`` as the request handlers would build it."""
    return Ok(
        ActingUser(
            user_id=user.id,  # type: ignore[arg-type]
            role=str(user.role),
            account_id=user.account_id,  # type: ignore[arg-type]
        )
    )


def bearer_token(user_id: Any, *, expires_in: timedelta = timedelta(hours=1), **claims: Any) -> str:
    payload = {
        "sub": str(user_id),
        "aud": settings.AUTH_JWT_AUDIENCE,
        "exp": datetime.now(UTC) + expires_in,
        **claims,
    }
    return jwt.encode(payload, settings.AUTH_JWT_SECRET, algorithm="HS256")


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {bearer_token(user.id)}"}
