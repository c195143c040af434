"""Billing gateway abstraction layer.

The gateway is the only place that talks to the subscription billing provider.
Load-bearing callers let ``BillingGatewayError`` propagate; best-effort callers
catch it and record the failure.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from modgate.core.config import settings

logger = logging.getLogger(__name__)

# Subscription statuses that still cover an already-paid billing period.
PAID_PERIOD_STATUSES = frozenset({"active", "trialing"})


class BillingGatewayError(Exception):
    """The billing provider could not complete a request."""


class WebhookSignatureError(Exception):
    """A webhook payload failed signature verification."""


@dataclass
class LineItem:
    """A recurring line item on a provider subscription."""

    item_id: str
    subscription_id: str
    price_id: str
    quantity: int
    # Set on items that bill an optional module.
    module_code: str | None = None


@dataclass
class SubscriptionSnapshot:
    """Subscription state as reported by the provider."""

    subscription_id: str
    status: str
    current_period_start: datetime
    current_period_end: datetime
    interval: str = "month"
    customer_id: str | None = None
    is_legacy_pricing: bool = False
    line_items: list[LineItem] = field(default_factory=list)

    @property
    def covers_paid_period(self) -> bool:
        return self.status in PAID_PERIOD_STATUSES


class BillingGateway(ABC):
    """Abstract base class for subscription billing providers."""

    @abstractmethod
    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Return the current status and billing period of a subscription."""
        pass  # pragma: no cover

    @abstractmethod
    def create_line_item(
        self,
        subscription_id: str,
        price_id: str,
        quantity: int,
        metadata: dict[str, str] | None = None,
    ) -> LineItem:
        """Add a recurring line item to a subscription."""
        pass  # pragma: no cover

    @abstractmethod
    def mark_pending_deletion(self, item_id: str, target_time: datetime) -> None:
        """Flag a line item for removal at ``target_time``."""
        pass  # pragma: no cover

    @abstractmethod
    def clear_pending_deletion(self, item_id: str) -> None:
        """Remove a previously set pending-deletion flag."""
        pass  # pragma: no cover

    @abstractmethod
    def delete_line_item(self, item_id: str) -> None:
        """Delete a line item. Deleting an item that no longer exists succeeds."""
        pass  # pragma: no cover

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook payload and return the decoded event."""
        pass  # pragma: no cover


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _from_timestamp(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=UTC)


def _object_id(value: Any) -> str | None:
    # Expandable fields arrive either as an id or as the expanded object.
    if value is None:
        return None
    if isinstance(value, str):
        return value
    object_id = _field(value, "id")
    return str(object_id) if object_id else None


def _line_item(item: Any, subscription_id: str) -> LineItem:
    price = _field(item, "price")
    module_code = _field(_field(item, "metadata"), "module_code") or _field(
        _field(price, "metadata"), "module_code"
    )
    return LineItem(
        item_id=str(_field(item, "id")),
        subscription_id=subscription_id,
        price_id=str(_field(price, "id") or ""),
        quantity=int(_field(item, "quantity") or 1),
        module_code=str(module_code) if module_code else None,
    )


class StripeBillingGateway(BillingGateway):
    """Stripe implementation backed by subscription items."""

    def __init__(self, api_key: str | None = None, webhook_secret: str | None = None):
        self.api_key = api_key or settings.stripe_api_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self._stripe: Any = None

    @property
    def stripe(self) -> Any:
        """Lazy-load stripe module."""
        if self._stripe is None:
            try:
                import stripe

                stripe.api_key = self.api_key
                self._stripe = stripe
            except ImportError as e:
                raise ImportError("stripe package not installed. Run: pip install stripe") from e
        return self._stripe

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        try:
            subscription = self.stripe.Subscription.retrieve(subscription_id)
        except self.stripe.StripeError as e:
            raise BillingGatewayError(
                f"Failed to retrieve subscription {subscription_id}: {e}"
            ) from e

        items = _field(_field(subscription, "items"), "data") or []
        first_item = items[0] if items else None

        # Newer API versions report the billing period per subscription item.
        period_start = _field(subscription, "current_period_start") or _field(
            first_item, "current_period_start"
        )
        period_end = _field(subscription, "current_period_end") or _field(
            first_item, "current_period_end"
        )
        if period_start is None or period_end is None:
            raise BillingGatewayError(
                f"Subscription {subscription_id} has no current billing period"
            )

        recurring = _field(_field(first_item, "price"), "recurring")
        interval = _field(recurring, "interval") or "month"
        metadata = _field(subscription, "metadata")

        return SubscriptionSnapshot(
            subscription_id=subscription_id,
            status=str(_field(subscription, "status")),
            current_period_start=_from_timestamp(period_start),
            current_period_end=_from_timestamp(period_end),
            interval=str(interval),
            customer_id=_object_id(_field(subscription, "customer")),
            is_legacy_pricing=_field(metadata, "is_legacy_pricing") == "true",
            line_items=[_line_item(item, subscription_id) for item in items],
        )

    def create_line_item(
        self,
        subscription_id: str,
        price_id: str,
        quantity: int,
        metadata: dict[str, str] | None = None,
    ) -> LineItem:
        try:
            item = self.stripe.SubscriptionItem.create(
                subscription=subscription_id,
                price=price_id,
                quantity=quantity,
                proration_behavior="create_prorations",
                metadata=metadata or {},
            )
        except self.stripe.StripeError as e:
            raise BillingGatewayError(
                f"Failed to add price {price_id} to subscription {subscription_id}: {e}"
            ) from e
        return LineItem(
            item_id=str(_field(item, "id")),
            subscription_id=subscription_id,
            price_id=price_id,
            quantity=quantity,
        )

    def mark_pending_deletion(self, item_id: str, target_time: datetime) -> None:
        self._update_metadata(
            item_id,
            {"pending_deletion": "true", "delete_at": target_time.isoformat()},
        )

    def clear_pending_deletion(self, item_id: str) -> None:
        # Stripe unsets metadata keys that are sent with an empty value.
        self._update_metadata(item_id, {"pending_deletion": "", "delete_at": ""})

    def delete_line_item(self, item_id: str) -> None:
        try:
            self.stripe.SubscriptionItem.delete(item_id, proration_behavior="none")
        except self.stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                logger.info("Subscription item %s already deleted", item_id)
                return
            raise BillingGatewayError(f"Failed to delete subscription item {item_id}: {e}") from e
        except self.stripe.StripeError as e:
            raise BillingGatewayError(f"Failed to delete subscription item {item_id}: {e}") from e

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        try:
            event = self.stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, self.stripe.SignatureVerificationError) as e:
            raise WebhookSignatureError(str(e)) from e
        if hasattr(event, "to_dict"):
            return dict(event.to_dict())
        return dict(event)

    def _update_metadata(self, item_id: str, metadata: dict[str, str]) -> None:
        try:
            self.stripe.SubscriptionItem.modify(item_id, metadata=metadata)
        except self.stripe.StripeError as e:
            raise BillingGatewayError(f"Failed to update subscription item {item_id}: {e}") from e


@lru_cache
def get_billing_gateway() -> BillingGateway:
    """Process-wide billing gateway, resolved once and overridable in tests."""
    return StripeBillingGateway()
