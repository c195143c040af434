import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from modgate.core.database import get_db
from modgate.repositories.webhook_event_repository import WebhookEventRepository
from modgate.schemas.billing import WebhookAck
from modgate.services.billing_gateway import (
    BillingGateway,
    WebhookSignatureError,
    get_billing_gateway,
)
from modgate.services.reconciliation import ReconciliationWorker
from modgate.services.subscription_sync import SubscriptionSync

logger = logging.getLogger(__name__)

router = APIRouter()

# Invoice events that mean a subscription has entered a new paid period.
RENEWAL_EVENT_TYPES = frozenset({"invoice.payment_succeeded", "invoice.paid"})

# Events that bring a new subscription, and the modules bought with it.
SUBSCRIPTION_START_EVENT_TYPES = frozenset(
    {"checkout.session.completed", "customer.subscription.created"}
)


def subscription_id_from_invoice(invoice: dict[str, Any]) -> str | None:
    """Extract the subscription id from a Stripe invoice payload.

    Newer API versions nest it under ``parent.subscription_details``.
    """
    subscription = invoice.get("subscription")
    if subscription is None:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        subscription = subscription.get("id")
    return str(subscription) if subscription else None


def _id_of(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("id")
    return str(value) if value else None


def subscription_start_target(
    event_type: str, obj: dict[str, Any]
) -> tuple[str, str | None, str | None] | None:
    """Return ``(subscription_id, customer_id, customer_email)`` for a new subscription.

    None for checkouts without a subscription and for subscriptions that
    were already canceled or ended when the event was sent.
    """
    if event_type == "checkout.session.completed":
        subscription_id = _id_of(obj.get("subscription"))
        if subscription_id is None:
            return None
        email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
        return subscription_id, _id_of(obj.get("customer")), email

    if obj.get("ended_at") or obj.get("canceled_at"):
        return None
    subscription_id = _id_of(obj.get("id"))
    if subscription_id is None:
        return None
    return subscription_id, _id_of(obj.get("customer")), None


@router.post("/billing", response_model=WebhookAck, summary="Billing provider webhook")
async def handle_billing_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    billing_gateway: BillingGateway = Depends(get_billing_gateway),
) -> WebhookAck | JSONResponse:
    """Handle billing provider webhooks.

    Completed checkouts and new subscriptions sync the modules bought with
    them. Renewal invoices trigger reconciliation of deferred module removals
    for the subscription. Each event id is handled once; an event whose handling
    fails is not recorded, so the provider's redelivery retries it.
    """
    payload = await request.body()
    try:
        event = billing_gateway.construct_event(payload, stripe_signature or "")
    except WebhookSignatureError as e:
        logger.warning("Rejected billing webhook: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid signature"})

    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    if not event_id:
        return JSONResponse(status_code=400, content={"error": "Missing event id"})

    events = WebhookEventRepository(db)
    if events.is_processed(event_id):
        logger.info("Billing event %s already processed", event_id)
        return WebhookAck(status="duplicate")

    obj = (event.get("data") or {}).get("object") or {}

    if event_type in SUBSCRIPTION_START_EVENT_TYPES:
        target = subscription_start_target(event_type, obj)
        if target is None:
            events.mark_processed(event_id=event_id, event_type=event_type)
            return WebhookAck(status="ignored", reason="no active subscription in event")
        subscription_id, customer_id, customer_email = target
        sync = SubscriptionSync(db, billing_gateway).sync(
            subscription_id, customer_id=customer_id, customer_email=customer_email
        )
        events.mark_processed(
            event_id=event_id, event_type=event_type, subscription_id=subscription_id
        )
        if sync.account_id is None:
            return WebhookAck(status="ignored", reason="no account for subscription")
        return WebhookAck(status="processed", synced=len(sync.synced))

    if event_type not in RENEWAL_EVENT_TYPES:
        events.mark_processed(event_id=event_id, event_type=event_type)
        return WebhookAck(status="ignored", reason=f"unhandled event type {event_type}")

    subscription_id = subscription_id_from_invoice(obj)
    if subscription_id is None:
        events.mark_processed(event_id=event_id, event_type=event_type)
        return WebhookAck(status="ignored", reason="invoice has no subscription")

    summary = ReconciliationWorker(db, billing_gateway).reconcile(subscription_id)
    events.mark_processed(
        event_id=event_id, event_type=event_type, subscription_id=subscription_id
    )
    return WebhookAck(status="processed", removed=summary.removed, failed=summary.failed)
