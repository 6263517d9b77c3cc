"""
Billing Event Domain Models

Typed view over Stripe webhook events. Each variant carries only the
fields the reconciler reads; unknown event types collapse to IgnoredEvent.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict


SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

DEFAULT_SUBJECT_KEYS = ("userId", "user_id", "clerk_user_id")


class _EventBase(BaseModel):
    event_id: str
    event_type: str

    model_config = ConfigDict(frozen=True)


class SubscriptionChanged(_EventBase):
    """customer.subscription.created / customer.subscription.updated"""
    kind: Literal["subscription_changed"] = "subscription_changed"
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    subject: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[datetime] = None


class SubscriptionDeleted(_EventBase):
    """customer.subscription.deleted"""
    kind: Literal["subscription_deleted"] = "subscription_deleted"
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    subject: Optional[str] = None


class InvoicePaymentSucceeded(_EventBase):
    kind: Literal["invoice_payment_succeeded"] = "invoice_payment_succeeded"
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None


class InvoicePaymentFailed(_EventBase):
    kind: Literal["invoice_payment_failed"] = "invoice_payment_failed"
    invoice_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    attempt_count: int = 0


class IgnoredEvent(_EventBase):
    kind: Literal["ignored"] = "ignored"


BillingEvent = Union[
    SubscriptionChanged,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    IgnoredEvent,
]


# =============================================================================
# Parsing
# =============================================================================

def _from_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: dict) -> dict:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _extract_subject(metadata: Optional[dict], keys: Sequence[str]) -> Optional[str]:
    metadata = metadata or {}
    for key in keys:
        value = metadata.get(key)
        if value:
            return str(value)
    return None


def _reference(value: Any) -> Optional[str]:
    """Stripe fields may be an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def parse_billing_event(
    event: dict,
    subject_keys: Sequence[str] = DEFAULT_SUBJECT_KEYS,
) -> BillingEvent:
    """
    Build the typed event variant from a verified Stripe event payload.

    Args:
        event: Decoded Stripe event JSON
        subject_keys: Metadata keys that may carry the identity subject

    Returns:
        One of the BillingEvent variants
    """
    event_id = event.get("id") or ""
    event_type = event.get("type") or ""
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
        item = _first_item(obj)
        # Newer API versions moved the period end onto the subscription item
        period_end = obj.get("current_period_end") or item.get("current_period_end")
        return SubscriptionChanged(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id"),
            customer_id=_reference(obj.get("customer")),
            subject=_extract_subject(obj.get("metadata"), subject_keys),
            status=obj.get("status"),
            price_id=_reference(item.get("price")),
            current_period_end=_from_timestamp(period_end),
        )

    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionDeleted(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id"),
            customer_id=_reference(obj.get("customer")),
            subject=_extract_subject(obj.get("metadata"), subject_keys),
        )

    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        return InvoicePaymentSucceeded(
            event_id=event_id,
            event_type=event_type,
            invoice_id=obj.get("id"),
            customer_id=_reference(obj.get("customer")),
            subscription_id=_reference(obj.get("subscription")),
        )

    if event_type == INVOICE_PAYMENT_FAILED:
        return InvoicePaymentFailed(
            event_id=event_id,
            event_type=event_type,
            invoice_id=obj.get("id"),
            customer_id=_reference(obj.get("customer")),
            subscription_id=_reference(obj.get("subscription")),
            attempt_count=obj.get("attempt_count") or 0,
        )

    return IgnoredEvent(event_id=event_id, event_type=event_type)
