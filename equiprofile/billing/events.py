"""
Stripe events parsed into a closed set of typed variants.

Raw payloads are only inspected here; the state machine works on the
dataclasses below. Event types with no variant become ``UnhandledEvent``.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from equiprofile.utils import helpers


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    account_id: Optional[int]
    customer_id: Optional[str]
    subscription_id: Optional[str]


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription_id: Optional[str]
    provider_status: Optional[str]
    cancel_at: Optional[datetime]


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentSucceeded:
    event_id: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


BillingEvent = Union[
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
    UnhandledEvent,
]


def _id_of(value: Any) -> Optional[str]:
    # Expanded objects arrive as dicts, collapsed ones as bare ids
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _account_id_from_metadata(obj: dict) -> Optional[int]:
    meta = obj.get("metadata") or {}
    return helpers.safe_int(meta.get("userId") or meta.get("user_id"))


def _invoice_subscription_id(obj: dict) -> Optional[str]:
    sub = obj.get("subscription")
    if not sub:
        # Newer API versions nest it under parent.subscription_details
        parent = obj.get("parent") or {}
        sub = (parent.get("subscription_details") or {}).get("subscription")
    return _id_of(sub)


def _checkout_completed(event_id: str, obj: dict) -> CheckoutCompleted:
    return CheckoutCompleted(
        event_id=event_id,
        account_id=_account_id_from_metadata(obj),
        customer_id=_id_of(obj.get("customer")),
        subscription_id=_id_of(obj.get("subscription")),
    )


def _subscription_updated(event_id: str, obj: dict) -> SubscriptionUpdated:
    return SubscriptionUpdated(
        event_id=event_id,
        subscription_id=obj.get("id"),
        provider_status=obj.get("status"),
        cancel_at=helpers.from_unix(obj.get("cancel_at")),
    )


def _subscription_deleted(event_id: str, obj: dict) -> SubscriptionDeleted:
    return SubscriptionDeleted(event_id=event_id, subscription_id=obj.get("id"))


def _invoice_succeeded(event_id: str, obj: dict) -> InvoicePaymentSucceeded:
    return InvoicePaymentSucceeded(event_id=event_id, subscription_id=_invoice_subscription_id(obj))


def _invoice_failed(event_id: str, obj: dict) -> InvoicePaymentFailed:
    return InvoicePaymentFailed(event_id=event_id, subscription_id=_invoice_subscription_id(obj))


_PARSERS: Dict[str, Callable[[str, dict], BillingEvent]] = {
    "checkout.session.completed": _checkout_completed,
    "customer.subscription.updated": _subscription_updated,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _invoice_succeeded,
    "invoice.payment_failed": _invoice_failed,
}

HANDLED_EVENT_TYPES = tuple(_PARSERS)

VARIANTS = (
    CheckoutCompleted,
    SubscriptionUpdated,
    SubscriptionDeleted,
    InvoicePaymentSucceeded,
    InvoicePaymentFailed,
)


def parse_event(event: dict) -> BillingEvent:
    event_id = event.get("id") or ""
    event_type = event.get("type") or ""
    obj = helpers.as_dict((event.get("data") or {}).get("object"))
    parser = _PARSERS.get(event_type)
    if parser is None:
        return UnhandledEvent(event_id=event_id, event_type=event_type)
    return parser(event_id, obj)
