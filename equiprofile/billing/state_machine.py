"""
Subscription status transitions driven by Stripe events.

    trial ──checkout──▶ active ◀──invoice paid── overdue
                          │  ▲                      ▲
        sub deleted/      │  └── checkout / sub ────┤ invoice failed,
        canceled/unpaid   ▼      updated (active)   │ sub past_due
                      cancelled                  expired (incomplete_expired)

Every handler resolves the account first; an event for an unknown account is
a no-op. Account writes go through ``accounts.update_account`` (versioned).
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional, Type

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from equiprofile.billing import events as ev
from equiprofile.extensions import db
from equiprofile.models.email_log import EmailLog
from equiprofile.models.user import (
    User,
    PLAN_MONTHLY,
    PLAN_YEARLY,
    STATUS_ACTIVE,
    STATUS_CANCELLED,
    STATUS_EXPIRED,
    STATUS_OVERDUE,
)
from equiprofile.services import accounts
from equiprofile.services import email as email_service
from equiprofile.services.billing import StripeGateway, subscription_interval
from equiprofile.utils import helpers

_PROVIDER_STATUS_MAP = {
    "past_due": STATUS_OVERDUE,
    "canceled": STATUS_CANCELLED,
    "unpaid": STATUS_CANCELLED,
    "incomplete_expired": STATUS_EXPIRED,
}


@dataclass
class TransitionResult:
    user: Optional[User] = None
    notification: Optional[EmailLog] = None

    @property
    def matched(self) -> bool:
        return self.user is not None


def map_provider_status(provider_status: Optional[str]) -> str:
    return _PROVIDER_STATUS_MAP.get(provider_status or "", STATUS_ACTIVE)


def plan_for_interval(interval: Optional[str]) -> str:
    return PLAN_MONTHLY if interval == "month" else PLAN_YEARLY


def _log(event: str, **fields):
    current_app.logger.info(json.dumps({"event": event, **fields}))


def _account_for_subscription(event_id: str, subscription_id: Optional[str]) -> Optional[User]:
    if not subscription_id:
        _log("stripe_transition_skipped", event_id=event_id, reason="no_subscription")
        return None
    user = accounts.get_by_stripe_subscription(subscription_id)
    if user is None:
        _log("stripe_transition_skipped", event_id=event_id, reason="no_account", subscription_id=subscription_id)
    return user


def _on_checkout_completed(event: ev.CheckoutCompleted, gateway: StripeGateway, now: datetime) -> TransitionResult:
    if not (event.customer_id and event.subscription_id):
        _log("stripe_transition_skipped", event_id=event.event_id, reason="checkout_without_subscription")
        return TransitionResult()

    user = db.session.get(User, event.account_id) if event.account_id else None
    if user is None:
        user = accounts.get_by_stripe_subscription(event.subscription_id)
    if user is None:
        _log("stripe_transition_skipped", event_id=event.event_id, reason="no_account",
             subscription_id=event.subscription_id)
        return TransitionResult()

    subscription = gateway.retrieve_subscription(event.subscription_id)
    plan = plan_for_interval(subscription_interval(subscription))

    user = accounts.update_account(user.id, {
        "stripe_customer_id": event.customer_id,
        "stripe_subscription_id": event.subscription_id,
        "subscription_status": STATUS_ACTIVE,
        "subscription_plan": plan,
        "last_payment_at": now,
    })
    _log("subscription_activated", user_id=user.id, plan=plan)

    # Best-effort: the activation is already committed
    notification = None
    try:
        notification = email_service.queue_payment_confirmation(user, plan)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("payment_confirmation_enqueue_failed")
    return TransitionResult(user=user, notification=notification)


def _on_subscription_updated(event: ev.SubscriptionUpdated, gateway: StripeGateway, now: datetime) -> TransitionResult:
    user = _account_for_subscription(event.event_id, event.subscription_id)
    if user is None:
        return TransitionResult()
    status = map_provider_status(event.provider_status)
    user = accounts.update_account(user.id, {
        "subscription_status": status,
        "subscription_ends_at": event.cancel_at,
    })
    _log("subscription_updated", user_id=user.id, status=status, provider_status=event.provider_status)
    return TransitionResult(user=user)


def _on_subscription_deleted(event: ev.SubscriptionDeleted, gateway: StripeGateway, now: datetime) -> TransitionResult:
    user = _account_for_subscription(event.event_id, event.subscription_id)
    if user is None:
        return TransitionResult()
    user = accounts.update_account(user.id, {
        "subscription_status": STATUS_CANCELLED,
        "subscription_ends_at": now,
    })
    _log("subscription_cancelled", user_id=user.id)
    return TransitionResult(user=user)


def _on_invoice_paid(event: ev.InvoicePaymentSucceeded, gateway: StripeGateway, now: datetime) -> TransitionResult:
    user = _account_for_subscription(event.event_id, event.subscription_id)
    if user is None:
        return TransitionResult()
    user = accounts.update_account(user.id, {
        "subscription_status": STATUS_ACTIVE,
        "last_payment_at": now,
    })
    _log("payment_succeeded", user_id=user.id)
    return TransitionResult(user=user)


def _on_invoice_failed(event: ev.InvoicePaymentFailed, gateway: StripeGateway, now: datetime) -> TransitionResult:
    user = _account_for_subscription(event.event_id, event.subscription_id)
    if user is None:
        return TransitionResult()
    user = accounts.update_account(user.id, {"subscription_status": STATUS_OVERDUE})
    _log("payment_failed", user_id=user.id)
    return TransitionResult(user=user)


def _on_unhandled(event: ev.UnhandledEvent, gateway: StripeGateway, now: datetime) -> TransitionResult:
    _log("stripe_event_ignored", event_id=event.event_id, type=event.event_type)
    return TransitionResult()


TRANSITIONS: Dict[Type, Callable[..., TransitionResult]] = {
    ev.CheckoutCompleted: _on_checkout_completed,
    ev.SubscriptionUpdated: _on_subscription_updated,
    ev.SubscriptionDeleted: _on_subscription_deleted,
    ev.InvoicePaymentSucceeded: _on_invoice_paid,
    ev.InvoicePaymentFailed: _on_invoice_failed,
    ev.UnhandledEvent: _on_unhandled,
}


def apply(event: ev.BillingEvent, *, gateway: StripeGateway, now: Optional[datetime] = None) -> TransitionResult:
    # A variant without a transition is a programming error, not an ignorable event
    handler = TRANSITIONS[type(event)]
    return handler(event, gateway, now or helpers.utcnow())
