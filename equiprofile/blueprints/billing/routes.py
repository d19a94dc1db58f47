import json

from flask import request, current_app, abort
from flask_login import login_required, current_user

from equiprofile.billing.access import access_summary
from equiprofile.errors import ApiError, BillingDisabled, BillingUnavailable
from equiprofile.extensions import limiter
from equiprofile.models.user import PLAN_CHOICES, PLAN_MONTHLY, PLAN_YEARLY, STATUS_ACTIVE
from equiprofile.services import accounts
from equiprofile.services.billing import absolute_url, get_gateway
from equiprofile.utils import helpers
from . import bp

_PRICE_KEYS = {
    PLAN_MONTHLY: "STRIPE_PRICE_MONTHLY",
    PLAN_YEARLY: "STRIPE_PRICE_YEARLY",
}


def _require_billing():
    if not current_app.config.get("BILLING_ENABLED"):
        raise BillingDisabled()


def _period_end(subscription: dict):
    """When a cancel-at-period-end subscription stops; newer API versions keep it per item."""
    if subscription.get("cancel_at"):
        return helpers.from_unix(subscription["cancel_at"])
    if subscription.get("current_period_end"):
        return helpers.from_unix(subscription["current_period_end"])
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return helpers.from_unix(items[0].get("current_period_end"))
    return None


@bp.get("/pricing")
def pricing():
    cfg = current_app.config
    currency = cfg.get("PRICE_CURRENCY", "gbp")
    return {
        "enabled": bool(cfg.get("BILLING_ENABLED")),
        "monthly": {"amount": cfg.get("PRICE_MONTHLY_AMOUNT"), "currency": currency, "interval": "month"},
        "yearly": {"amount": cfg.get("PRICE_YEARLY_AMOUNT"), "currency": currency, "interval": "year"},
    }


@bp.get("/status")
@login_required
def status():
    return access_summary(current_user)


@bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    _require_billing()

    data = request.get_json(silent=True) or request.form.to_dict()
    plan = (data.get("plan") or "").strip().lower()
    if plan not in PLAN_CHOICES:
        raise ApiError("plan must be 'monthly' or 'yearly'", error="invalid_plan")

    # Block duplicate purchases if already active
    if current_user.subscription_status == STATUS_ACTIVE:
        abort(409, description="Subscription already active")

    price_id = current_app.config.get(_PRICE_KEYS[plan])
    if not price_id:
        current_app.logger.error(json.dumps({"event": "billing_price_missing", "plan": plan}))
        raise BillingUnavailable()

    session = get_gateway().create_checkout_session(
        account_id=current_user.id,
        email=current_user.email,
        price_id=price_id,
        customer_id=current_user.stripe_customer_id,
        success_url=absolute_url("/dashboard?success=true"),
        cancel_url=absolute_url("/pricing?cancelled=true"),
    )
    current_app.logger.info(json.dumps({
        "event": "checkout_session_created",
        "user_id": current_user.id,
        "plan": plan,
        "session_id": session["id"],
    }))
    return {"url": session["url"], "sessionId": session["id"]}


@bp.post("/portal")
@limiter.limit("10/minute")
@login_required
def portal():
    _require_billing()
    if not current_user.stripe_customer_id:
        raise ApiError("No active subscription found", error="no_active_subscription")

    url = get_gateway().create_portal_session(
        customer_id=current_user.stripe_customer_id,
        return_url=absolute_url("/dashboard"),
    )
    return {"url": url}


def _set_cancel_at_period_end(cancel: bool):
    _require_billing()
    if not current_user.stripe_subscription_id:
        raise ApiError("No active subscription found", error="no_active_subscription")

    subscription = get_gateway().set_cancel_at_period_end(current_user.stripe_subscription_id, cancel)
    ends_at = _period_end(subscription) if cancel else None
    user = accounts.update_account(current_user.id, {"subscription_ends_at": ends_at})
    current_app.logger.info(json.dumps({
        "event": "subscription_cancel_requested" if cancel else "subscription_reactivated",
        "user_id": user.id,
        "ends_at": helpers.isoformat(ends_at),
    }))
    return {"success": True, "subscriptionEndsAt": helpers.isoformat(ends_at)}


@bp.post("/cancel")
@limiter.limit("10/minute")
@login_required
def cancel():
    return _set_cancel_at_period_end(True)


@bp.post("/reactivate")
@limiter.limit("10/minute")
@login_required
def reactivate():
    return _set_cancel_at_period_end(False)
