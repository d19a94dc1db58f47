import hashlib
import json
from typing import Any, Dict, Optional
from urllib.parse import urljoin

import stripe
from flask import current_app
from stripe import StripeClient

from equiprofile.errors import BillingUnavailable
from equiprofile.utils import helpers


def absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def subscription_interval(subscription: dict) -> Optional[str]:
    """Recurring interval ("month", "year", ...) of the first subscription item."""
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return (price.get("recurring") or {}).get("interval")


class StripeGateway:
    """
    Thin wrapper over StripeClient, built once per app in create_app().

    Checkout/portal/self-service calls translate provider failures into
    BillingUnavailable; retrieve_subscription lets them propagate so webhook
    handling can record the error.
    """

    def __init__(self, api_key: Optional[str], *, timeout: int = 10, max_network_retries: int = 2):
        self.api_key = api_key
        self.timeout = timeout
        self.max_network_retries = max_network_retries
        self._client: Optional[StripeClient] = None

    @classmethod
    def from_config(cls, config) -> "StripeGateway":
        return cls(
            config.get("STRIPE_SECRET_KEY"),
            timeout=int(config.get("STRIPE_TIMEOUT_SECONDS", 10)),
            max_network_retries=int(config.get("STRIPE_MAX_NETWORK_RETRIES", 2)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def client(self) -> StripeClient:
        if not self.api_key:
            raise RuntimeError("STRIPE_SECRET_KEY is not configured")
        if self._client is None:
            self._client = StripeClient(
                self.api_key,
                http_client=stripe.RequestsClient(timeout=self.timeout),
                max_network_retries=self.max_network_retries,
            )
        return self._client

    def create_checkout_session(
        self,
        *,
        account_id: int,
        email: Optional[str],
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a Stripe Checkout Session for a subscription to the given Price.
        Returns: {"id": <session_id>, "url": <redirect_url>}
        """
        params: Dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "allow_promotion_codes": True,
            # Webhook context: resolves the account on checkout.session.completed
            "metadata": {"userId": str(account_id)},
            "subscription_data": {"metadata": {"userId": str(account_id)}},
        }
        if customer_id:
            params["customer"] = customer_id
        elif email:
            params["customer_email"] = email

        # Param-aware idempotency: new key whenever Checkout params change
        idem = make_idempotency_key("checkout", "v1", account_id, price_id, _params_hash(params))
        try:
            session = self.client().checkout.sessions.create(params=params, options={"idempotency_key": idem})
        except (stripe.StripeError, RuntimeError) as exc:
            current_app.logger.exception(
                "billing.checkout.session_create_failed",
                extra={"user_id": account_id, "price_id": price_id},
            )
            raise BillingUnavailable() from exc

        url = getattr(session, "url", None)
        if not url:
            raise BillingUnavailable()
        return {"id": session.id, "url": url}

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        """Create a Stripe Customer Portal session for an existing Customer."""
        try:
            session = self.client().billing_portal.sessions.create(
                params={"customer": customer_id, "return_url": return_url}
            )
        except (stripe.StripeError, RuntimeError) as exc:
            current_app.logger.exception(
                "billing.portal.session_create_failed",
                extra={"stripe_customer_id": customer_id},
            )
            raise BillingUnavailable() from exc

        url = getattr(session, "url", None)
        if not url:
            raise BillingUnavailable()
        return url

    def retrieve_subscription(self, subscription_id: str) -> dict:
        return helpers.as_dict(self.client().subscriptions.retrieve(subscription_id))

    def set_cancel_at_period_end(self, subscription_id: str, cancel: bool) -> dict:
        try:
            sub = self.client().subscriptions.update(
                subscription_id, params={"cancel_at_period_end": cancel}
            )
        except (stripe.StripeError, RuntimeError) as exc:
            current_app.logger.exception(
                "billing.subscription_update_failed",
                extra={"stripe_subscription_id": subscription_id, "cancel_at_period_end": cancel},
            )
            raise BillingUnavailable() from exc
        return helpers.as_dict(sub)


def get_gateway() -> StripeGateway:
    return current_app.extensions["stripe_gateway"]
