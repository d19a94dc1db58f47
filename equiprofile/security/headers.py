from flask_talisman import Talisman

STRIPE_JS = "https://js.stripe.com"

# JSON API; the SPA served from the same origin embeds Stripe.js and
# redirects into hosted Checkout / the billing portal.
API_CSP = {
    "default-src": "'self'",
    "script-src": ["'self'", STRIPE_JS],
    "connect-src": ["'self'", "https://api.stripe.com"],
    "frame-src": [STRIPE_JS, "https://hooks.stripe.com"],
    "img-src": ["'self'", "data:"],
    "form-action": ["'self'", "https://checkout.stripe.com", "https://billing.stripe.com"],
    "frame-ancestors": "'none'",
    "base-uri": "'self'",
}


def init_security(app):
    Talisman(
        app,
        content_security_policy=API_CSP,
        force_https=app.config.get("FORCE_HTTPS", True),
        strict_transport_security=True,
        strict_transport_security_max_age=app.config.get("HSTS_MAX_AGE", 31536000),
        session_cookie_secure=True,
        frame_options="DENY",
        referrer_policy="strict-origin-when-cross-origin",
    )
