"""Billing service — Stripe checkout and customer portal sessions."""

import logging

import stripe

from runclub.config import (
    PUBLIC_URL, STRIPE_PRICE_LEADER_PRO, STRIPE_PRICE_RUNNER_PRO, STRIPE_SECRET_KEY,
)

logger = logging.getLogger(__name__)

SUBSCRIPTION_PRICES = {
    "runner": {"pro": STRIPE_PRICE_RUNNER_PRO},
    "leader": {"pro": STRIPE_PRICE_LEADER_PRO},
}


class BillingError(Exception):
    """Stripe is unconfigured or rejected the request."""


def _configure() -> None:
    if not STRIPE_SECRET_KEY:
        raise BillingError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = STRIPE_SECRET_KEY


def create_checkout_session(user_id: str, role: str, email: str = "") -> dict:
    """Start a Pro subscription checkout for the user's role."""
    price = SUBSCRIPTION_PRICES.get(role, {}).get("pro")
    if not price:
        raise BillingError(f"No Pro price for role {role!r}")
    _configure()

    params = {
        "mode": "subscription",
        "line_items": [{"price": price, "quantity": 1}],
        "success_url": f"{PUBLIC_URL}/settings?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{PUBLIC_URL}/subscription",
        "metadata": {"userId": user_id, "userRole": role},
        "subscription_data": {"metadata": {"userId": user_id}},
    }
    if email:
        params["customer_email"] = email

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.warning("Checkout session failed for %s: %s", user_id, e)
        raise BillingError(str(e)) from e
    return {"session_id": session.id, "url": session.url}


def create_portal_session(customer_id: str) -> dict:
    """Billing portal for an existing Stripe customer."""
    if not customer_id:
        raise BillingError("No Stripe customer on file")
    _configure()
    try:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=f"{PUBLIC_URL}/settings?tab=subscription",
        )
    except stripe.StripeError as e:
        logger.warning("Portal session failed for %s: %s", customer_id, e)
        raise BillingError(str(e)) from e
    return {"url": session.url}
