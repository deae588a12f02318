"""Stripe glue: checkout, billing portal and subscription events -> plan."""
import logging
from typing import Optional

import stripe

from .config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, STRIPE_PREMIUM_PRICE_ID, APP_URL
from .identity import ProfileStore
from .models import User, PLAN_FREE, PLAN_PREMIUM

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = {"active", "trialing"}


class BillingNotConfigured(Exception):
    pass


def configure():
    if STRIPE_SECRET_KEY:
        stripe.api_key = STRIPE_SECRET_KEY
        logger.info("Stripe API key configured.")
    else:
        logger.info("Stripe not configured; upgrades are disabled.")


def _require_configured(need_price: bool = False):
    if not STRIPE_SECRET_KEY or (need_price and not STRIPE_PREMIUM_PRICE_ID):
        raise BillingNotConfigured("Payments are not configured in this environment.")


def ensure_customer(store: ProfileStore, user: User) -> str:
    if user.stripe_customer_id:
        return user.stripe_customer_id
    customer = stripe.Customer.create(email=user.email, metadata={"userId": user.id})
    store.update_plan(user, user.plan, customer_id=customer["id"])
    logger.info("created Stripe customer %s for user %s", customer["id"], user.id)
    return customer["id"]


def create_checkout_session(store: ProfileStore, user: User):
    _require_configured(need_price=True)
    customer_id = ensure_customer(store, user)
    return stripe.checkout.Session.create(
        mode="subscription",
        payment_method_types=["card"],
        customer=customer_id,
        line_items=[{"price": STRIPE_PREMIUM_PRICE_ID, "quantity": 1}],
        success_url=f"{APP_URL}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{APP_URL}/dashboard",
        metadata={"userId": user.id},
    )


def create_portal_session(user: User):
    _require_configured()
    if not user.stripe_customer_id:
        raise ValueError("User does not have a Stripe customer ID")
    return stripe.billing_portal.Session.create(
        customer=user.stripe_customer_id,
        return_url=f"{APP_URL}/dashboard",
    )


def construct_event(payload: bytes, sig_header: str):
    if not STRIPE_WEBHOOK_SECRET:
        raise BillingNotConfigured("Webhook secret not configured.")
    return stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=STRIPE_WEBHOOK_SECRET)


def apply_event(store: ProfileStore, event) -> Optional[str]:
    """Update the plan of the user an event refers to; returns the new plan."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == "checkout.session.completed":
        user_id = (obj.get("metadata") or {}).get("userId")
        customer_id = obj.get("customer")
        user = store.get(user_id) if user_id else None
        if user and customer_id:
            store.update_plan(user, PLAN_PREMIUM, customer_id=customer_id)
            return PLAN_PREMIUM
        logger.warning("checkout.session.completed without a known user (%s)", user_id)
        return None

    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        plan = PLAN_PREMIUM if obj.get("status") in ACTIVE_STATUSES else PLAN_FREE
    elif event_type in ("customer.subscription.deleted", "customer.subscription.paused"):
        plan = PLAN_FREE
    else:
        logger.info("Unhandled Stripe event type %s", event_type)
        return None

    customer_id = obj.get("customer")
    user = store.get_by_customer(customer_id) if customer_id else None
    if not user:
        logger.warning("Stripe event %s for unknown customer %s", event_type, customer_id)
        return None
    store.update_plan(user, plan)
    logger.info("Stripe event %s moved user %s to %s", event_type, user.id, plan)
    return plan
