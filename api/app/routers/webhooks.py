import json
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError
import stripe
from ..billing import BillingNotConfigured, apply_event, construct_event
from ..identity import Identity, ProfileStore, get_profile_store
from ..schemas import IdentityEvent
from ..utils import verify_webhook_body

logger = logging.getLogger(__name__)

router = APIRouter()


def _identity_from_event(data: dict) -> Identity:
    emails = data.get("email_addresses") or []
    if not isinstance(emails, list) or not all(isinstance(e, dict) for e in emails):
        raise HTTPException(400, "email_addresses must be a list of objects")
    email = data.get("email") or (emails[0].get("email_address") if emails else None)
    if not isinstance(email, str) or not email:
        raise HTTPException(400, "event carries no email address")
    name = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip() or data.get("name")
    return Identity(user_id=str(data["id"]), email=email, name=name or None)


@router.post("/identity")
async def identity_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(default=None, alias="X-Webhook-Signature"),
    store: ProfileStore = Depends(get_profile_store),
):
    body = await request.body()
    if not x_webhook_signature:
        raise HTTPException(400, "missing webhook signature")
    if not verify_webhook_body(body, x_webhook_signature):
        logger.warning("identity webhook signature verification failed")
        raise HTTPException(400, "invalid webhook signature")
    try:
        event = IdentityEvent.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError):
        raise HTTPException(400, "invalid payload")
    if not event.data.get("id"):
        raise HTTPException(400, "event carries no user id")

    if event.type in ("user.created", "user.updated"):
        user = store.upsert(_identity_from_event(event.data))
        return {"received": True, "user_id": user.id}
    if event.type == "user.deleted":
        deleted = store.delete(str(event.data["id"]))
        return {"received": True, "deleted": deleted}
    logger.info("Unhandled identity event type %s", event.type)
    return {"received": True}


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    store: ProfileStore = Depends(get_profile_store),
):
    payload = await request.body()
    if stripe_signature is None:
        raise HTTPException(400, "Missing Stripe signature header.")
    try:
        event = construct_event(payload, stripe_signature)
    except BillingNotConfigured as exc:
        raise HTTPException(500, str(exc))
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe webhook signature.")
        raise HTTPException(400, "Invalid signature.")
    except ValueError as exc:
        logger.warning("Error parsing Stripe webhook: %s", exc)
        raise HTTPException(400, "Invalid payload.")
    plan = apply_event(store, event)
    return {"received": True, "plan": plan}
