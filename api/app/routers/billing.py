import logging
from fastapi import APIRouter, Depends, HTTPException
import stripe
from ..billing import BillingNotConfigured, create_checkout_session, create_portal_session
from ..identity import ProfileStore, current_user, get_profile_store
from ..models import User

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/checkout")
def checkout(
    user: User = Depends(current_user),
    store: ProfileStore = Depends(get_profile_store),
):
    try:
        session = create_checkout_session(store, user)
    except BillingNotConfigured as exc:
        raise HTTPException(503, str(exc))
    except stripe.StripeError as exc:
        logger.warning("Error creating Stripe Checkout session: %s", exc)
        raise HTTPException(500, "Error creating checkout session")
    return {"sessionId": session["id"], "url": session.get("url")}


@router.post("/portal")
def portal(user: User = Depends(current_user)):
    try:
        session = create_portal_session(user)
    except BillingNotConfigured as exc:
        raise HTTPException(503, str(exc))
    except ValueError as exc:
        raise HTTPException(400, str(exc))
    except stripe.StripeError as exc:
        logger.warning("Error creating billing portal session: %s", exc)
        raise HTTPException(500, "Error creating billing portal session")
    return {"url": session["url"]}
