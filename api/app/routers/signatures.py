import logging
from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select
from ..db import get_session
from ..errors import QuotaExceededError
from ..identity import current_user
from ..models import Signature, User
from ..quota import check_quota, register_usage
from ..schemas import RegisterSignature

logger = logging.getLogger(__name__)

router = APIRouter()


def _serialize_signature(sig: Signature):
    return {
        "id": sig.id,
        "fileName": sig.file_name,
        "signedAt": sig.signed_at,
        "weekNumber": sig.week_number,
        "monthYear": sig.month_year,
    }


@router.get("/check-limit")
def check_limit(
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    return check_quota(session, user).model_dump(by_alias=True)


@router.post("/register")
def register_signature(
    payload: RegisterSignature,
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    if not payload.file_name:
        raise HTTPException(400, "fileName is required")
    try:
        sig = register_usage(session, user, payload.file_name)
    except QuotaExceededError as exc:
        raise HTTPException(exc.status_code, str(exc))
    logger.info("registered signature %s for user %s", sig.id, user.id)
    return {
        "success": True,
        "signature": _serialize_signature(sig),
        "message": "Signature registered successfully",
    }


@router.get("")
def list_signatures(
    session: Session = Depends(get_session),
    user: User = Depends(current_user),
):
    rows = session.exec(
        select(Signature).where(Signature.user_id == user.id).order_by(Signature.signed_at.desc())
    ).all()
    return [_serialize_signature(s) for s in rows]
