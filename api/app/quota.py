"""Plan-based signing allowance.

FREE accounts get a weekly allowance (ISO weeks, Monday to Sunday) and
PREMIUM accounts a monthly one. Usage is counted from ``Signature`` rows
whose ``signed_at`` falls inside the current period window.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session, select, func

from .config import FREE_WEEKLY_LIMIT, PREMIUM_MONTHLY_LIMIT, QUOTA_POLICY
from .errors import QuotaExceededError
from .models import User, Signature, PLAN_FREE, PLAN_PREMIUM, utcnow

logger = logging.getLogger(__name__)

POLICY_ADVISORY = "advisory"
POLICY_ENFORCE = "enforce"
POLICIES = (POLICY_ADVISORY, POLICY_ENFORCE)

PERIOD_WEEK = "week"
PERIOD_MONTH = "month"


def _as_utc(now: Optional[datetime]) -> datetime:
    # naive values are taken to be UTC already
    if now is None:
        return utcnow()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class QuotaStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    can_sign: bool = Field(alias="canSign")
    remaining: int
    signatures_count: int = Field(alias="signaturesCount")
    max_signatures: int = Field(alias="maxSignatures")
    plan: str
    period: str


def normalize_policy(value: Optional[str]) -> str:
    policy = (value or POLICY_ADVISORY).strip().lower()
    if policy not in POLICIES:
        raise ValueError(f"unknown quota policy {value!r}; expected one of {', '.join(POLICIES)}")
    return policy


def plan_allowance(plan: str) -> Tuple[int, str]:
    if plan == PLAN_PREMIUM:
        return PREMIUM_MONTHLY_LIMIT, PERIOD_MONTH
    return FREE_WEEKLY_LIMIT, PERIOD_WEEK


def period_window(plan: str, now: datetime) -> Tuple[datetime, datetime]:
    """Inclusive [start, end] bounds of the UTC period containing ``now``."""
    day = _as_utc(now).replace(hour=0, minute=0, second=0, microsecond=0)
    _, period = plan_allowance(plan)
    if period == PERIOD_WEEK:
        start = day - timedelta(days=day.weekday())
        end = start + timedelta(days=7)
    else:
        start = day.replace(day=1)
        end = (start + timedelta(days=32)).replace(day=1)
    return start, end - timedelta(microseconds=1)


def week_number(now: datetime) -> str:
    return f"{now.year}{now.month:02d}{now.isocalendar()[1]:02d}"


def month_year(now: datetime) -> str:
    return f"{now.year}-{now.month:02d}"


def count_signatures(session: Session, user_id: str, start: datetime, end: datetime) -> int:
    return session.exec(
        select(func.count(Signature.id)).where(
            Signature.user_id == user_id,
            Signature.signed_at >= start,
            Signature.signed_at <= end,
        )
    ).one()


def check_quota(session: Session, user: User, now: Optional[datetime] = None) -> QuotaStatus:
    now = _as_utc(now)
    plan = user.plan if user.plan in (PLAN_FREE, PLAN_PREMIUM) else PLAN_FREE
    max_signatures, period = plan_allowance(plan)
    start, end = period_window(plan, now)
    used = count_signatures(session, user.id, start, end)
    return QuotaStatus(
        can_sign=used < max_signatures,
        remaining=max(0, max_signatures - used),
        signatures_count=used,
        max_signatures=max_signatures,
        plan=plan,
        period=period,
    )


def gate_export(status: QuotaStatus, policy: str = QUOTA_POLICY):
    """Refuse an export only when the policy makes the quota a hard gate."""
    if status.can_sign:
        return
    if normalize_policy(policy) == POLICY_ENFORCE:
        raise QuotaExceededError(status)
    logger.info("quota exhausted (%s/%s per %s); export allowed by advisory policy",
                status.signatures_count, status.max_signatures, status.period)


def register_usage(session: Session, user: User, file_name: str, now: Optional[datetime] = None) -> Signature:
    now = _as_utc(now)
    status = check_quota(session, user, now)
    if not status.can_sign:
        raise QuotaExceededError(status)
    record = Signature(
        user_id=user.id,
        file_name=file_name,
        signed_at=now,
        week_number=week_number(now),
        month_year=month_year(now),
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    return record
