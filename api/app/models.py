from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field as ORMField

PLAN_FREE = "FREE"
PLAN_PREMIUM = "PREMIUM"
PLANS = (PLAN_FREE, PLAN_PREMIUM)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    id: str = ORMField(primary_key=True)  # subject id issued by the identity provider
    email: str = ORMField(index=True, unique=True)
    name: Optional[str] = None
    plan: str = PLAN_FREE
    stripe_customer_id: Optional[str] = ORMField(default=None, index=True, unique=True)
    created_at: datetime = ORMField(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = ORMField(default_factory=utcnow, sa_type=DateTime(timezone=True))


class Signature(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: str = ORMField(foreign_key="user.id", index=True)
    file_name: str
    signed_at: datetime = ORMField(default_factory=utcnow, sa_type=DateTime(timezone=True))
    week_number: str  # YYYYMMWW, ISO week
    month_year: str   # YYYY-MM


class Document(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    user_id: str = ORMField(foreign_key="user.id", index=True)
    filename: str
    s3_key: str
    sha256: Optional[str] = None
    page_count: int = 0
    page_width: float = 0.0
    page_height: float = 0.0
    created_at: datetime = ORMField(default_factory=utcnow, sa_type=DateTime(timezone=True))
