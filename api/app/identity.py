import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Query, Request, status
from itsdangerous import BadSignature
from pydantic import BaseModel
from sqlmodel import Session, select, delete

from .db import get_session
from .models import User, Signature, Document, PLAN_FREE, PLANS, utcnow
from .utils import read_token

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    user_id: str
    email: str
    name: Optional[str] = None


class InvalidIdentityError(Exception):
    pass


class IdentityProvider:
    def authenticate(self, token: str) -> Identity:
        raise NotImplementedError


class TokenIdentityProvider(IdentityProvider):
    """Accepts URL-safe signed tokens carrying ``{"sub", "email", "name"}``."""

    salt = "identity"

    def authenticate(self, token: str) -> Identity:
        try:
            data = read_token(token, salt=self.salt)
        except BadSignature as exc:
            raise InvalidIdentityError("bad token signature") from exc
        if not isinstance(data, dict) or not data.get("sub") or not data.get("email"):
            raise InvalidIdentityError("token is missing subject or email")
        return Identity(user_id=str(data["sub"]), email=data["email"], name=data.get("name"))


class ProfileStore:
    def get(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    def get_by_email(self, email: str) -> Optional[User]:
        raise NotImplementedError

    def get_by_customer(self, customer_id: str) -> Optional[User]:
        raise NotImplementedError

    def upsert(self, identity: Identity) -> User:
        raise NotImplementedError

    def update_plan(self, user: User, plan: str, customer_id: Optional[str] = None) -> User:
        raise NotImplementedError

    def delete(self, user_id: str) -> bool:
        raise NotImplementedError


class SQLProfileStore(ProfileStore):
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[User]:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.email == email)).first()

    def get_by_customer(self, customer_id: str) -> Optional[User]:
        return self.session.exec(select(User).where(User.stripe_customer_id == customer_id)).first()

    def upsert(self, identity: Identity) -> User:
        user = self.get(identity.user_id)
        if user is None:
            user = User(id=identity.user_id, email=identity.email, name=identity.name, plan=PLAN_FREE)
            logger.info("created profile %s on plan %s", user.id, user.plan)
        else:
            user.email = identity.email
            user.name = identity.name
            user.updated_at = utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def update_plan(self, user: User, plan: str, customer_id: Optional[str] = None) -> User:
        if plan not in PLANS:
            raise ValueError(f"unknown plan {plan!r}")
        user.plan = plan
        if customer_id:
            user.stripe_customer_id = customer_id
        user.updated_at = utcnow()
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def delete(self, user_id: str) -> bool:
        user = self.get(user_id)
        if not user:
            return False
        self.session.exec(delete(Signature).where(Signature.user_id == user_id))
        self.session.exec(delete(Document).where(Document.user_id == user_id))
        self.session.delete(user)
        self.session.commit()
        return True


def get_identity_provider(request: Request) -> IdentityProvider:
    return request.app.state.identity_provider


def get_profile_store(session: Session = Depends(get_session)) -> ProfileStore:
    return SQLProfileStore(session)


def current_user(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: ProfileStore = Depends(get_profile_store),
) -> User:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    try:
        identity = provider.authenticate(candidate)
    except InvalidIdentityError as exc:
        logger.warning("rejected access token: %s", exc)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    user = store.get(identity.user_id)
    if user is None:
        user = store.upsert(identity)
    return user
