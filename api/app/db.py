import logging

from fastapi import Request
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect

logger = logging.getLogger(__name__)


class Database:
    """Owns the engine; constructed and disposed by the process entry point."""

    def __init__(self, url: str, echo: bool = False, **engine_kwargs):
        if url.startswith("sqlite"):
            engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
        else:
            engine_kwargs.setdefault("pool_pre_ping", True)
        self.url = url
        self.engine = create_engine(url, echo=echo, **engine_kwargs)

    def init(self):
        from .models import User, Signature, Document  # noqa: F401
        SQLModel.metadata.create_all(self.engine)
        self._ensure_signature_period_index()

    def dispose(self):
        self.engine.dispose()

    def session(self) -> Session:
        return Session(self.engine)

    def _ensure_signature_period_index(self):
        inspector = inspect(self.engine)
        try:
            indexes = inspector.get_indexes("signature")
        except Exception:
            return
        if any(idx.get("name") == "ix_signature_user_signed_at" for idx in indexes):
            return
        with self.engine.begin() as conn:
            conn.execute(
                text("CREATE INDEX IF NOT EXISTS ix_signature_user_signed_at ON signature(user_id, signed_at)")
            )
        logger.info("created index ix_signature_user_signed_at")


def get_session(request: Request):
    database: Database = request.app.state.database
    with database.session() as session:
        yield session
