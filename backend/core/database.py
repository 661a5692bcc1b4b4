import logging
from functools import partial
from typing import Callable

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import SQLModel, Session, create_engine

from core.config import DATABASE_URL

logger = logging.getLogger(__name__)

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)


def register_models():
    # Tables register on SQLModel.metadata when their modules are imported
    from models import audit_log, complaints, notification, task, user  # noqa: F401


def create_db_and_tables():
    register_models()
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


def get_session_factory() -> Callable[[], Session]:
    """Sessions on demand for long-lived handlers that must not pin a connection."""
    return partial(Session, engine)


def commit_or_rollback(session: Session, what: str) -> None:
    """Commit the unit of work; on a database error roll back and surface a 500."""
    try:
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Database error while trying to %s", what)
        raise HTTPException(status_code=500, detail=f"Failed to {what}")
