"""Shared helpers for Celery tasks."""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ConfigurationError
from ..database import SessionLocal
from ..integrations.google_calendar_client import CalendarClient, create_calendar_client


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def calendar_client_or_none() -> Optional[CalendarClient]:
    try:
        return create_calendar_client(settings)
    except ConfigurationError:
        return None
