from datetime import datetime

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lessonsync.core.config import SchedulingConfig
from lessonsync.database import Base
from lessonsync.integrations.google_calendar_client import FakeCalendarClient

# Import models so Base.metadata is populated for create_all.
import lessonsync.models  # noqa: F401
from lessonsync.models import Booking, Instructor

from tests.factories import CALENDAR_ID


@pytest.fixture(scope="session")
def _engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite defers BEGIN, so the outer test transaction would not wrap
    # SAVEPOINTs; emit BEGIN ourselves so rollback isolates each test.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(_engine) -> Session:
    """
    Provide a transactional session bound to the shared in-memory engine.
    """
    connection = _engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(bind=connection, expire_on_commit=False, future=True)
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess, trans):
        if trans.nested and not trans._parent.nested:
            sess.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture
def calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture
def config() -> SchedulingConfig:
    return SchedulingConfig(default_timezone="UTC")


@pytest.fixture
def instructor(db) -> Instructor:
    row = Instructor(
        name="Maria Reyes",
        email="maria@example.com",
        calendar_id=CALENDAR_ID,
        timezone="UTC",
    )
    db.add(row)
    db.flush()
    return row


@pytest.fixture
def make_booking(db, instructor):
    def _make(start: datetime, end: datetime, **overrides) -> Booking:
        fields = dict(
            instructor_id=instructor.id,
            student_name="Sam Student",
            student_email="sam@example.com",
            start_time=start,
            end_time=end,
            status="scheduled",
            is_online=False,
            lesson_length=int((end - start).total_seconds() // 60),
        )
        fields.update(overrides)
        booking = Booking(**fields)
        db.add(booking)
        db.flush()
        return booking

    return _make
