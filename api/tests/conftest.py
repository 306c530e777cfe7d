"""Shared test fixtures.

Tests run against an in-memory SQLite database built from the model metadata.
StaticPool keeps the single connection alive for the whole test, so every
session sees the same data.
"""

from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from trainerbook.core.config import Settings
from trainerbook.core.database import get_db
from trainerbook.core.dependencies import get_clock
from trainerbook.main import app
from trainerbook.models import Academy, Base, Franqueadora, User, UserRole
from trainerbook.services.booking_engine import BookingEngine
from trainerbook.services.ledger import BalanceLedger

from tests.helpers import NOW, FrozenClock, RecordingNotifier


@pytest.fixture
async def sql_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sql_engine):
    return async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def world(session_factory):
    """One franqueadora, one single-place academy, two teachers and two students with opening balances."""
    async with session_factory() as db:
        franqueadora = Franqueadora(name="Test Franqueadora")
        db.add(franqueadora)
        await db.flush()

        academy = Academy(franqueadora_id=franqueadora.id, name="Centro", capacity_per_slot=1)
        orphan_academy = Academy(franqueadora_id=None, name="Unlinked")
        teacher = User(email="teacher@example.com", name="Tina Teacher", role=UserRole.TEACHER)
        other_teacher = User(email="teacher2@example.com", name="Theo Teacher", role=UserRole.TEACHER)
        student = User(email="student@example.com", name="Sam Student", role=UserRole.STUDENT)
        other_student = User(email="student2@example.com", name="Sol Student", role=UserRole.STUDENT)
        db.add_all([academy, orphan_academy, teacher, other_teacher, student, other_student])
        await db.flush()

        ledger = BalanceLedger(db)
        await ledger.grant_student_classes(student.id, franqueadora.id, 5)
        await ledger.grant_student_classes(other_student.id, franqueadora.id, 5)
        await ledger.grant_professor_hours(teacher.id, franqueadora.id, 3)
        await db.commit()

        return SimpleNamespace(
            franqueadora=franqueadora,
            academy=academy,
            orphan_academy=orphan_academy,
            teacher=teacher,
            other_teacher=other_teacher,
            student=student,
            other_student=other_student,
        )


@pytest.fixture
async def db(session_factory, world):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def config():
    return Settings(completion_consumes_credit=True, notifications_enabled=False)


@pytest.fixture
def engine(db, clock, notifier, config):
    return BookingEngine.for_session(db, config=config, clock=clock, notifier=notifier)


@pytest.fixture
def ledger(db):
    return BalanceLedger(db)


@pytest.fixture
async def client(session_factory, clock, world):
    async def _get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
