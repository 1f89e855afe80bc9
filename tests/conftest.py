"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from time_manager.common.constants import (
    AbsencePeriod,
    AbsenceStatus,
    AbsenceType,
    ClockKind,
    UserRole,
    WorkDay,
    WorkPeriod,
)
from time_manager.config import settings
from time_manager.database import Base, get_db
from time_manager.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import time_manager.absence.models  # noqa: F401
import time_manager.attendance.models  # noqa: F401
import time_manager.directory.models  # noqa: F401
import time_manager.leave.models  # noqa: F401

from time_manager.absence.models import Absence
from time_manager.absence.service import build_days
from time_manager.attendance.models import ClockEntry, WorkSchedule
from time_manager.directory.models import Team, TeamMember, User
from time_manager.leave.models import LeaveAccount, LeaveType


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from time_manager.common.rate_limit import limiter

    try:
        # Clear the in-memory storage used by slowapi/limits
        if hasattr(limiter, "_storage"):
            limiter._storage.reset()
    except Exception:
        pass
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    role: UserRole = UserRole.employee,
    first_name: str = "Test",
    last_name: str = "User",
    is_active: bool = True,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"user-{uuid.uuid4().hex[:8]}@example.com",
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
    )
    db.add(user)
    await db.flush()
    return user


async def make_team(db: AsyncSession, *members: User, name: str = "Platform") -> Team:
    team = Team(id=uuid.uuid4(), name=name)
    db.add(team)
    await db.flush()
    for member in members:
        db.add(TeamMember(id=uuid.uuid4(), team_id=team.id, user_id=member.id))
    await db.flush()
    return team


async def make_leave_type(db: AsyncSession, code: str = "VAC", label: str = "Vacation") -> LeaveType:
    leave_type = LeaveType(code=code, label=label)
    db.add(leave_type)
    await db.flush()
    return leave_type


async def make_account(
    db: AsyncSession,
    user: User,
    leave_type_code: str = "VAC",
    *,
    opening_balance: Decimal = Decimal("0"),
    accrual_per_month: Decimal = Decimal("0"),
    max_carryover: Optional[Decimal] = None,
    carryover_expire_on: Optional[date] = None,
    created_at: Optional[datetime] = None,
) -> LeaveAccount:
    account = LeaveAccount(
        id=uuid.uuid4(),
        user_id=user.id,
        leave_type_code=leave_type_code,
        opening_balance=opening_balance,
        accrual_per_month=accrual_per_month,
        max_carryover=max_carryover,
        carryover_expire_on=carryover_expire_on,
        created_at=created_at or datetime.now(timezone.utc),
    )
    db.add(account)
    await db.flush()
    return account


async def make_absence(
    db: AsyncSession,
    user: User,
    *,
    type: AbsenceType = AbsenceType.VACATION,
    start_date: date = date(2026, 3, 2),
    end_date: Optional[date] = None,
    periods: Optional[dict[date, AbsencePeriod]] = None,
    status: AbsenceStatus = AbsenceStatus.PENDING,
) -> Absence:
    """Insert an absence with one day row per date."""
    end_date = end_date or start_date
    absence = Absence(
        id=uuid.uuid4(),
        user_id=user.id,
        start_date=start_date,
        end_date=end_date,
        type=type,
        status=status,
        days=build_days(start_date, end_date, periods),
    )
    db.add(absence)
    await db.flush()
    return absence


async def make_schedule(
    db: AsyncSession,
    user: User,
    days: Sequence[WorkDay] = (WorkDay.MON, WorkDay.TUE, WorkDay.WED, WorkDay.THU, WorkDay.FRI),
) -> None:
    """Standard week: 09:00–12:00 and 13:00–17:00."""
    for day in days:
        db.add(WorkSchedule(
            id=uuid.uuid4(), user_id=user.id, day_of_week=day, period=WorkPeriod.AM,
            start_time=time(9, 0), end_time=time(12, 0),
        ))
        db.add(WorkSchedule(
            id=uuid.uuid4(), user_id=user.id, day_of_week=day, period=WorkPeriod.PM,
            start_time=time(13, 0), end_time=time(17, 0),
        ))
    await db.flush()


async def make_clock(db: AsyncSession, user: User, kind: ClockKind, at: datetime) -> ClockEntry:
    entry = ClockEntry(id=uuid.uuid4(), user_id=user.id, kind=kind, at=at)
    db.add(entry)
    await db.flush()
    return entry


# ── Auth helpers ────────────────────────────────────────────────────

def create_access_token(user_id: uuid.UUID, expired: bool = False) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=1)
    payload = {"sub": str(user_id), "exp": exp}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
