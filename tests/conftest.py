"""Shared test fixtures — async DB, service, client, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL. The
database lives in a temporary file (not ``:memory:``) so every unit of work
gets its own connection, the same way it does against a real pool.
"""

from __future__ import annotations

import os

# Keep the application engine quiet before any import touches pydantic-settings
os.environ.setdefault("ENVIRONMENT", "test")

import tempfile
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from timeoff.common.constants import ApprovalLevel, EmployeeRole, LeaveType
from timeoff.common.locks import KeyedLock
from timeoff.database import Base, get_session_factory
from timeoff.leave.events import LeaveEvent
from timeoff.leave.router import get_event_sink, get_leave_service
from timeoff.leave.service import LeaveService
from timeoff.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import timeoff.common.audit  # noqa: F401
import timeoff.directory.models  # noqa: F401
import timeoff.leave.models  # noqa: F401

from timeoff.directory.models import Employee, Holiday
from timeoff.leave.models import LeaveBalance, LeavePolicy

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite file) ─────────────────────────────────────

TEST_DB_PATH = os.path.join(tempfile.gettempdir(), f"timeoff-test-{os.getpid()}.db")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{TEST_DB_PATH}"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False, "timeout": 15},
    poolclass=NullPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

# Monday 1 June 2026, 09:00 UTC — fiscal year 2026 with an April start
NOW = datetime(2026, 6, 1, 9, 0, tzinfo=timezone.utc)
TODAY = NOW.date()
FISCAL_YEAR = 2026


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


# ── Event sink that remembers what it saw ───────────────────────────

class RecordingEventSink:
    def __init__(self) -> None:
        self.events: list[LeaveEvent] = []
        self.fail_with: Optional[Exception] = None

    async def publish(self, event: LeaveEvent) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type for e in self.events]


@pytest.fixture
def sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def service(sink) -> LeaveService:
    """Service on the test database with a fixed clock and private lock registry."""
    return LeaveService(
        TestSessionFactory,
        sink=sink,
        locks=KeyedLock(timeout=5),
        clock=lambda: NOW,
    )


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app(service, sink):
    """Create a fresh app instance with the service dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_session_factory] = lambda: TestSessionFactory
    application.dependency_overrides[get_event_sink] = lambda: sink
    application.dependency_overrides[get_leave_service] = lambda: service
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


def actor_headers(employee: Employee, role: Optional[EmployeeRole] = None) -> dict[str, str]:
    return {
        "X-Employee-Id": str(employee.id),
        "X-Role": (role or employee.role).value,
    }


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    first_name: str = "Test",
    last_name: str = "User",
    department: Optional[str] = "Engineering",
    location: Optional[str] = "Mumbai",
    job_title: Optional[str] = "Software Engineer",
    role: EmployeeRole = EmployeeRole.employee,
    hire_date: date = date(2024, 1, 15),
    reporting_manager_id: Optional[uuid.UUID] = None,
) -> dict:
    code = uuid.uuid4().hex[:6].upper()
    return dict(
        id=uuid.uuid4(),
        employee_code=f"TO-{code}",
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{code.lower()}@example.com",
        department=department,
        location=location,
        job_title=job_title,
        role=role,
        hire_date=hire_date,
        reporting_manager_id=reporting_manager_id,
        is_active=True,
    )


def _make_policy(
    *,
    code: str = "AL",
    leave_type: LeaveType = LeaveType.annual,
    quota: Optional[Decimal] = Decimal("25"),
    approval_level: ApprovalLevel = ApprovalLevel.manager,
    **overrides,
) -> dict:
    data = dict(
        id=uuid.uuid4(),
        code=code,
        name=f"{leave_type.value.title()} Leave",
        leave_type=leave_type,
        quota=quota,
        carry_forward=False,
        allow_negative=False,
        half_day_allowed=True,
        documentation_required=False,
        notice_period_days=0,
        auto_approval_enabled=False,
        approval_level=approval_level,
        applicable_locations=[],
        applicable_departments=[],
        applicable_roles=[],
        version=1,
        is_active=True,
    )
    data.update(overrides)
    return data


async def seed_employee(db: AsyncSession, **kwargs) -> Employee:
    employee = Employee(**_make_employee(**kwargs))
    db.add(employee)
    await db.commit()
    return employee


async def seed_policy(db: AsyncSession, **kwargs) -> LeavePolicy:
    policy = LeavePolicy(**_make_policy(**kwargs))
    db.add(policy)
    await db.commit()
    return policy


async def seed_balance(
    db: AsyncSession,
    employee: Employee,
    policy: LeavePolicy,
    *,
    fiscal_year: int = FISCAL_YEAR,
    entitlement: Decimal = Decimal("25"),
    carried: Decimal = Decimal("0"),
) -> LeaveBalance:
    balance = LeaveBalance(
        employee_id=employee.id,
        policy_id=policy.id,
        fiscal_year=fiscal_year,
        total_entitlement=entitlement,
        carried_forward=carried,
        used_leaves=Decimal("0"),
        pending_leaves=Decimal("0"),
        available_balance=entitlement + carried,
    )
    db.add(balance)
    await db.commit()
    return balance


async def seed_holiday(
    db: AsyncSession, day: date, *, name: str = "Holiday", location: Optional[str] = None
) -> Holiday:
    holiday = Holiday(
        name=name, date=day, fiscal_year=FISCAL_YEAR, location=location, is_active=True
    )
    db.add(holiday)
    await db.commit()
    return holiday


@pytest.fixture
async def team(db) -> dict[str, Employee]:
    """A manager, two reports in Engineering and an HR partner."""
    manager = await seed_employee(
        db, first_name="Maya", role=EmployeeRole.manager, job_title="Engineering Manager",
    )
    employee = await seed_employee(
        db, first_name="Ravi", reporting_manager_id=manager.id,
    )
    colleague = await seed_employee(
        db, first_name="Anil", reporting_manager_id=manager.id,
    )
    hr = await seed_employee(
        db, first_name="Hema", department="HR", role=EmployeeRole.hr,
        job_title="HR Business Partner",
    )
    return {"manager": manager, "employee": employee, "colleague": colleague, "hr": hr}
