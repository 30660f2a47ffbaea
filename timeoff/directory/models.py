"""Directory ORM models: Employee, Holiday.

These tables are owned by the HR directory; the leave core only reads them.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeoff.common.constants import EmployeeRole
from timeoff.database import Base


# ═════════════════════════════════════════════════════════════════════
# Employee
# ═════════════════════════════════════════════════════════════════════


class Employee(Base):
    """Employee aggregate with an explicit role used for approval authority."""

    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_code: Mapped[str] = mapped_column(
        sa.String(20), unique=True, nullable=False
    )
    first_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)

    # ── Placement ───────────────────────────────────────────────────
    department: Mapped[Optional[str]] = mapped_column(sa.String(100))
    location: Mapped[Optional[str]] = mapped_column(sa.String(100))
    job_title: Mapped[Optional[str]] = mapped_column(sa.String(200))
    role: Mapped[EmployeeRole] = mapped_column(
        sa.Enum(EmployeeRole, name="employee_role", native_enum=False, length=20),
        nullable=False,
        default=EmployeeRole.employee,
    )
    reporting_manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )

    hire_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    reporting_manager: Mapped[Optional[Employee]] = relationship(
        remote_side="Employee.id"
    )

    __table_args__ = (
        sa.Index("ix_employees_department", "department"),
        sa.Index("ix_employees_reporting_manager", "reporting_manager_id"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code} {self.full_name!r} ({self.role})>"


# ═════════════════════════════════════════════════════════════════════
# Holiday
# ═════════════════════════════════════════════════════════════════════


class Holiday(Base):
    """A non-working day; ``location`` NULL means it applies everywhere."""

    __tablename__ = "holidays"
    __table_args__ = (
        sa.UniqueConstraint("date", "location", name="uq_holiday_date_location"),
        sa.Index("ix_holidays_fiscal_year", "fiscal_year"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    fiscal_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    location: Mapped[Optional[str]] = mapped_column(sa.String(100))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
