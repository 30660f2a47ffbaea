"""Read-only lookups the leave core needs from the HR directory.

The leave core depends on the two Protocols below, not on the SQL
implementations, so tests and other deployments can plug in their own.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional, Protocol, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timeoff.directory.models import Employee, Holiday


class EmployeeDirectory(Protocol):
    async def get(self, employee_id: uuid.UUID) -> Optional[Employee]: ...

    async def department_colleagues(
        self, employee: Employee
    ) -> Sequence[Employee]: ...


class HolidayCalendar(Protocol):
    async def holidays_between(
        self, start: date, end: date, location: Optional[str]
    ) -> set[date]: ...


# ── SQL implementations ─────────────────────────────────────────────

class SqlEmployeeDirectory:
    """Employee lookups on the current unit-of-work session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, employee_id: uuid.UUID) -> Optional[Employee]:
        return await self.session.get(Employee, employee_id)

    async def department_colleagues(self, employee: Employee) -> Sequence[Employee]:
        """Active employees in the same department, excluding *employee*."""
        if not employee.department:
            return []
        result = await self.session.execute(
            select(Employee).where(
                Employee.department == employee.department,
                Employee.id != employee.id,
                Employee.is_active.is_(True),
            )
        )
        return result.scalars().all()


class SqlHolidayCalendar:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def holidays_between(
        self, start: date, end: date, location: Optional[str]
    ) -> set[date]:
        """Active holiday dates in ``[start, end]`` that apply to *location*.

        Holidays without a location apply everywhere.
        """
        location_filter = Holiday.location.is_(None)
        if location:
            location_filter = or_(location_filter, Holiday.location == location)

        result = await self.session.execute(
            select(Holiday.date).where(
                and_(
                    Holiday.date >= start,
                    Holiday.date <= end,
                    Holiday.is_active.is_(True),
                    location_filter,
                )
            )
        )
        return set(result.scalars().all())
