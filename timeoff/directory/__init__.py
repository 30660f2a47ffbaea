"""Employee directory and holiday calendar consumed by the leave core."""

from timeoff.directory.models import Employee, Holiday
from timeoff.directory.service import (
    EmployeeDirectory,
    HolidayCalendar,
    SqlEmployeeDirectory,
    SqlHolidayCalendar,
)

__all__ = [
    "Employee",
    "EmployeeDirectory",
    "Holiday",
    "HolidayCalendar",
    "SqlEmployeeDirectory",
    "SqlHolidayCalendar",
]
