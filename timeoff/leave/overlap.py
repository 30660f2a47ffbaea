"""Overlap & conflict detection for leave requests."""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional, Sequence

from timeoff.common.constants import ADJACENCY_WATCHED_TYPES, CoverageRisk, LeaveType
from timeoff.common.exceptions import OverlappingRequest
from timeoff.directory.models import Employee
from timeoff.directory.service import EmployeeDirectory
from timeoff.leave.models import LeaveRequest
from timeoff.leave.repositories import RequestRepository

logger = logging.getLogger(__name__)

HIGH_RISK_COLLEAGUES = 3


class OverlapDetector:
    def __init__(self, requests: RequestRepository, directory: EmployeeDirectory) -> None:
        self.requests = requests
        self.directory = directory

    async def find_overlaps(
        self,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]:
        """Pending or approved requests of the employee intersecting ``[start, end]``."""
        return await self.requests.find_active_overlapping(
            [employee_id], start, end, exclude_request_id
        )

    async def ensure_no_overlap(
        self,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> None:
        overlaps = await self.find_overlaps(employee_id, start, end, exclude_request_id)
        if overlaps:
            raise OverlappingRequest(
                [
                    {
                        "id": str(r.id),
                        "leave_type": r.leave_type.value,
                        "start_date": r.start_date.isoformat(),
                        "end_date": r.end_date.isoformat(),
                        "status": r.status.value,
                    }
                    for r in overlaps
                ]
            )

    async def find_adjacent(
        self,
        employee_id: uuid.UUID,
        start: date,
        end: date,
        leave_type: Optional[LeaveType] = None,
    ) -> Sequence[LeaveRequest]:
        """Requests touching the range on either side. Advisory only."""
        adjacent = await self.requests.find_active_adjacent(employee_id, start, end)
        if adjacent and leave_type in ADJACENCY_WATCHED_TYPES:
            logger.warning(
                "%s leave %s..%s for employee %s is adjacent to %d existing request(s)",
                leave_type.value, start, end, employee_id, len(adjacent),
            )
        return adjacent

    async def team_coverage_risk(
        self, employee: Employee, start: date, end: date
    ) -> tuple[CoverageRisk, int]:
        """Risk level from how many department colleagues are already off in the range."""
        colleagues = await self.directory.department_colleagues(employee)
        overlapping = await self.requests.find_active_overlapping(
            [c.id for c in colleagues], start, end
        )
        absent = len({r.employee_id for r in overlapping})
        if absent >= HIGH_RISK_COLLEAGUES:
            risk = CoverageRisk.high
        elif absent >= 1:
            risk = CoverageRisk.medium
        else:
            risk = CoverageRisk.low
        return risk, absent
