"""Overlap detector tests — blocking overlaps, advisory adjacency and team
coverage risk.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from timeoff.common.constants import CoverageRisk, LeaveStatus, LeaveType
from timeoff.common.exceptions import OverlappingRequest
from timeoff.directory.models import Employee
from timeoff.directory.service import SqlEmployeeDirectory
from timeoff.leave.models import LeavePolicy, LeaveRequest
from timeoff.leave.overlap import OverlapDetector
from timeoff.leave.repositories import SqlRequestRepository
from tests.conftest import FISCAL_YEAR, seed_employee, seed_policy


def _detector(db: AsyncSession) -> OverlapDetector:
    return OverlapDetector(SqlRequestRepository(db), SqlEmployeeDirectory(db))


async def _seed_request(
    db: AsyncSession,
    employee: Employee,
    policy: LeavePolicy,
    start: date,
    end: date,
    *,
    status: LeaveStatus = LeaveStatus.pending,
    leave_type: LeaveType = LeaveType.annual,
) -> LeaveRequest:
    days = Decimal((end - start).days + 1)
    request = LeaveRequest(
        id=uuid.uuid4(),
        employee_id=employee.id,
        policy_id=policy.id,
        leave_type=leave_type,
        start_date=start,
        end_date=end,
        total_days=days,
        business_days=days,
        fiscal_year=FISCAL_YEAR,
        reason="Seeded leave request",
        status=status,
    )
    db.add(request)
    await db.commit()
    return request


# ═════════════════════════════════════════════════════════════════════
# Overlaps
# ═════════════════════════════════════════════════════════════════════


class TestOverlaps:
    async def test_intersecting_pending_request_blocks(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        existing = await _seed_request(db, employee, policy, date(2026, 6, 10), date(2026, 6, 12))

        with pytest.raises(OverlappingRequest) as exc_info:
            await _detector(db).ensure_no_overlap(employee.id, date(2026, 6, 12), date(2026, 6, 15))

        overlap = exc_info.value.overlaps[0]
        assert overlap["id"] == str(existing.id)
        assert overlap["status"] == "pending"
        assert overlap["start_date"] == "2026-06-10"
        assert exc_info.value.status_code == 409

    async def test_approved_request_blocks(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        await _seed_request(
            db, employee, policy, date(2026, 6, 10), date(2026, 6, 10),
            status=LeaveStatus.approved,
        )

        with pytest.raises(OverlappingRequest):
            await _detector(db).ensure_no_overlap(employee.id, date(2026, 6, 8), date(2026, 6, 12))

    @pytest.mark.parametrize("status", [LeaveStatus.rejected, LeaveStatus.cancelled])
    async def test_terminal_requests_do_not_block(self, db: AsyncSession, status):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        await _seed_request(
            db, employee, policy, date(2026, 6, 10), date(2026, 6, 12), status=status,
        )

        await _detector(db).ensure_no_overlap(employee.id, date(2026, 6, 10), date(2026, 6, 12))

    async def test_other_employees_do_not_block(self, db: AsyncSession):
        employee = await seed_employee(db)
        other = await seed_employee(db)
        policy = await seed_policy(db)
        await _seed_request(db, other, policy, date(2026, 6, 10), date(2026, 6, 12))

        assert await _detector(db).find_overlaps(
            employee.id, date(2026, 6, 10), date(2026, 6, 12)
        ) == []

    async def test_excluded_request_ignored(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        existing = await _seed_request(db, employee, policy, date(2026, 6, 10), date(2026, 6, 12))

        found = await _detector(db).find_overlaps(
            employee.id, date(2026, 6, 10), date(2026, 6, 12), exclude_request_id=existing.id
        )
        assert found == []


# ═════════════════════════════════════════════════════════════════════
# Adjacency
# ═════════════════════════════════════════════════════════════════════


class TestAdjacency:
    async def test_touching_requests_reported(self, db: AsyncSession, caplog):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        before = await _seed_request(db, employee, policy, date(2026, 6, 8), date(2026, 6, 9))
        after = await _seed_request(db, employee, policy, date(2026, 6, 13), date(2026, 6, 14))

        with caplog.at_level(logging.WARNING, logger="timeoff.leave.overlap"):
            adjacent = await _detector(db).find_adjacent(
                employee.id, date(2026, 6, 10), date(2026, 6, 12), LeaveType.casual
            )

        assert [r.id for r in adjacent] == [before.id, after.id]
        assert "adjacent to 2 existing request(s)" in caplog.text

    async def test_gap_is_not_adjacent(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        await _seed_request(db, employee, policy, date(2026, 6, 1), date(2026, 6, 8))

        adjacent = await _detector(db).find_adjacent(
            employee.id, date(2026, 6, 10), date(2026, 6, 12), LeaveType.annual
        )
        assert adjacent == []


# ═════════════════════════════════════════════════════════════════════
# Team coverage
# ═════════════════════════════════════════════════════════════════════


class TestCoverageRisk:
    async def test_low_when_nobody_else_is_off(self, db: AsyncSession):
        employee = await seed_employee(db)

        risk, count = await _detector(db).team_coverage_risk(
            employee, date(2026, 6, 10), date(2026, 6, 12)
        )
        assert (risk, count) == (CoverageRisk.low, 0)

    async def test_medium_with_one_colleague_off(self, db: AsyncSession):
        employee = await seed_employee(db)
        colleague = await seed_employee(db)
        outsider = await seed_employee(db, department="Sales")
        policy = await seed_policy(db)
        await _seed_request(db, colleague, policy, date(2026, 6, 11), date(2026, 6, 11))
        await _seed_request(db, outsider, policy, date(2026, 6, 11), date(2026, 6, 11))

        risk, count = await _detector(db).team_coverage_risk(
            employee, date(2026, 6, 10), date(2026, 6, 12)
        )
        assert (risk, count) == (CoverageRisk.medium, 1)

    async def test_high_with_three_colleagues_off(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        for _ in range(3):
            colleague = await seed_employee(db)
            await _seed_request(db, colleague, policy, date(2026, 6, 10), date(2026, 6, 12))

        risk, count = await _detector(db).team_coverage_risk(
            employee, date(2026, 6, 10), date(2026, 6, 12)
        )
        assert (risk, count) == (CoverageRisk.high, 3)
