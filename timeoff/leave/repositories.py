"""Repositories: one per persisted leave entity, bound to a unit-of-work session.

The ledger, registry, detector and workflow depend on the Protocols; the
SQLAlchemy classes are the production implementations.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Optional, Protocol, Sequence

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timeoff.common.audit import LeaveAuditLog, create_audit_entry, list_audit_entries
from timeoff.common.constants import ACTIVE_STATUSES, AuditAction, LeaveStatus, LeaveType
from timeoff.directory.service import (
    EmployeeDirectory,
    HolidayCalendar,
    SqlEmployeeDirectory,
    SqlHolidayCalendar,
)
from timeoff.leave.models import LeaveBalance, LeavePolicy, LeaveRequest

BalanceKey = tuple[uuid.UUID, uuid.UUID, int]


# ── Protocols ───────────────────────────────────────────────────────

class PolicyRepository(Protocol):
    async def get(self, policy_id: uuid.UUID) -> Optional[LeavePolicy]: ...
    async def get_by_code(self, code: str) -> Optional[LeavePolicy]: ...
    async def list_active(self, leave_type: Optional[LeaveType] = None) -> Sequence[LeavePolicy]: ...
    async def add(self, policy: LeavePolicy) -> LeavePolicy: ...
    async def count_active_requests(self, policy_id: uuid.UUID) -> int: ...


class BalanceRepository(Protocol):
    async def get(self, key: BalanceKey) -> Optional[LeaveBalance]: ...
    async def get_for_update(self, key: BalanceKey) -> Optional[LeaveBalance]: ...
    async def add(self, balance: LeaveBalance) -> LeaveBalance: ...
    async def list_for_employee(
        self, employee_id: uuid.UUID, fiscal_year: Optional[int] = None
    ) -> Sequence[LeaveBalance]: ...


class RequestRepository(Protocol):
    async def get(self, request_id: uuid.UUID) -> Optional[LeaveRequest]: ...
    async def get_for_update(self, request_id: uuid.UUID) -> Optional[LeaveRequest]: ...
    async def add(self, request: LeaveRequest) -> LeaveRequest: ...
    async def find_active_overlapping(
        self,
        employee_ids: Sequence[uuid.UUID],
        start: date,
        end: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]: ...
    async def find_active_adjacent(
        self, employee_id: uuid.UUID, start: date, end: date
    ) -> Sequence[LeaveRequest]: ...


class AuditRepository(Protocol):
    async def append(
        self,
        *,
        leave_request_id: uuid.UUID,
        action: AuditAction,
        performed_by: Any,
        performed_by_role: str,
        context: Optional[dict[str, Any]] = None,
    ) -> LeaveAuditLog: ...
    async def list_for_request(self, leave_request_id: uuid.UUID) -> Sequence[LeaveAuditLog]: ...


# ── SQLAlchemy implementations ──────────────────────────────────────

class SqlPolicyRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, policy_id: uuid.UUID) -> Optional[LeavePolicy]:
        return await self.session.get(LeavePolicy, policy_id)

    async def get_by_code(self, code: str) -> Optional[LeavePolicy]:
        result = await self.session.execute(
            select(LeavePolicy).where(LeavePolicy.code == code)
        )
        return result.scalar_one_or_none()

    async def list_active(self, leave_type: Optional[LeaveType] = None) -> Sequence[LeavePolicy]:
        query = select(LeavePolicy).where(LeavePolicy.is_active.is_(True))
        if leave_type is not None:
            query = query.where(LeavePolicy.leave_type == leave_type)
        result = await self.session.execute(query.order_by(LeavePolicy.code))
        return result.scalars().all()

    async def add(self, policy: LeavePolicy) -> LeavePolicy:
        self.session.add(policy)
        await self.session.flush()
        return policy

    async def count_active_requests(self, policy_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(LeaveRequest.id)).where(
                LeaveRequest.policy_id == policy_id,
                LeaveRequest.status.in_(ACTIVE_STATUSES),
            )
        )
        return result.scalar_one()


class SqlBalanceRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def _by_key(key: BalanceKey) -> Select:
        employee_id, policy_id, fiscal_year = key
        return select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.policy_id == policy_id,
            LeaveBalance.fiscal_year == fiscal_year,
        )

    async def get(self, key: BalanceKey) -> Optional[LeaveBalance]:
        result = await self.session.execute(self._by_key(key))
        return result.scalar_one_or_none()

    async def get_for_update(self, key: BalanceKey) -> Optional[LeaveBalance]:
        """Load the row under ``SELECT ... FOR UPDATE`` with fresh attribute values."""
        result = await self.session.execute(
            self._by_key(key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, balance: LeaveBalance) -> LeaveBalance:
        self.session.add(balance)
        await self.session.flush()
        return balance

    async def list_for_employee(
        self, employee_id: uuid.UUID, fiscal_year: Optional[int] = None
    ) -> Sequence[LeaveBalance]:
        query = select(LeaveBalance).where(LeaveBalance.employee_id == employee_id)
        if fiscal_year is not None:
            query = query.where(LeaveBalance.fiscal_year == fiscal_year)
        result = await self.session.execute(
            query.order_by(LeaveBalance.fiscal_year, LeaveBalance.policy_id)
        )
        return result.scalars().all()


class SqlRequestRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, request_id: uuid.UUID) -> Optional[LeaveRequest]:
        return await self.session.get(LeaveRequest, request_id)

    async def get_for_update(self, request_id: uuid.UUID) -> Optional[LeaveRequest]:
        result = await self.session.execute(
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, request: LeaveRequest) -> LeaveRequest:
        self.session.add(request)
        await self.session.flush()
        return request

    async def find_active_overlapping(
        self,
        employee_ids: Sequence[uuid.UUID],
        start: date,
        end: date,
        exclude_request_id: Optional[uuid.UUID] = None,
    ) -> Sequence[LeaveRequest]:
        if not employee_ids:
            return []
        query = select(LeaveRequest).where(
            LeaveRequest.employee_id.in_(list(employee_ids)),
            LeaveRequest.status.in_(ACTIVE_STATUSES),
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        if exclude_request_id is not None:
            query = query.where(LeaveRequest.id != exclude_request_id)
        result = await self.session.execute(query.order_by(LeaveRequest.start_date))
        return result.scalars().all()

    async def find_active_adjacent(
        self, employee_id: uuid.UUID, start: date, end: date
    ) -> Sequence[LeaveRequest]:
        """Active requests ending the day before *start* or starting the day after *end*."""
        result = await self.session.execute(
            select(LeaveRequest)
            .where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.status.in_(ACTIVE_STATUSES),
                or_(
                    LeaveRequest.end_date == start - timedelta(days=1),
                    LeaveRequest.start_date == end + timedelta(days=1),
                ),
            )
            .order_by(LeaveRequest.start_date)
        )
        return result.scalars().all()

    @staticmethod
    def search(
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> Select:
        """Build the filtered listing query; pagination is applied by the caller."""
        query = select(LeaveRequest)
        conditions = []
        if employee_id is not None:
            conditions.append(LeaveRequest.employee_id == employee_id)
        if status is not None:
            conditions.append(LeaveRequest.status == status)
        if leave_type is not None:
            conditions.append(LeaveRequest.leave_type == leave_type)
        if from_date is not None:
            conditions.append(LeaveRequest.end_date >= from_date)
        if to_date is not None:
            conditions.append(LeaveRequest.start_date <= to_date)
        if conditions:
            query = query.where(and_(*conditions))
        return query.order_by(LeaveRequest.applied_at.desc())


class SqlAuditRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        *,
        leave_request_id: uuid.UUID,
        action: AuditAction,
        performed_by: Any,
        performed_by_role: str,
        context: Optional[dict[str, Any]] = None,
    ) -> LeaveAuditLog:
        return await create_audit_entry(
            self.session,
            leave_request_id=leave_request_id,
            action=action,
            performed_by=performed_by,
            performed_by_role=performed_by_role,
            context=context,
        )

    async def list_for_request(self, leave_request_id: uuid.UUID) -> Sequence[LeaveAuditLog]:
        return await list_audit_entries(self.session, leave_request_id)


# ── Per-unit-of-work bundle ─────────────────────────────────────────

@dataclass
class Repositories:
    """Everything one unit of work reads or writes, sharing a single session."""

    session: AsyncSession
    policies: PolicyRepository
    balances: BalanceRepository
    requests: RequestRepository
    audit: AuditRepository
    directory: EmployeeDirectory
    holidays: HolidayCalendar

    @classmethod
    def for_session(cls, session: AsyncSession) -> Repositories:
        return cls(
            session=session,
            policies=SqlPolicyRepository(session),
            balances=SqlBalanceRepository(session),
            requests=SqlRequestRepository(session),
            audit=SqlAuditRepository(session),
            directory=SqlEmployeeDirectory(session),
            holidays=SqlHolidayCalendar(session),
        )
