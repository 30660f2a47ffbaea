"""Leave service layer — the public operations of the time-off core.

Business logic:
  - Leave request creation: validation, overlap check, balance reservation,
    optional auto-approval
  - Approve / reject with single, HR-only or two-level (manager then HR) sequencing
  - Cancellation with pending release or approved unwind
  - Balance administration (open, list, fiscal-year roll-over)
  - Policy registry operations, listings and audit trail reads

Every mutating operation is one unit of work: the per-key locks are taken
first, then a session and transaction are opened, and everything (request
row, ledger row, audit row, event) commits or rolls back together.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, AsyncIterator, Callable, Hashable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from timeoff.common.constants import (
    DEFAULT_PAGE_SIZE,
    SYSTEM_ACTOR,
    ApprovalAction,
    ApproverRole,
    AuditAction,
    EmployeeRole,
    LeaveStatus,
    LeaveType,
    RequestPriority,
    StepStatus,
)
from timeoff.common.exceptions import (
    AuthorityError,
    NotFoundException,
    StateConflict,
)
from timeoff.common.locks import KeyedLock
from timeoff.common.pagination import PaginationMeta, paginate
from timeoff.config import settings
from timeoff.directory.models import Employee
from timeoff.leave.events import EventEmitter, EventSink, LoggingEventSink
from timeoff.leave.ledger import BalanceLedger, fiscal_year_for
from timeoff.leave.models import LeaveRequest
from timeoff.leave.overlap import OverlapDetector
from timeoff.leave.policies import PolicyRegistry
from timeoff.leave.repositories import Repositories, SqlRequestRepository
from timeoff.leave.schemas import (
    LeaveAuditOut,
    LeaveBalanceCreate,
    LeaveBalanceOut,
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePolicyUpdate,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
)
from timeoff.leave.validator import (
    RequestValidator,
    validate_cancellation,
    validate_rejection,
)
from timeoff.leave.workflow import ApprovalWorkflow, can_auto_approve, is_hr, is_manager_of

logger = logging.getLogger(__name__)

# One registry per process so every service instance serializes on the same keys
_locks = KeyedLock(timeout=settings.LOCK_TIMEOUT_SECONDS)

_PRIORITY_RANK = {
    RequestPriority.high: 0,
    RequestPriority.medium: 1,
    RequestPriority.low: 2,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Actor:
    """Who is calling: an employee id and the role they act in."""

    employee_id: uuid.UUID
    role: EmployeeRole = EmployeeRole.employee


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations over an injected session factory and event sink."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        sink: Optional[EventSink] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = _utcnow,
        repositories: Callable[[AsyncSession], Repositories] = Repositories.for_session,
    ) -> None:
        self.session_factory = session_factory
        self.sink = sink or LoggingEventSink()
        self.locks = locks or _locks
        self.clock = clock
        self.repositories = repositories
        self.validator = RequestValidator(clock)
        self.workflow = ApprovalWorkflow(clock)

    # ─────────────────────────────────────────────────────────────────
    # Unit of work
    # ─────────────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _unit_of_work(self, keys: Iterable[Hashable]) -> AsyncIterator[Repositories]:
        """Locks, then session, then transaction; commit on success, rollback otherwise."""
        try:
            async with self.locks.hold(keys):
                async with self.session_factory() as session:
                    async with session.begin():
                        yield self.repositories(session)
        except StaleDataError as exc:
            raise StateConflict(
                "The record was modified concurrently; reload and try again."
            ) from exc

    @asynccontextmanager
    async def _read(self) -> AsyncIterator[Repositories]:
        async with self.session_factory() as session:
            yield self.repositories(session)

    @staticmethod
    def _balance_key(employee_id: uuid.UUID, policy_id: uuid.UUID, fiscal_year: int):
        return ("balance", employee_id, policy_id, fiscal_year)

    @staticmethod
    async def _employee(repos: Repositories, employee_id: uuid.UUID) -> Employee:
        employee = await repos.directory.get(employee_id)
        if employee is None or not employee.is_active:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def _request(repos: Repositories, request_id: uuid.UUID, *, lock: bool = False) -> LeaveRequest:
        if lock:
            request = await repos.requests.get_for_update(request_id)
        else:
            request = await repos.requests.get(request_id)
        if request is None:
            raise NotFoundException("Leave request", request_id)
        return request

    async def _request_keys(self, request_id: uuid.UUID) -> list[Hashable]:
        """Lock keys for a transition on an existing request (its balance key never changes)."""
        async with self._read() as repos:
            request = await self._request(repos, request_id)
            return [
                ("request", request.id),
                self._balance_key(request.employee_id, request.policy_id, request.fiscal_year),
            ]

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    async def create_request(self, data: LeaveRequestCreate, *, actor: Actor) -> LeaveRequestOut:
        """Validate, reserve balance and open a PENDING (or auto-approved) request."""
        if actor.employee_id != data.employee_id and actor.role not in (
            EmployeeRole.hr, EmployeeRole.admin,
        ):
            raise AuthorityError("You may only apply for leave on your own behalf.")

        fiscal_year = fiscal_year_for(data.start_date)
        keys = [
            ("employee", data.employee_id),
            self._balance_key(data.employee_id, data.policy_id, fiscal_year),
        ]
        async with self._unit_of_work(keys) as repos:
            # ── Load employee & policy ──────────────────────────────
            employee = await self._employee(repos, data.employee_id)
            policy = await PolicyRegistry(repos.policies).get(data.policy_id)

            # ── Rules, overlap, derived values ──────────────────────
            total_days = self.validator.validate(data, policy, employee)
            detector = OverlapDetector(repos.requests, repos.directory)
            await detector.ensure_no_overlap(employee.id, data.start_date, data.end_date)
            adjacent = await detector.find_adjacent(
                employee.id, data.start_date, data.end_date, data.leave_type
            )
            derived = await self.validator.derive(data, employee, repos.holidays)
            risk, colleagues_off = await detector.team_coverage_risk(
                employee, data.start_date, data.end_date
            )

            # ── Create leave request ────────────────────────────────
            request = LeaveRequest(
                employee_id=employee.id,
                policy_id=policy.id,
                leave_type=data.leave_type,
                start_date=data.start_date,
                end_date=data.end_date,
                is_half_day=data.is_half_day,
                half_day_session=data.half_day_session if data.is_half_day else None,
                total_days=total_days,
                business_days=derived.business_days,
                fiscal_year=derived.fiscal_year,
                reason=data.reason,
                work_handover=data.work_handover,
                attachments=[a.model_dump() for a in data.attachments],
                emergency_contact=(
                    data.emergency_contact.model_dump() if data.emergency_contact else None
                ),
                is_backdated=derived.is_backdated,
                is_emergency=derived.is_emergency,
                priority=derived.priority,
                applied_at=self.clock(),
            )
            self.workflow.open(request, policy)
            await repos.requests.add(request)

            # ── Reserve balance ─────────────────────────────────────
            ledger = BalanceLedger(repos.balances)
            key = request.balance_key
            reservation = await ledger.reserve(key, total_days, policy)

            # ── Audit ───────────────────────────────────────────────
            emitter = EventEmitter(repos.audit, self.sink)
            await emitter.emit(
                request,
                AuditAction.created,
                actor_id=actor.employee_id,
                actor_role=actor.role.value,
                context={
                    "ledger": reservation,
                    "total_days": str(total_days),
                    "business_days": str(derived.business_days),
                    "non_working_days": [d.isoformat() for d in derived.non_working_days],
                    "adjacent_requests": [str(r.id) for r in adjacent],
                    "team_coverage_risk": risk.value,
                    "colleagues_on_leave": colleagues_off,
                    "priority": derived.priority.value,
                    "ip_address": data.ip_address,
                    "user_agent": data.user_agent,
                },
            )

            # ── Auto-approval ───────────────────────────────────────
            if can_auto_approve(total_days, policy):
                transition = self.workflow.auto_approve(request)
                commit = await ledger.commit(key, total_days)
                await repos.requests.add(request)
                await emitter.emit(
                    request,
                    AuditAction.approved,
                    actor_id=SYSTEM_ACTOR,
                    actor_role="system",
                    context={**transition.context, "ledger": commit},
                )

            out = LeaveRequestOut.model_validate(request)

        logger.info(
            "Leave request %s created for employee %s: %s %s..%s (%s days) -> %s",
            out.id, out.employee_id, out.leave_type.value, out.start_date,
            out.end_date, out.total_days, out.status.value,
        )
        return out

    # ─────────────────────────────────────────────────────────────────
    # Approve / reject
    # ─────────────────────────────────────────────────────────────────

    async def approve(
        self,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        role: ApproverRole,
        action: ApprovalAction,
        comments: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Apply an APPROVE or REJECT decision at the approver's step."""
        validate_rejection(action, comments)
        keys = await self._request_keys(request_id)

        async with self._unit_of_work(keys) as repos:
            request = await self._request(repos, request_id, lock=True)
            policy = await repos.policies.get(request.policy_id)
            if policy is None:
                raise NotFoundException("Leave policy", request.policy_id)
            requester = await self._employee(repos, request.employee_id)
            approver = await self._employee(repos, approver_id)

            transition = self.workflow.decide(
                request, policy, requester, approver, role, action, comments
            )
            if transition.replay:
                logger.info(
                    "Repeated approval of leave request %s by %s ignored", request.id, approver_id
                )
                return LeaveRequestOut.model_validate(request)

            context: dict[str, Any] = dict(transition.context)
            if transition.ledger:
                movement = getattr(BalanceLedger(repos.balances), transition.ledger)
                context["ledger"] = await movement(request.balance_key, request.total_days)

            await repos.requests.add(request)
            await EventEmitter(repos.audit, self.sink).emit(
                request,
                transition.action,
                actor_id=approver.id,
                actor_role=role.value,
                context=context,
            )
            return LeaveRequestOut.model_validate(request)

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    async def cancel(
        self,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: str,
    ) -> LeaveRequestOut:
        """Cancel a pending (release) or approved (unwind) request."""
        keys = await self._request_keys(request_id)

        async with self._unit_of_work(keys) as repos:
            request = await self._request(repos, request_id, lock=True)
            requester = await self._employee(repos, request.employee_id)
            actor = await self._employee(repos, actor_id)

            transition = self.workflow.cancel(request, requester, actor, reason)
            validate_cancellation(reason)
            ledger = BalanceLedger(repos.balances)
            movement = getattr(ledger, transition.ledger)
            context = {
                **transition.context,
                "ledger": await movement(request.balance_key, request.total_days),
            }

            await repos.requests.add(request)
            await EventEmitter(repos.audit, self.sink).emit(
                request,
                AuditAction.cancelled,
                actor_id=actor.id,
                actor_role=actor.role.value,
                context=context,
            )
            return LeaveRequestOut.model_validate(request)

    # ─────────────────────────────────────────────────────────────────
    # Update (pending only)
    # ─────────────────────────────────────────────────────────────────

    async def update_request(
        self,
        request_id: uuid.UUID,
        changes: LeaveRequestUpdate,
        *,
        actor: Actor,
    ) -> LeaveRequestOut:
        """Let the owner edit reason, handover, attachments or contact while PENDING."""
        async with self._unit_of_work([("request", request_id)]) as repos:
            request = await self._request(repos, request_id, lock=True)
            if request.employee_id != actor.employee_id:
                raise AuthorityError("Only the requesting employee may edit this leave request.")
            if request.status != LeaveStatus.pending:
                raise StateConflict(
                    f"Leave request '{request.id}' is {request.status.value}; "
                    "only pending requests can be edited."
                )

            supplied = sorted(changes.model_fields_set)
            values = changes.model_dump(include=set(supplied))
            for name in supplied:
                setattr(request, name, values[name])
            policy = await repos.policies.get(request.policy_id)
            employee = await self._employee(repos, request.employee_id)
            self.validator.validate_edit(request, policy, employee)

            await repos.requests.add(request)
            await EventEmitter(repos.audit, self.sink).emit(
                request,
                AuditAction.updated,
                actor_id=actor.employee_id,
                actor_role=actor.role.value,
                context={"changed_fields": supplied},
            )
            return LeaveRequestOut.model_validate(request)

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    async def get_request(self, request_id: uuid.UUID) -> LeaveRequestOut:
        async with self._read() as repos:
            return LeaveRequestOut.model_validate(await self._request(repos, request_id))

    async def list_requests(
        self,
        *,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
        sort: Optional[str] = None,
    ) -> tuple[list[LeaveRequestOut], PaginationMeta]:
        query = SqlRequestRepository.search(
            employee_id=employee_id,
            status=status,
            leave_type=leave_type,
            from_date=from_date,
            to_date=to_date,
        )
        async with self._read() as repos:
            rows, meta = await paginate(
                repos.session, query, model=LeaveRequest,
                page=page, page_size=page_size, sort=sort,
            )
            return [LeaveRequestOut.model_validate(r) for r in rows], meta

    async def pending_approvals(self, approver_id: uuid.UUID) -> list[LeaveRequestOut]:
        """PENDING requests whose next open step this approver may act on."""
        async with self._read() as repos:
            approver = await self._employee(repos, approver_id)
            result = await repos.session.execute(
                select(LeaveRequest, Employee)
                .join(Employee, Employee.id == LeaveRequest.employee_id)
                .where(
                    LeaveRequest.status == LeaveStatus.pending,
                    LeaveRequest.employee_id != approver.id,
                )
                .order_by(LeaveRequest.applied_at)
            )
            approver_is_hr = is_hr(approver)
            visible: list[LeaveRequestOut] = []
            for request, requester in result.all():
                manager_turn = request.manager_approval_status == StepStatus.pending
                # HR may also finalize manager-only requests
                hr_turn = (
                    request.hr_approval_status == StepStatus.pending
                    and request.manager_approval_status in (None, StepStatus.approved)
                ) or (request.hr_approval_status is None and manager_turn)
                if (manager_turn and is_manager_of(approver, requester)) or (
                    hr_turn and approver_is_hr
                ):
                    visible.append(LeaveRequestOut.model_validate(request))
            visible.sort(key=lambda r: _PRIORITY_RANK[r.priority])
            return visible

    async def get_audit_trail(self, request_id: uuid.UUID) -> list[LeaveAuditOut]:
        async with self._read() as repos:
            await self._request(repos, request_id)
            entries = await repos.audit.list_for_request(request_id)
            return [LeaveAuditOut.model_validate(e) for e in entries]

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    async def get_balance(
        self, employee_id: uuid.UUID, policy_id: uuid.UUID, fiscal_year: int
    ) -> LeaveBalanceOut:
        async with self._read() as repos:
            balance = await BalanceLedger(repos.balances).get(
                (employee_id, policy_id, fiscal_year)
            )
            return LeaveBalanceOut.model_validate(balance)

    async def list_balances(
        self, employee_id: uuid.UUID, fiscal_year: Optional[int] = None
    ) -> list[LeaveBalanceOut]:
        async with self._read() as repos:
            balances = await BalanceLedger(repos.balances).list_for_employee(
                employee_id, fiscal_year
            )
            return [LeaveBalanceOut.model_validate(b) for b in balances]

    async def create_balance(self, data: LeaveBalanceCreate) -> LeaveBalanceOut:
        keys = [self._balance_key(data.employee_id, data.policy_id, data.fiscal_year)]
        async with self._unit_of_work(keys) as repos:
            await self._employee(repos, data.employee_id)
            policy = await PolicyRegistry(repos.policies).get(data.policy_id)
            balance = await BalanceLedger(repos.balances).create_balance(
                data.employee_id,
                policy,
                data.fiscal_year,
                total_entitlement=data.total_entitlement,
                carried_forward=data.carried_forward,
            )
            return LeaveBalanceOut.model_validate(balance)

    async def roll_over_balance(
        self, employee_id: uuid.UUID, policy_id: uuid.UUID, from_fiscal_year: int
    ) -> LeaveBalanceOut:
        """Open ``from_fiscal_year + 1`` with the carry-forward the policy allows."""
        keys = [
            self._balance_key(employee_id, policy_id, from_fiscal_year),
            self._balance_key(employee_id, policy_id, from_fiscal_year + 1),
        ]
        async with self._unit_of_work(keys) as repos:
            policy = await PolicyRegistry(repos.policies).get(policy_id)
            balance = await BalanceLedger(repos.balances).roll_over(
                employee_id, policy, from_fiscal_year
            )
            return LeaveBalanceOut.model_validate(balance)

    # ─────────────────────────────────────────────────────────────────
    # Policies
    # ─────────────────────────────────────────────────────────────────

    async def create_policy(
        self, data: LeavePolicyCreate, *, created_by: Optional[uuid.UUID] = None
    ) -> LeavePolicyOut:
        async with self._unit_of_work([("policy_code", data.code)]) as repos:
            policy = await PolicyRegistry(repos.policies).create(data, created_by=created_by)
            return LeavePolicyOut.model_validate(policy)

    async def update_policy(
        self, policy_id: uuid.UUID, changes: LeavePolicyUpdate
    ) -> LeavePolicyOut:
        async with self._unit_of_work([("policy", policy_id)]) as repos:
            policy = await PolicyRegistry(repos.policies).update(policy_id, changes)
            return LeavePolicyOut.model_validate(policy)

    async def delete_policy(self, policy_id: uuid.UUID) -> LeavePolicyOut:
        async with self._unit_of_work([("policy", policy_id)]) as repos:
            policy = await PolicyRegistry(repos.policies).delete(policy_id)
            return LeavePolicyOut.model_validate(policy)

    async def get_policy(self, policy_id: uuid.UUID) -> LeavePolicyOut:
        async with self._read() as repos:
            return LeavePolicyOut.model_validate(await PolicyRegistry(repos.policies).get(policy_id))

    async def list_policies(
        self,
        *,
        leave_type: Optional[LeaveType] = None,
        location: Optional[str] = None,
        department: Optional[str] = None,
        role: Optional[str] = None,
    ) -> list[LeavePolicyOut]:
        async with self._read() as repos:
            policies = await PolicyRegistry(repos.policies).list_applicable(
                leave_type=leave_type, location=location, department=department, role=role,
            )
            return [LeavePolicyOut.model_validate(p) for p in policies]
