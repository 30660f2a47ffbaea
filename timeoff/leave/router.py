"""Leave router — requests, approvals, cancellations, balances and policies.

Caller identity comes from the ``X-Employee-Id`` / ``X-Role`` headers set by
the upstream gateway. HR/admin-only endpoints enforce role checks; approval
authority itself is decided by the workflow engine.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from timeoff.common.constants import EmployeeRole, LeaveStatus, LeaveType
from timeoff.common.exceptions import ForbiddenException, ValidationException
from timeoff.common.pagination import PaginatedResponse, PaginationParams
from timeoff.database import get_session_factory
from timeoff.leave.events import EventSink, LoggingEventSink
from timeoff.leave.schemas import (
    LeaveApprovalRequest,
    LeaveAuditOut,
    LeaveBalanceCreate,
    LeaveBalanceOut,
    LeaveCancelRequest,
    LeavePolicyCreate,
    LeavePolicyOut,
    LeavePolicyUpdate,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    RollOverRequest,
)
from timeoff.leave.service import Actor, LeaveService

router = APIRouter(prefix="", tags=["leave"])

_PRIVILEGED = (EmployeeRole.manager, EmployeeRole.hr, EmployeeRole.admin)


# ── Dependencies ────────────────────────────────────────────────────

def get_event_sink() -> EventSink:
    return LoggingEventSink()


def get_leave_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    sink: EventSink = Depends(get_event_sink),
) -> LeaveService:
    return LeaveService(session_factory, sink=sink)


def get_actor(
    x_employee_id: str = Header(..., alias="X-Employee-Id"),
    x_role: str = Header("employee", alias="X-Role"),
) -> Actor:
    try:
        employee_id = uuid.UUID(x_employee_id)
    except ValueError:
        raise ValidationException("actor", "X-Employee-Id must be a UUID.")
    try:
        role = EmployeeRole(x_role.lower())
    except ValueError:
        raise ValidationException("actor", f"Unknown role '{x_role}'.")
    return Actor(employee_id=employee_id, role=role)


def require_role(*roles: EmployeeRole):
    """Dependency factory: reject callers whose role is not in *roles*."""

    def _check(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in roles:
            raise ForbiddenException()
        return actor

    return _check


# ── Requests ────────────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=status.HTTP_201_CREATED)
async def create_request(
    body: LeaveRequestCreate,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Apply for leave: validates rules, checks overlap, reserves balance."""
    return await service.create_request(body, actor=actor)


@router.get("/requests", response_model=PaginatedResponse[LeaveRequestOut])
async def list_requests(
    employee_id: Optional[uuid.UUID] = Query(None),
    status_filter: Optional[LeaveStatus] = Query(None, alias="status"),
    leave_type: Optional[LeaveType] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    pagination: PaginationParams = Depends(PaginationParams),
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """List leave requests; plain employees only ever see their own."""
    if actor.role not in _PRIVILEGED:
        employee_id = actor.employee_id
    data, meta = await service.list_requests(
        employee_id=employee_id,
        status=status_filter,
        leave_type=leave_type,
        from_date=from_date,
        to_date=to_date,
        page=pagination.page,
        page_size=pagination.page_size,
        sort=pagination.sort,
    )
    return PaginatedResponse(data=data, meta=meta)


@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    request = await service.get_request(request_id)
    if actor.role not in _PRIVILEGED and request.employee_id != actor.employee_id:
        raise ForbiddenException()
    return request


@router.patch("/requests/{request_id}", response_model=LeaveRequestOut)
async def update_request(
    request_id: uuid.UUID,
    body: LeaveRequestUpdate,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Edit reason, handover, attachments or emergency contact of a pending request."""
    return await service.update_request(request_id, body, actor=actor)


@router.post("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_request(
    request_id: uuid.UUID,
    body: LeaveApprovalRequest,
    actor: Actor = Depends(require_role(*_PRIVILEGED)),
    service: LeaveService = Depends(get_leave_service),
):
    """Approve or reject at the caller's step (manager or HR)."""
    return await service.approve(
        request_id, actor.employee_id, body.approver_role, body.action, body.comments
    )


@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: uuid.UUID,
    body: LeaveCancelRequest,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    """Cancel a pending or approved request and restore the balance."""
    return await service.cancel(request_id, actor.employee_id, body.reason)


@router.get("/requests/{request_id}/audit", response_model=list[LeaveAuditOut])
async def get_audit_trail(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    request = await service.get_request(request_id)
    if actor.role not in _PRIVILEGED and request.employee_id != actor.employee_id:
        raise ForbiddenException()
    return await service.get_audit_trail(request_id)


@router.get("/approvals/pending", response_model=list[LeaveRequestOut])
async def pending_approvals(
    actor: Actor = Depends(require_role(*_PRIVILEGED)),
    service: LeaveService = Depends(get_leave_service),
):
    """Pending requests waiting on the caller's approval step."""
    return await service.pending_approvals(actor.employee_id)


# ── Balances ────────────────────────────────────────────────────────

@router.get("/balances", response_model=list[LeaveBalanceOut])
async def list_balances(
    employee_id: Optional[uuid.UUID] = Query(None),
    fiscal_year: Optional[int] = Query(None),
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    if employee_id is None or actor.role not in _PRIVILEGED:
        employee_id = actor.employee_id
    return await service.list_balances(employee_id, fiscal_year)


@router.get(
    "/balances/{employee_id}/{policy_id}/{fiscal_year}",
    response_model=LeaveBalanceOut,
)
async def get_balance(
    employee_id: uuid.UUID,
    policy_id: uuid.UUID,
    fiscal_year: int,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    if actor.role not in _PRIVILEGED and employee_id != actor.employee_id:
        raise ForbiddenException()
    return await service.get_balance(employee_id, policy_id, fiscal_year)


@router.post("/balances", response_model=LeaveBalanceOut, status_code=status.HTTP_201_CREATED)
async def create_balance(
    body: LeaveBalanceCreate,
    actor: Actor = Depends(require_role(EmployeeRole.hr, EmployeeRole.admin)),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.create_balance(body)


@router.post(
    "/balances/roll-over",
    response_model=LeaveBalanceOut,
    status_code=status.HTTP_201_CREATED,
)
async def roll_over_balance(
    body: RollOverRequest,
    actor: Actor = Depends(require_role(EmployeeRole.hr, EmployeeRole.admin)),
    service: LeaveService = Depends(get_leave_service),
):
    """Open next fiscal year's balance with the carry-forward the policy allows."""
    return await service.roll_over_balance(
        body.employee_id, body.policy_id, body.from_fiscal_year
    )


# ── Policies ────────────────────────────────────────────────────────

@router.get("/policies", response_model=list[LeavePolicyOut])
async def list_policies(
    leave_type: Optional[LeaveType] = Query(None),
    location: Optional[str] = Query(None),
    department: Optional[str] = Query(None),
    role: Optional[str] = Query(None),
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.list_policies(
        leave_type=leave_type, location=location, department=department, role=role
    )


@router.get("/policies/{policy_id}", response_model=LeavePolicyOut)
async def get_policy(
    policy_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.get_policy(policy_id)


@router.post("/policies", response_model=LeavePolicyOut, status_code=status.HTTP_201_CREATED)
async def create_policy(
    body: LeavePolicyCreate,
    actor: Actor = Depends(require_role(EmployeeRole.hr, EmployeeRole.admin)),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.create_policy(body, created_by=actor.employee_id)


@router.patch("/policies/{policy_id}", response_model=LeavePolicyOut)
async def update_policy(
    policy_id: uuid.UUID,
    body: LeavePolicyUpdate,
    actor: Actor = Depends(require_role(EmployeeRole.hr, EmployeeRole.admin)),
    service: LeaveService = Depends(get_leave_service),
):
    return await service.update_policy(policy_id, body)


@router.delete("/policies/{policy_id}", response_model=LeavePolicyOut)
async def delete_policy(
    policy_id: uuid.UUID,
    actor: Actor = Depends(require_role(EmployeeRole.hr, EmployeeRole.admin)),
    service: LeaveService = Depends(get_leave_service),
):
    """Soft-deactivate a policy that no pending or approved request uses."""
    return await service.delete_policy(policy_id)
