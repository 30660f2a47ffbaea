"""Approval Workflow Engine — request state machine, approver authority and sequencing.

    PENDING ──approve──▶ APPROVED ──cancel──▶ CANCELLED
       │  └──reject───▶ REJECTED
       └──────cancel──▶ CANCELLED

REJECTED and CANCELLED are terminal. The engine only mutates the request
row and reports which ledger movement the transition needs; the service
applies that movement in the same unit of work.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from timeoff.common.constants import (
    ApprovalAction,
    ApprovalLevel,
    ApproverRole,
    AuditAction,
    EmployeeRole,
    LeaveStatus,
    StepStatus,
    TERMINAL_STATUSES,
)
from timeoff.common.exceptions import (
    AlreadyTerminal,
    AuthorityError,
    ManagerApprovalRequired,
    StateConflict,
    StepAlreadyComplete,
)
from timeoff.config import settings
from timeoff.directory.models import Employee
from timeoff.leave.models import LeavePolicy, LeaveRequest

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z]+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Transition:
    """Outcome of one workflow step.

    ``ledger`` names the balance movement to apply (``commit``, ``release``,
    ``unwind``) or is None when the ledger is untouched. ``replay`` marks an
    idempotent repeat that must not be audited again.
    """

    action: Optional[AuditAction]
    ledger: Optional[str] = None
    replay: bool = False
    context: dict[str, Any] = field(default_factory=dict)


# ── Authority ───────────────────────────────────────────────────────

def is_manager_of(approver: Employee, employee: Employee) -> bool:
    """Direct reporting manager, or a manager in the employee's department."""
    if employee.reporting_manager_id == approver.id:
        return True
    same_department = bool(approver.department) and approver.department == employee.department
    title = (approver.job_title or "").lower()
    return same_department and ("manager" in title or approver.role == EmployeeRole.manager)


def is_hr(approver: Employee) -> bool:
    if approver.role == EmployeeRole.hr:
        return True
    if approver.department and approver.department.lower() == settings.HR_DEPARTMENT.lower():
        return True
    title = (approver.job_title or "").lower()
    return "hr" in _WORD.findall(title) or "human resource" in title


def can_auto_approve(total_days: Decimal, policy: LeavePolicy) -> bool:
    """Auto-approval conditions (``max_days``, ``max_consecutive``) are both upper bounds.

    An enabled policy without conditions never auto-approves.
    """
    conditions = policy.auto_approval_conditions
    if not policy.auto_approval_enabled or not conditions:
        return False
    for limit_name in ("max_days", "max_consecutive"):
        limit = conditions.get(limit_name)
        if limit not in (None, "") and total_days > Decimal(str(limit)):
            return False
    return True


class ApprovalWorkflow:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self.clock = clock

    # ── Creation ────────────────────────────────────────────────────

    @staticmethod
    def open(request: LeaveRequest, policy: LeavePolicy) -> None:
        """Set the approval steps a new PENDING request has to pass."""
        request.status = LeaveStatus.pending
        level = policy.approval_level
        request.manager_approval_status = (
            StepStatus.pending
            if level in (ApprovalLevel.auto, ApprovalLevel.manager, ApprovalLevel.both)
            else None
        )
        request.hr_approval_status = (
            StepStatus.pending if level in (ApprovalLevel.hr, ApprovalLevel.both) else None
        )

    def auto_approve(self, request: LeaveRequest) -> Transition:
        now = self.clock()
        request.status = LeaveStatus.approved
        request.final_approved_by = None
        request.final_approved_at = now
        for step in ("manager_approval_status", "hr_approval_status"):
            if getattr(request, step) is not None:
                setattr(request, step, StepStatus.approved)
        logger.info("Leave request %s auto-approved", request.id)
        return Transition(AuditAction.approved, ledger="commit", context={"auto_approved": True})

    # ── Approve / reject ────────────────────────────────────────────

    def decide(
        self,
        request: LeaveRequest,
        policy: LeavePolicy,
        requester: Employee,
        approver: Employee,
        role: ApproverRole,
        action: ApprovalAction,
        comments: Optional[str] = None,
    ) -> Transition:
        """Apply an approver's decision to a request re-read inside the unit of work."""
        if request.status != LeaveStatus.pending:
            if (
                action == ApprovalAction.approve
                and request.status == LeaveStatus.approved
                and request.final_approved_by == approver.id
            ):
                return Transition(None, replay=True)
            raise StateConflict(
                f"Leave request '{request.id}' is {request.status.value}; "
                f"cannot {action.value} it."
            )

        if approver.id == request.employee_id:
            raise AuthorityError("You cannot approve or reject your own leave request.")
        context = self._authorize(policy, requester, approver, role)

        if action == ApprovalAction.reject:
            return self._reject(request, approver, role, comments, context)
        return self._approve(request, policy, approver, role, comments, context)

    def _authorize(
        self,
        policy: LeavePolicy,
        requester: Employee,
        approver: Employee,
        role: ApproverRole,
    ) -> dict[str, Any]:
        level = policy.approval_level
        if role == ApproverRole.manager:
            if level == ApprovalLevel.hr:
                raise AuthorityError("Only HR can act on this leave type.")
            if not is_manager_of(approver, requester):
                raise AuthorityError(
                    "Insufficient authority to act on this leave request as manager."
                )
            if requester.reporting_manager_id and requester.reporting_manager_id != approver.id:
                return {
                    "delegation": {
                        "delegated_for": str(requester.reporting_manager_id),
                        "reason": "Manager delegation",
                    }
                }
            return {}

        if not is_hr(approver):
            raise AuthorityError("Insufficient authority to act on this leave request as HR.")
        return {}

    def _approve(
        self,
        request: LeaveRequest,
        policy: LeavePolicy,
        approver: Employee,
        role: ApproverRole,
        comments: Optional[str],
        context: dict[str, Any],
    ) -> Transition:
        now = self.clock()
        context = {**context, "approver_role": role.value, "comments": comments}

        if policy.approval_level == ApprovalLevel.both:
            if role == ApproverRole.manager:
                if request.manager_approval_status == StepStatus.approved:
                    raise StepAlreadyComplete("manager")
                self._stamp_manager(request, approver, now, comments, StepStatus.approved)
                logger.info("Manager step approved for leave request %s", request.id)
                return Transition(AuditAction.approved, context={**context, "step": "manager"})
            if request.manager_approval_status != StepStatus.approved:
                raise ManagerApprovalRequired()
            if request.hr_approval_status == StepStatus.approved:
                raise StepAlreadyComplete("hr")

        if role == ApproverRole.manager:
            self._stamp_manager(request, approver, now, comments, StepStatus.approved)
        else:
            self._stamp_hr(request, approver, now, comments, StepStatus.approved)
        request.status = LeaveStatus.approved
        request.final_approved_by = approver.id
        request.final_approved_at = now
        logger.info("Leave request %s approved by %s (%s)", request.id, approver.id, role.value)
        return Transition(AuditAction.approved, ledger="commit", context={**context, "step": "final"})

    def _reject(
        self,
        request: LeaveRequest,
        approver: Employee,
        role: ApproverRole,
        comments: Optional[str],
        context: dict[str, Any],
    ) -> Transition:
        now = self.clock()
        if role == ApproverRole.manager:
            self._stamp_manager(request, approver, now, comments, StepStatus.rejected)
        else:
            self._stamp_hr(request, approver, now, comments, StepStatus.rejected)
        request.status = LeaveStatus.rejected
        request.rejected_by = approver.id
        request.rejected_at = now
        request.rejection_reason = comments
        logger.info("Leave request %s rejected by %s (%s)", request.id, approver.id, role.value)
        return Transition(
            AuditAction.rejected,
            ledger="release",
            context={**context, "approver_role": role.value, "comments": comments},
        )

    @staticmethod
    def _stamp_manager(request, approver, now, comments, status) -> None:
        request.manager_approval_status = status
        request.manager_approved_by = approver.id
        request.manager_approved_at = now
        request.manager_comments = comments

    @staticmethod
    def _stamp_hr(request, approver, now, comments, status) -> None:
        request.hr_approval_status = status
        request.hr_approved_by = approver.id
        request.hr_approved_at = now
        request.hr_comments = comments

    # ── Cancel ──────────────────────────────────────────────────────

    def cancel(
        self,
        request: LeaveRequest,
        requester: Employee,
        actor: Employee,
        reason: str,
    ) -> Transition:
        if request.status in TERMINAL_STATUSES:
            raise AlreadyTerminal(request.id, request.status.value)

        allowed = (
            actor.id == request.employee_id
            or actor.id == requester.reporting_manager_id
            or actor.role in (EmployeeRole.hr, EmployeeRole.admin)
        )
        if not allowed:
            raise AuthorityError("Only the employee, their manager, HR or an admin may cancel.")

        previous = request.status
        request.status = LeaveStatus.cancelled
        request.cancelled_by = actor.id
        request.cancelled_at = self.clock()
        request.cancellation_reason = reason
        logger.info("Leave request %s cancelled by %s (was %s)", request.id, actor.id, previous.value)
        return Transition(
            AuditAction.cancelled,
            ledger="unwind" if previous == LeaveStatus.approved else "release",
            context={"previous_status": previous.value, "reason": reason},
        )
