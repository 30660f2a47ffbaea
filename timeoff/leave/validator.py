"""Request Validator — ordered, short-circuiting business rules for new leave requests.

Rules run in a fixed order and the first failure raises
``LeaveValidationError`` carrying the rule name:

    1. date_range            5. notice_period
    2. policy_applicability  6. half_day
    3. tenure                7. documentation
    4. quota                 8. emergency_contact

The validator also derives the values stored on the request (total and
business days, emergency/backdated flags, priority).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from timeoff.common.constants import (
    EMERGENCY_TYPES,
    TENURE_GATED_TYPES,
    ApprovalAction,
    EmployeeRole,
    LeaveType,
    RequestPriority,
)
from timeoff.common.exceptions import LeaveValidationError
from timeoff.config import settings
from timeoff.directory.models import Employee
from timeoff.directory.service import HolidayCalendar
from timeoff.leave.ledger import fiscal_year_for
from timeoff.leave.models import LeavePolicy, LeaveRequest
from timeoff.leave.policies import matches_applicability
from timeoff.leave.schemas import Attachment, LeaveRequestCreate

logger = logging.getLogger(__name__)

AVG_DAYS_PER_MONTH = 30.44
HALF_DAY = Decimal("0.5")
MEDICAL_MARKERS = ("medical", "doctor")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def tenure_months(hire_date: date, today: date) -> int:
    """Whole months employed, using the average month length."""
    return int((today - hire_date).days // AVG_DAYS_PER_MONTH)


def _as_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


@dataclass
class DerivedValues:
    total_days: Decimal
    business_days: Decimal
    fiscal_year: int
    is_emergency: bool
    is_backdated: bool
    priority: RequestPriority
    non_working_days: list[date] = field(default_factory=list)


@dataclass
class _Check:
    data: LeaveRequestCreate
    policy: LeavePolicy
    employee: Employee
    total_days: Decimal
    now: datetime

    @property
    def today(self) -> date:
        return self.now.date()


class RequestValidator:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self.clock = clock
        self.rules: list[Callable[[_Check], None]] = [
            self._date_range,
            self._policy_applicability,
            self._tenure,
            self._quota,
            self._notice_period,
            self._half_day,
            self._documentation,
            self._emergency_contact,
        ]

    # ── Derived values ──────────────────────────────────────────────

    @staticmethod
    def total_days(start: date, end: date, is_half_day: bool) -> Decimal:
        if is_half_day:
            return HALF_DAY
        return Decimal(max((end - start).days + 1, 0))

    def is_emergency(self, leave_type: LeaveType, start: date) -> bool:
        """SICK or BEREAVEMENT leave starting within the notice window or already started."""
        if leave_type not in EMERGENCY_TYPES:
            return False
        starts_at = datetime.combine(start, time.min, tzinfo=timezone.utc)
        return starts_at - self.clock() < timedelta(hours=settings.EMERGENCY_NOTICE_HOURS)

    async def derive(
        self,
        data: LeaveRequestCreate,
        employee: Employee,
        holidays: HolidayCalendar,
    ) -> DerivedValues:
        today = self.clock().date()
        total = self.total_days(data.start_date, data.end_date, data.is_half_day)

        off_days = await holidays.holidays_between(
            data.start_date, data.end_date, employee.location
        )
        business = Decimal(0)
        non_working: list[date] = []
        day = data.start_date
        while day <= data.end_date:
            if day.weekday() >= 5 or day in off_days:
                non_working.append(day)
            else:
                business += HALF_DAY if data.is_half_day else 1
            day += timedelta(days=1)
        if non_working:
            logger.warning(
                "Leave %s..%s for employee %s includes %d weekend/holiday day(s)",
                data.start_date, data.end_date, employee.id, len(non_working),
            )

        emergency = self.is_emergency(data.leave_type, data.start_date)
        backdated = data.start_date < today
        if emergency:
            priority = RequestPriority.high
        elif backdated or employee.role in (EmployeeRole.manager, EmployeeRole.admin):
            priority = RequestPriority.medium
        else:
            priority = RequestPriority.low

        return DerivedValues(
            total_days=total,
            business_days=business,
            fiscal_year=fiscal_year_for(data.start_date),
            is_emergency=emergency,
            is_backdated=backdated,
            priority=priority,
            non_working_days=non_working,
        )

    # ── Entry point ─────────────────────────────────────────────────

    def validate(
        self, data: LeaveRequestCreate, policy: LeavePolicy, employee: Employee
    ) -> Decimal:
        """Run every rule in order; return the request's total days."""
        check = _Check(
            data=data,
            policy=policy,
            employee=employee,
            total_days=self.total_days(data.start_date, data.end_date, data.is_half_day),
            now=self.clock(),
        )
        for rule in self.rules:
            rule(check)
        return check.total_days

    def validate_edit(
        self, request: LeaveRequest, policy: LeavePolicy, employee: Employee
    ) -> None:
        """Re-check documentation and emergency contact after an owner edit."""
        data = LeaveRequestCreate.model_construct(
            employee_id=request.employee_id,
            policy_id=request.policy_id,
            leave_type=request.leave_type,
            start_date=request.start_date,
            end_date=request.end_date,
            is_half_day=request.is_half_day,
            attachments=[Attachment.model_validate(a) for a in request.attachments or []],
            emergency_contact=request.emergency_contact,
        )
        check = _Check(
            data=data,
            policy=policy,
            employee=employee,
            total_days=Decimal(request.total_days),
            now=self.clock(),
        )
        self._documentation(check)
        self._emergency_contact(check)

    # ── Rules ───────────────────────────────────────────────────────

    @staticmethod
    def _date_range(c: _Check) -> None:
        data = c.data
        if data.start_date > data.end_date:
            raise LeaveValidationError("date_range", "End date must be on or after start date.")
        if data.start_date < c.today - timedelta(days=settings.MAX_BACKDATE_DAYS):
            raise LeaveValidationError(
                "date_range", "Leave request cannot be more than 1 year in the past."
            )
        if data.end_date > c.today + timedelta(days=settings.MAX_ADVANCE_DAYS):
            raise LeaveValidationError(
                "date_range", "Leave request cannot be more than 1 year in the future."
            )

    @staticmethod
    def _policy_applicability(c: _Check) -> None:
        policy, emp = c.policy, c.employee
        if c.data.leave_type != policy.leave_type:
            raise LeaveValidationError(
                "policy_applicability",
                f"Leave type {c.data.leave_type.value} does not match policy {policy.code}.",
            )
        if not matches_applicability(policy.applicable_locations, emp.location):
            raise LeaveValidationError(
                "policy_applicability", "Leave policy not applicable to your location."
            )
        if not matches_applicability(policy.applicable_departments, emp.department):
            raise LeaveValidationError(
                "policy_applicability", "Leave policy not applicable to your department."
            )
        role = emp.role.value if emp.role else None
        if not matches_applicability(policy.applicable_roles, role, emp.job_title):
            raise LeaveValidationError(
                "policy_applicability", "Leave policy not applicable to your role."
            )
        start = c.data.start_date
        if (policy.effective_from and start < policy.effective_from) or (
            policy.effective_until and start > policy.effective_until
        ):
            raise LeaveValidationError(
                "policy_applicability", "Leave policy is not in effect for the requested dates."
            )

    @staticmethod
    def _tenure(c: _Check) -> None:
        if c.data.leave_type not in TENURE_GATED_TYPES:
            return
        if tenure_months(c.employee.hire_date, c.today) < settings.MIN_TENURE_MONTHS:
            raise LeaveValidationError(
                "tenure",
                f"Minimum {settings.MIN_TENURE_MONTHS} months of employment required "
                f"for {c.data.leave_type.value} leave.",
            )

    @staticmethod
    def _quota(c: _Check) -> None:
        quota = c.policy.quota
        if quota is not None and c.total_days > Decimal(quota):
            raise LeaveValidationError(
                "quota", f"Maximum {quota} days allowed for this leave type."
            )

    def _notice_period(self, c: _Check) -> None:
        notice = c.policy.notice_period_days or 0
        if notice <= 0:
            return
        required = c.today + timedelta(days=notice)
        if c.data.start_date < required and not self.is_emergency(
            c.data.leave_type, c.data.start_date
        ):
            raise LeaveValidationError(
                "notice_period",
                f"Minimum {notice} days advance notice required. "
                f"Required notice date: {required.isoformat()}.",
            )

    @staticmethod
    def _half_day(c: _Check) -> None:
        data = c.data
        if not data.is_half_day:
            return
        if not c.policy.half_day_allowed:
            raise LeaveValidationError(
                "half_day", "Half-day leave not permitted for this leave type."
            )
        if data.start_date != data.end_date:
            raise LeaveValidationError(
                "half_day", "Half day leave can only be applied for a single day."
            )
        if data.half_day_session is None:
            raise LeaveValidationError(
                "half_day", "Half day session is required for half day leaves."
            )

    @staticmethod
    def _documentation(c: _Check) -> None:
        policy = c.policy
        if not policy.documentation_required:
            return
        rules = policy.documentation_rules or {}
        minimum = _as_decimal(rules.get("minimum_days")) or Decimal(0)
        if c.total_days < minimum:
            return

        attachments = c.data.attachments
        if not attachments:
            raise LeaveValidationError(
                "documentation",
                f"Supporting documentation required for leave requests of {minimum} days or more.",
            )
        if (
            rules.get("medical_cert_required")
            and c.data.leave_type == LeaveType.sick
            and c.total_days >= settings.MEDICAL_CERT_MIN_DAYS
        ):
            has_cert = any(
                (a.tag or "").lower() == "medical"
                or any(m in a.filename.lower() for m in MEDICAL_MARKERS)
                for a in attachments
            )
            if not has_cert:
                raise LeaveValidationError(
                    "documentation",
                    f"Medical certificate required for sick leave of "
                    f"{settings.MEDICAL_CERT_MIN_DAYS}+ days.",
                )

    @staticmethod
    def _emergency_contact(c: _Check) -> None:
        if c.total_days >= settings.EMERGENCY_CONTACT_MIN_DAYS and c.data.emergency_contact is None:
            raise LeaveValidationError(
                "emergency_contact",
                f"Emergency contact required for leave requests of "
                f"{settings.EMERGENCY_CONTACT_MIN_DAYS}+ days.",
            )


# ── Transition-specific checks ──────────────────────────────────────

def validate_rejection(action: ApprovalAction, comments: Optional[str]) -> None:
    if action == ApprovalAction.reject and not (comments or "").strip():
        raise LeaveValidationError(
            "rejection_comment", "Comments are required when rejecting a leave request."
        )


def validate_cancellation(reason: Optional[str]) -> None:
    if not (reason or "").strip():
        raise LeaveValidationError(
            "cancellation_reason", "A reason is required to cancel a leave request."
        )
