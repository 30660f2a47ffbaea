"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request → request bodies (write)
  - *Out                         → response bodies (read)

Business rules that carry a named failure (date range, half day, rejection
comment, ...) are enforced by the validator, not here, so they surface as
``LeaveValidationError`` rather than a 422.
"""

from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from timeoff.common.constants import (
    AccrualType,
    ApprovalAction,
    ApprovalLevel,
    ApproverRole,
    AuditAction,
    HalfDaySession,
    LeaveStatus,
    LeaveType,
    RequestPriority,
    StepStatus,
)

POLICY_CODE_PATTERN = re.compile(r"^[A-Z0-9_]+$")
PHONE_PATTERN = r"^\+?[\d\s\-()]+$"


# ═════════════════════════════════════════════════════════════════════
# Embedded / shared
# ═════════════════════════════════════════════════════════════════════


class DocumentationRules(BaseModel):
    minimum_days: Optional[Decimal] = Field(None, ge=0)
    medical_cert_required: bool = False


class AutoApprovalConditions(BaseModel):
    max_days: Optional[Decimal] = Field(None, ge=0, le=30)
    max_consecutive: Optional[Decimal] = Field(None, ge=0, le=30)


class Attachment(BaseModel):
    filename: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    size: int = Field(0, ge=0)
    mime_type: str = Field(..., min_length=1)
    tag: Optional[str] = None


class EmergencyContact(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    relationship: str = Field(..., min_length=1)


# ═════════════════════════════════════════════════════════════════════
# Leave Policy
# ═════════════════════════════════════════════════════════════════════


class LeavePolicyCreate(BaseModel):
    """Payload for defining a leave policy."""

    code: str = Field(..., min_length=2, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    leave_type: LeaveType
    description: Optional[str] = Field(None, max_length=500)

    quota: Optional[Decimal] = Field(None, ge=0, le=365)
    accrual_type: AccrualType = AccrualType.yearly

    carry_forward: bool = False
    max_carry_forward: Optional[Decimal] = Field(None, ge=0, le=365)
    carry_forward_expiry_days: Optional[int] = Field(None, ge=0, le=365)
    allow_negative: bool = False
    max_negative_allowed: Optional[Decimal] = Field(None, ge=0, le=30)

    half_day_allowed: bool = True
    documentation_required: bool = False
    documentation_rules: Optional[DocumentationRules] = None
    notice_period_days: int = Field(0, ge=0, le=365)
    auto_approval_enabled: bool = False
    auto_approval_conditions: Optional[AutoApprovalConditions] = None
    approval_level: ApprovalLevel = ApprovalLevel.manager

    applicable_locations: list[str] = Field(default_factory=list)
    applicable_departments: list[str] = Field(default_factory=list)
    applicable_roles: list[str] = Field(default_factory=list)
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None

    @field_validator("code")
    @classmethod
    def code_format(cls, v: str) -> str:
        if not POLICY_CODE_PATTERN.match(v):
            raise ValueError(
                "Policy code must contain only uppercase letters, numbers, and underscores."
            )
        return v

    @model_validator(mode="after")
    def check_paired_fields(self) -> "LeavePolicyCreate":
        if self.carry_forward and not self.max_carry_forward:
            raise ValueError("max_carry_forward is required when carry_forward is enabled.")
        if self.allow_negative and not self.max_negative_allowed:
            raise ValueError("max_negative_allowed is required when allow_negative is enabled.")
        if (
            self.effective_from
            and self.effective_until
            and self.effective_until < self.effective_from
        ):
            raise ValueError("effective_until must be on or after effective_from.")
        return self


class LeavePolicyUpdate(BaseModel):
    """Partial update; only supplied fields are applied.

    Paired-field rules are checked by the registry against the merged policy.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    quota: Optional[Decimal] = Field(None, ge=0, le=365)
    accrual_type: Optional[AccrualType] = None
    carry_forward: Optional[bool] = None
    max_carry_forward: Optional[Decimal] = Field(None, ge=0, le=365)
    carry_forward_expiry_days: Optional[int] = Field(None, ge=0, le=365)
    allow_negative: Optional[bool] = None
    max_negative_allowed: Optional[Decimal] = Field(None, ge=0, le=30)
    half_day_allowed: Optional[bool] = None
    documentation_required: Optional[bool] = None
    documentation_rules: Optional[DocumentationRules] = None
    notice_period_days: Optional[int] = Field(None, ge=0, le=365)
    auto_approval_enabled: Optional[bool] = None
    auto_approval_conditions: Optional[AutoApprovalConditions] = None
    approval_level: Optional[ApprovalLevel] = None
    applicable_locations: Optional[list[str]] = None
    applicable_departments: Optional[list[str]] = None
    applicable_roles: Optional[list[str]] = None
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None


class LeavePolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    leave_type: LeaveType
    description: Optional[str] = None
    quota: Optional[Decimal] = None
    accrual_type: AccrualType
    carry_forward: bool
    max_carry_forward: Optional[Decimal] = None
    carry_forward_expiry_days: Optional[int] = None
    allow_negative: bool
    max_negative_allowed: Optional[Decimal] = None
    half_day_allowed: bool
    documentation_required: bool
    documentation_rules: Optional[dict[str, Any]] = None
    notice_period_days: int
    auto_approval_enabled: bool
    auto_approval_conditions: Optional[dict[str, Any]] = None
    approval_level: ApprovalLevel
    applicable_locations: list[str] = []
    applicable_departments: list[str] = []
    applicable_roles: list[str] = []
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None
    version: int
    is_active: bool
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceCreate(BaseModel):
    """Open a ledger row; entitlement defaults to the policy quota."""

    employee_id: uuid.UUID
    policy_id: uuid.UUID
    fiscal_year: int = Field(..., ge=2020, le=2050)
    total_entitlement: Optional[Decimal] = Field(None, ge=0, le=365)
    carried_forward: Decimal = Field(Decimal("0"), ge=0, le=365)


class LeaveBalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    policy_id: uuid.UUID
    fiscal_year: int
    total_entitlement: Decimal
    carried_forward: Decimal
    used_leaves: Decimal
    pending_leaves: Decimal
    available_balance: Decimal
    version: int
    last_updated: datetime


class RollOverRequest(BaseModel):
    employee_id: uuid.UUID
    policy_id: uuid.UUID
    from_fiscal_year: int = Field(..., ge=2020, le=2050)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — write
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying a leave request."""

    employee_id: uuid.UUID
    policy_id: uuid.UUID
    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: str = Field(..., min_length=10, max_length=1000)
    is_half_day: bool = False
    half_day_session: Optional[HalfDaySession] = None
    work_handover: Optional[str] = Field(None, max_length=2000)
    attachments: list[Attachment] = Field(default_factory=list)
    emergency_contact: Optional[EmergencyContact] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class LeaveRequestUpdate(BaseModel):
    """Owner edits of a pending request."""

    reason: Optional[str] = Field(None, min_length=10, max_length=1000)
    work_handover: Optional[str] = Field(None, max_length=2000)
    attachments: Optional[list[Attachment]] = None
    emergency_contact: Optional[EmergencyContact] = None


class LeaveApprovalRequest(BaseModel):
    action: ApprovalAction
    approver_role: ApproverRole
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveCancelRequest(BaseModel):
    reason: str = Field("", max_length=500)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — read
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    policy_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    is_half_day: bool
    half_day_session: Optional[HalfDaySession] = None
    total_days: Decimal
    business_days: Decimal
    fiscal_year: int
    reason: str
    work_handover: Optional[str] = None
    attachments: list[dict[str, Any]] = []
    emergency_contact: Optional[dict[str, Any]] = None

    status: LeaveStatus
    manager_approval_status: Optional[StepStatus] = None
    manager_approved_by: Optional[uuid.UUID] = None
    manager_approved_at: Optional[datetime] = None
    manager_comments: Optional[str] = None
    hr_approval_status: Optional[StepStatus] = None
    hr_approved_by: Optional[uuid.UUID] = None
    hr_approved_at: Optional[datetime] = None
    hr_comments: Optional[str] = None
    final_approved_by: Optional[uuid.UUID] = None
    final_approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[uuid.UUID] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    is_backdated: bool
    is_emergency: bool
    priority: RequestPriority
    version: int
    applied_at: datetime


class LeaveAuditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_request_id: uuid.UUID
    sequence: int
    action: AuditAction
    performed_by: str
    performed_by_role: str
    context: Optional[dict[str, Any]] = None
    timestamp: datetime
