"""Leave ORM models: LeavePolicy, LeaveBalance, LeaveRequest."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeoff.common.constants import (
    AccrualType,
    ApprovalLevel,
    HalfDaySession,
    LeaveStatus,
    LeaveType,
    RequestPriority,
    StepStatus,
)
from timeoff.database import Base
from timeoff.directory.models import Employee


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(enum_cls, name: str) -> sa.Enum:
    return sa.Enum(enum_cls, name=name, native_enum=False, length=20)


class LeavePolicy(Base):
    __tablename__ = "leave_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(sa.String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    leave_type: Mapped[LeaveType] = mapped_column(
        _enum(LeaveType, "leave_type"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    quota: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    accrual_type: Mapped[AccrualType] = mapped_column(
        _enum(AccrualType, "accrual_type"), default=AccrualType.yearly
    )

    # ── Carry forward / negative balance ────────────────────────────
    carry_forward: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    max_carry_forward: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))
    carry_forward_expiry_days: Mapped[Optional[int]] = mapped_column(sa.Integer)
    allow_negative: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    max_negative_allowed: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(5, 1))

    # ── Request rules ───────────────────────────────────────────────
    half_day_allowed: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    documentation_required: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    documentation_rules: Mapped[Optional[dict]] = mapped_column(JSONB)
    notice_period_days: Mapped[int] = mapped_column(sa.Integer, default=0)
    auto_approval_enabled: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    auto_approval_conditions: Mapped[Optional[dict]] = mapped_column(JSONB)
    approval_level: Mapped[ApprovalLevel] = mapped_column(
        _enum(ApprovalLevel, "approval_level"), default=ApprovalLevel.manager
    )

    # ── Applicability (empty list = everywhere) ─────────────────────
    applicable_locations: Mapped[list] = mapped_column(JSONB, default=list)
    applicable_departments: Mapped[list] = mapped_column(JSONB, default=list)
    applicable_roles: Mapped[list] = mapped_column(JSONB, default=list)
    effective_from: Mapped[Optional[date]] = mapped_column(sa.Date)
    effective_until: Mapped[Optional[date]] = mapped_column(sa.Date)

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    balances: Mapped[list[LeaveBalance]] = relationship(back_populates="policy")
    requests: Mapped[list[LeaveRequest]] = relationship(back_populates="policy")

    def __repr__(self) -> str:
        return f"<LeavePolicy {self.code} v{self.version} ({self.approval_level})>"


class LeaveBalance(Base):
    """Ledger row for one (employee, policy, fiscal year).

    ``available_balance`` is stored rather than computed so a reservation can
    be checked against it under the row lock; the ledger keeps it equal to
    ``total_entitlement + carried_forward - used_leaves - pending_leaves``.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "employee_id", "policy_id", "fiscal_year", name="uq_leave_balance"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_policies.id"), nullable=False
    )
    fiscal_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    total_entitlement: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    carried_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    used_leaves: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    pending_leaves: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    available_balance: Mapped[Decimal] = mapped_column(
        sa.Numeric(6, 1), nullable=False, default=Decimal("0")
    )
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    policy: Mapped[LeavePolicy] = relationship(back_populates="balances")
    employee: Mapped[Employee] = relationship()

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance emp={self.employee_id} policy={self.policy_id} "
            f"fy={self.fiscal_year} available={self.available_balance}>"
        )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.Index("ix_leave_requests_employee_dates", "employee_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_status", "status"),
        sa.Index("ix_leave_requests_policy", "policy_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False
    )
    policy_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("leave_policies.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        _enum(LeaveType, "leave_type"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_half_day: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    half_day_session: Mapped[Optional[HalfDaySession]] = mapped_column(
        _enum(HalfDaySession, "half_day_session")
    )
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    business_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    reason: Mapped[str] = mapped_column(sa.Text, nullable=False)
    work_handover: Mapped[Optional[str]] = mapped_column(sa.Text)
    attachments: Mapped[list] = mapped_column(JSONB, default=list)
    emergency_contact: Mapped[Optional[dict]] = mapped_column(JSONB)

    # ── Workflow state ──────────────────────────────────────────────
    status: Mapped[LeaveStatus] = mapped_column(
        _enum(LeaveStatus, "leave_status"), nullable=False, default=LeaveStatus.pending
    )
    manager_approval_status: Mapped[Optional[StepStatus]] = mapped_column(
        _enum(StepStatus, "step_status")
    )
    manager_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    manager_approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    manager_comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    hr_approval_status: Mapped[Optional[StepStatus]] = mapped_column(
        _enum(StepStatus, "step_status")
    )
    hr_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    hr_approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    hr_comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    # NULL when finalized by SYSTEM auto-approval
    final_approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    final_approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id")
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    cancellation_reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    # ── Derived flags ───────────────────────────────────────────────
    is_backdated: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    is_emergency: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    priority: Mapped[RequestPriority] = mapped_column(
        _enum(RequestPriority, "request_priority"), default=RequestPriority.low
    )

    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    applied_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    employee: Mapped[Employee] = relationship(foreign_keys=[employee_id])
    policy: Mapped[LeavePolicy] = relationship(back_populates="requests")

    __mapper_args__ = {"version_id_col": version}

    @property
    def balance_key(self) -> tuple[uuid.UUID, uuid.UUID, int]:
        return (self.employee_id, self.policy_id, self.fiscal_year)

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.id} {self.leave_type} "
            f"{self.start_date}..{self.end_date} {self.status}>"
        )
