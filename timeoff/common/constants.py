"""Enums and constants for the time-off core — stored as VARCHAR enum values."""

from __future__ import annotations

import enum


# ── Employee directory ──────────────────────────────────────────────

class EmployeeRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr = "hr"
    admin = "admin"


# ── Leave policy ────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    annual = "annual"
    earned = "earned"
    casual = "casual"
    sick = "sick"
    maternity = "maternity"
    paternity = "paternity"
    bereavement = "bereavement"
    compensatory = "compensatory"
    unpaid = "unpaid"
    emergency = "emergency"


class AccrualType(str, enum.Enum):
    yearly = "yearly"
    monthly = "monthly"
    quarterly = "quarterly"


class ApprovalLevel(str, enum.Enum):
    auto = "auto"
    manager = "manager"
    hr = "hr"
    both = "both"


# ── Leave request ───────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class StepStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class HalfDaySession(str, enum.Enum):
    first_half = "first_half"
    second_half = "second_half"


class RequestPriority(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


class ApproverRole(str, enum.Enum):
    manager = "manager"
    hr = "hr"


class ApprovalAction(str, enum.Enum):
    approve = "approve"
    reject = "reject"


class CoverageRisk(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"


# ── Audit ───────────────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    created = "created"
    updated = "updated"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# ── Grouped sets used by the workflow ───────────────────────────────

ACTIVE_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.pending, LeaveStatus.approved}
)
TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.rejected, LeaveStatus.cancelled}
)

TENURE_GATED_TYPES: frozenset[LeaveType] = frozenset(
    {LeaveType.earned, LeaveType.maternity, LeaveType.paternity}
)
EMERGENCY_TYPES: frozenset[LeaveType] = frozenset(
    {LeaveType.sick, LeaveType.bereavement}
)
ADJACENCY_WATCHED_TYPES: frozenset[LeaveType] = frozenset(
    {LeaveType.sick, LeaveType.casual}
)

# ── Misc constants ──────────────────────────────────────────────────

SYSTEM_ACTOR = "SYSTEM"
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
