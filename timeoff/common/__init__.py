"""Common module — shared utilities for the time-off core."""

from timeoff.common.audit import LeaveAuditLog, create_audit_entry, list_audit_entries
from timeoff.common.constants import (
    ACTIVE_STATUSES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    SYSTEM_ACTOR,
    TERMINAL_STATUSES,
    AccrualType,
    ApprovalAction,
    ApprovalLevel,
    ApproverRole,
    AuditAction,
    CoverageRisk,
    EmployeeRole,
    HalfDaySession,
    LeaveStatus,
    LeaveType,
    RequestPriority,
    StepStatus,
)
from timeoff.common.exceptions import (
    AlreadyTerminal,
    AppException,
    AuthorityError,
    ConflictError,
    DuplicateBalance,
    DuplicatePolicyCode,
    ForbiddenException,
    InsufficientBalanceError,
    InvariantViolation,
    LeaveValidationError,
    LockTimeout,
    ManagerApprovalRequired,
    NotFoundException,
    OverlappingRequest,
    PolicyInUse,
    StateConflict,
    StepAlreadyComplete,
    ValidationException,
    register_exception_handlers,
)
from timeoff.common.locks import KeyedLock
from timeoff.common.pagination import PaginatedResponse, PaginationMeta, PaginationParams, paginate

__all__ = [
    # audit
    "LeaveAuditLog",
    "create_audit_entry",
    "list_audit_entries",
    # constants
    "ACTIVE_STATUSES",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    "SYSTEM_ACTOR",
    "TERMINAL_STATUSES",
    "AccrualType",
    "ApprovalAction",
    "ApprovalLevel",
    "ApproverRole",
    "AuditAction",
    "CoverageRisk",
    "EmployeeRole",
    "HalfDaySession",
    "LeaveStatus",
    "LeaveType",
    "RequestPriority",
    "StepStatus",
    # exceptions
    "AlreadyTerminal",
    "AppException",
    "AuthorityError",
    "ConflictError",
    "DuplicateBalance",
    "DuplicatePolicyCode",
    "ForbiddenException",
    "InsufficientBalanceError",
    "InvariantViolation",
    "LeaveValidationError",
    "LockTimeout",
    "ManagerApprovalRequired",
    "NotFoundException",
    "OverlappingRequest",
    "PolicyInUse",
    "StateConflict",
    "StepAlreadyComplete",
    "ValidationException",
    "register_exception_handlers",
    # locks / pagination
    "KeyedLock",
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
