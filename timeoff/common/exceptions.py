"""Typed domain exceptions and RFC 7807 Problem Detail error handlers.

Every failure the leave core reports is a subclass of ``AppException`` and
carries a stable ``rule`` naming the check that failed, so callers branch on
the exception class (or ``rule``), never on the message text.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://timeoff.local/errors"

logger = logging.getLogger(__name__)


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    rule: str = "error"

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    rule = "not_found"

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        self.entity_type = entity_type
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ValidationException(AppException):
    """400 — a business rule rejected the input."""

    def __init__(self, rule: str, message: str) -> None:
        self.rule = rule
        super().__init__(
            status_code=400,
            error_type="validation-error",
            title="Validation Error",
            detail=message,
            errors={rule: [message]},
        )


class LeaveValidationError(ValidationException):
    """A leave request failed one of the ordered validator rules."""


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    rule = "forbidden"

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class AuthorityError(ForbiddenException):
    """The actor lacks the role or relationship needed for this transition."""

    rule = "authority"


class ConflictError(AppException):
    """409 — the operation conflicts with current state."""

    rule = "conflict"

    def __init__(self, detail: str, *, errors: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=detail,
            errors=errors or {self.rule: [detail]},
        )


class DuplicatePolicyCode(ConflictError):
    rule = "duplicate_policy_code"

    def __init__(self, code: str) -> None:
        super().__init__(f"A leave policy with code='{code}' already exists.")


class DuplicateBalance(ConflictError):
    rule = "duplicate_balance"

    def __init__(self, employee_id: Any, policy_id: Any, fiscal_year: int) -> None:
        super().__init__(
            f"Leave balance already exists for employee '{employee_id}', "
            f"policy '{policy_id}', fiscal year {fiscal_year}."
        )


class PolicyInUse(ConflictError):
    rule = "policy_in_use"

    def __init__(self, policy_id: Any, active_requests: int) -> None:
        self.active_requests = active_requests
        super().__init__(
            f"Leave policy '{policy_id}' is referenced by {active_requests} "
            "pending or approved request(s) and cannot be deleted."
        )


class OverlappingRequest(ConflictError):
    rule = "overlap"

    def __init__(self, overlaps: list[dict[str, Any]]) -> None:
        self.overlaps = overlaps
        summary = ", ".join(
            f"{o['leave_type']} {o['start_date']}..{o['end_date']} ({o['status']})"
            for o in overlaps
        )
        super().__init__(f"Overlapping leave requests found: {summary}")


class AlreadyTerminal(ConflictError):
    rule = "already_terminal"

    def __init__(self, request_id: Any, status: str) -> None:
        self.status = status
        super().__init__(f"Leave request '{request_id}' is already {status}.")


class StepAlreadyComplete(ConflictError):
    rule = "step_already_complete"

    def __init__(self, step: str) -> None:
        super().__init__(f"The {step} approval step is already complete.")


class ManagerApprovalRequired(ConflictError):
    rule = "manager_approval_required"

    def __init__(self) -> None:
        super().__init__("Manager approval is required before HR approval.")


class StateConflict(ConflictError):
    rule = "state_conflict"


class LockTimeout(StateConflict):
    """A per-key lock could not be acquired in time."""

    rule = "lock_timeout"

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(
            "Timed out waiting for a concurrent operation on the same record."
        )


class InsufficientBalanceError(AppException):
    """400 — the ledger floor would be violated."""

    rule = "insufficient_balance"

    def __init__(self, available: Any, requested: Any, floor: Any) -> None:
        self.available = available
        self.requested = requested
        self.floor = floor
        detail = (
            f"Insufficient balance. Available: {available} days, "
            f"Requested: {requested} days."
        )
        super().__init__(
            status_code=400,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=detail,
            errors={self.rule: [detail]},
        )


class InvariantViolation(AppException):
    """500 — ledger arithmetic failed its own postcondition (a logic bug)."""

    rule = "ledger_invariant"

    def __init__(self, detail: str, *, snapshot: Optional[dict[str, Any]] = None) -> None:
        self.snapshot = snapshot
        super().__init__(
            status_code=500,
            error_type="invariant-violation",
            title="Ledger Invariant Violation",
            detail=detail,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "rule": exc.rule,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s on %s: %s", type(exc).__name__, request.url.path, exc.detail,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
