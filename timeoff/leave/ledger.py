"""Balance Ledger — the only code that mutates ``LeaveBalance`` rows.

Four movements are supported, all measured in days:

    reserve   pending += d, available -= d     (request created)
    commit    used += d,    pending -= d       (request approved)
    release   pending -= d, available += d     (pending request rejected/cancelled)
    unwind    used -= d,    available += d     (approved request cancelled)

After every movement ``available == entitlement + carried - used - pending``
must hold and neither ``used`` nor ``pending`` may go negative. A breach is a
logic error: it is logged and raised as ``InvariantViolation``, never clamped.

Callers are expected to hold the balance key lock and to have loaded the row
through ``get_for_update`` in the current transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from timeoff.common.exceptions import (
    DuplicateBalance,
    InsufficientBalanceError,
    InvariantViolation,
    NotFoundException,
    ValidationException,
)
from timeoff.config import settings
from timeoff.leave.models import LeaveBalance, LeavePolicy
from timeoff.leave.repositories import BalanceKey, BalanceRepository

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def fiscal_year_for(day: date, start_month: Optional[int] = None) -> int:
    """Fiscal year label of *day*: the calendar year in which that fiscal year starts.

    With the default April start, 2026-03-31 belongs to FY 2025 and
    2026-04-01 to FY 2026.
    """
    start_month = start_month or settings.FISCAL_YEAR_START_MONTH
    return day.year if day.month >= start_month else day.year - 1


def negative_floor(policy: LeavePolicy) -> Decimal:
    """Lowest ``available`` a reservation may leave behind (zero or negative)."""
    if policy.allow_negative and policy.max_negative_allowed:
        return -Decimal(policy.max_negative_allowed)
    return ZERO


def snapshot(balance: LeaveBalance) -> dict[str, Any]:
    """JSON-safe copy of the numeric columns, for audit context."""
    return {
        "total_entitlement": str(balance.total_entitlement),
        "carried_forward": str(balance.carried_forward),
        "used_leaves": str(balance.used_leaves),
        "pending_leaves": str(balance.pending_leaves),
        "available_balance": str(balance.available_balance),
    }


class BalanceLedger:
    def __init__(self, balances: BalanceRepository) -> None:
        self.balances = balances

    # ── Reads ───────────────────────────────────────────────────────

    async def get(self, key: BalanceKey) -> LeaveBalance:
        balance = await self.balances.get(key)
        if balance is None:
            raise NotFoundException("Leave balance", "/".join(str(k) for k in key))
        return balance

    async def list_for_employee(
        self, employee_id: uuid.UUID, fiscal_year: Optional[int] = None
    ) -> Sequence[LeaveBalance]:
        return await self.balances.list_for_employee(employee_id, fiscal_year)

    async def _locked(self, key: BalanceKey) -> LeaveBalance:
        balance = await self.balances.get_for_update(key)
        if balance is None:
            raise ValidationException(
                "balance_missing",
                f"No leave balance found for this policy in fiscal year {key[2]}.",
            )
        return balance

    # ── Movements ───────────────────────────────────────────────────

    async def reserve(
        self, key: BalanceKey, days: Decimal, policy: LeavePolicy
    ) -> dict[str, Any]:
        balance = await self._locked(key)
        before = snapshot(balance)
        floor = negative_floor(policy)
        available = Decimal(balance.available_balance)
        if available - days < floor:
            raise InsufficientBalanceError(available, days, floor)

        balance.pending_leaves = Decimal(balance.pending_leaves) + days
        balance.available_balance = available - days
        return await self._finish(balance, "reserve", days, before)

    async def commit(self, key: BalanceKey, days: Decimal) -> dict[str, Any]:
        balance = await self._locked(key)
        before = snapshot(balance)
        balance.used_leaves = Decimal(balance.used_leaves) + days
        balance.pending_leaves = Decimal(balance.pending_leaves) - days
        return await self._finish(balance, "commit", days, before)

    async def release(self, key: BalanceKey, days: Decimal) -> dict[str, Any]:
        balance = await self._locked(key)
        before = snapshot(balance)
        balance.pending_leaves = Decimal(balance.pending_leaves) - days
        balance.available_balance = Decimal(balance.available_balance) + days
        return await self._finish(balance, "release", days, before)

    async def unwind(self, key: BalanceKey, days: Decimal) -> dict[str, Any]:
        balance = await self._locked(key)
        before = snapshot(balance)
        balance.used_leaves = Decimal(balance.used_leaves) - days
        balance.available_balance = Decimal(balance.available_balance) + days
        return await self._finish(balance, "unwind", days, before)

    async def _finish(
        self, balance: LeaveBalance, movement: str, days: Decimal, before: dict[str, Any]
    ) -> dict[str, Any]:
        self.check_invariant(balance, movement=movement)
        await self.balances.add(balance)
        after = snapshot(balance)
        logger.debug(
            "Ledger %s %s days emp=%s policy=%s fy=%s -> available=%s",
            movement, days, balance.employee_id, balance.policy_id,
            balance.fiscal_year, balance.available_balance,
        )
        return {"movement": movement, "days": str(days), "before": before, "after": after}

    @staticmethod
    def check_invariant(balance: LeaveBalance, *, movement: str = "check") -> None:
        entitlement = Decimal(balance.total_entitlement)
        carried = Decimal(balance.carried_forward)
        used = Decimal(balance.used_leaves)
        pending = Decimal(balance.pending_leaves)
        available = Decimal(balance.available_balance)

        problem = None
        if used < ZERO:
            problem = f"used_leaves went negative ({used})"
        elif pending < ZERO:
            problem = f"pending_leaves went negative ({pending})"
        elif available != entitlement + carried - used - pending:
            problem = (
                f"available {available} != {entitlement} + {carried} - {used} - {pending}"
            )
        if problem:
            state = snapshot(balance)
            logger.error(
                "Ledger invariant violated after %s for balance %s: %s %s",
                movement, balance.id, problem, state,
            )
            raise InvariantViolation(
                f"Ledger invariant violated after {movement}: {problem}.",
                snapshot=state,
            )

    # ── Administration ──────────────────────────────────────────────

    async def create_balance(
        self,
        employee_id: uuid.UUID,
        policy: LeavePolicy,
        fiscal_year: int,
        *,
        total_entitlement: Optional[Decimal] = None,
        carried_forward: Decimal = ZERO,
    ) -> LeaveBalance:
        """Open the ledger row for one fiscal year; duplicates are rejected."""
        key = (employee_id, policy.id, fiscal_year)
        if await self.balances.get(key) is not None:
            raise DuplicateBalance(employee_id, policy.id, fiscal_year)

        if total_entitlement is None:
            total_entitlement = Decimal(policy.quota or 0)
        balance = LeaveBalance(
            employee_id=employee_id,
            policy_id=policy.id,
            fiscal_year=fiscal_year,
            total_entitlement=total_entitlement,
            carried_forward=carried_forward,
            used_leaves=ZERO,
            pending_leaves=ZERO,
            available_balance=total_entitlement + carried_forward,
        )
        self.check_invariant(balance, movement="create")
        await self.balances.add(balance)
        logger.info(
            "Opened leave balance emp=%s policy=%s fy=%s entitlement=%s carried=%s",
            employee_id, policy.code, fiscal_year, total_entitlement, carried_forward,
        )
        return balance

    async def roll_over(
        self, employee_id: uuid.UUID, policy: LeavePolicy, from_fiscal_year: int
    ) -> LeaveBalance:
        """Open next year's row, carrying forward what the policy allows."""
        source = await self.get((employee_id, policy.id, from_fiscal_year))
        carried = ZERO
        if policy.carry_forward:
            leftover = max(Decimal(source.available_balance), ZERO)
            carried = min(leftover, Decimal(policy.max_carry_forward or 0))
        return await self.create_balance(
            employee_id, policy, from_fiscal_year + 1, carried_forward=carried
        )
