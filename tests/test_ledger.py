"""Balance ledger tests — the four movements, the ledger invariant, negative
floors, balance opening and fiscal-year roll-over.

Tests run against SQLite via the shared conftest.py fixtures.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from timeoff.common.exceptions import (
    DuplicateBalance,
    InsufficientBalanceError,
    InvariantViolation,
    NotFoundException,
    ValidationException,
)
from timeoff.leave.ledger import BalanceLedger, fiscal_year_for, negative_floor
from timeoff.leave.models import LeaveBalance
from timeoff.leave.repositories import SqlBalanceRepository
from tests.conftest import FISCAL_YEAR, seed_balance, seed_employee, seed_policy


def _ledger(db: AsyncSession) -> BalanceLedger:
    return BalanceLedger(SqlBalanceRepository(db))


async def _key(db: AsyncSession, **policy_kwargs):
    employee = await seed_employee(db)
    policy = await seed_policy(db, **policy_kwargs)
    balance = await seed_balance(db, employee, policy)
    return employee, policy, (balance.employee_id, balance.policy_id, balance.fiscal_year)


# ═════════════════════════════════════════════════════════════════════
# Fiscal year and floor helpers
# ═════════════════════════════════════════════════════════════════════


class TestFiscalYear:
    def test_april_start_boundaries(self):
        assert fiscal_year_for(date(2026, 3, 31)) == 2025
        assert fiscal_year_for(date(2026, 4, 1)) == 2026
        assert fiscal_year_for(date(2026, 12, 31)) == 2026

    def test_calendar_year_start(self):
        assert fiscal_year_for(date(2026, 1, 1), start_month=1) == 2026
        assert fiscal_year_for(date(2026, 12, 31), start_month=1) == 2026


class TestNegativeFloor:
    async def test_zero_when_negative_not_allowed(self, db: AsyncSession):
        policy = await seed_policy(db)
        assert negative_floor(policy) == Decimal("0")

    async def test_negative_cap(self, db: AsyncSession):
        policy = await seed_policy(
            db, allow_negative=True, max_negative_allowed=Decimal("3")
        )
        assert negative_floor(policy) == Decimal("-3")


# ═════════════════════════════════════════════════════════════════════
# Movements
# ═════════════════════════════════════════════════════════════════════


class TestMovements:
    async def test_reserve_moves_available_to_pending(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)

        result = await ledger.reserve(key, Decimal("5"), policy)

        balance = await ledger.get(key)
        assert balance.pending_leaves == Decimal("5")
        assert balance.available_balance == Decimal("20")
        assert balance.used_leaves == Decimal("0")
        assert result["movement"] == "reserve"
        assert Decimal(result["before"]["available_balance"]) == Decimal("25")
        assert Decimal(result["after"]["available_balance"]) == Decimal("20")

    async def test_commit_moves_pending_to_used(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)
        await ledger.reserve(key, Decimal("5"), policy)

        await ledger.commit(key, Decimal("5"))

        balance = await ledger.get(key)
        assert balance.used_leaves == Decimal("5")
        assert balance.pending_leaves == Decimal("0")
        assert balance.available_balance == Decimal("20")

    async def test_release_restores_available(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)
        await ledger.reserve(key, Decimal("3"), policy)

        await ledger.release(key, Decimal("3"))

        balance = await ledger.get(key)
        assert balance.pending_leaves == Decimal("0")
        assert balance.available_balance == Decimal("25")

    async def test_unwind_returns_used_days(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)
        await ledger.reserve(key, Decimal("4"), policy)
        await ledger.commit(key, Decimal("4"))

        await ledger.unwind(key, Decimal("4"))

        balance = await ledger.get(key)
        assert balance.used_leaves == Decimal("0")
        assert balance.pending_leaves == Decimal("0")
        assert balance.available_balance == Decimal("25")

    async def test_half_day_movements(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)

        await ledger.reserve(key, Decimal("0.5"), policy)

        balance = await ledger.get(key)
        assert balance.available_balance == Decimal("24.5")
        assert balance.pending_leaves == Decimal("0.5")

    async def test_reserve_beyond_available_rejected(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            await ledger.reserve(key, Decimal("26"), policy)

        assert exc_info.value.available == Decimal("25")
        assert exc_info.value.requested == Decimal("26")
        balance = await ledger.get(key)
        assert balance.available_balance == Decimal("25")
        assert balance.pending_leaves == Decimal("0")

    async def test_reserve_down_to_negative_floor(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(
            db, allow_negative=True, max_negative_allowed=Decimal("3")
        )
        await seed_balance(db, employee, policy, entitlement=Decimal("2"))
        key = (employee.id, policy.id, FISCAL_YEAR)
        ledger = _ledger(db)

        await ledger.reserve(key, Decimal("5"), policy)
        balance = await ledger.get(key)
        assert balance.available_balance == Decimal("-3")

        with pytest.raises(InsufficientBalanceError):
            await ledger.reserve(key, Decimal("0.5"), policy)

    async def test_missing_balance_row(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        ledger = _ledger(db)

        with pytest.raises(ValidationException) as exc_info:
            await ledger.reserve((employee.id, policy.id, FISCAL_YEAR), Decimal("1"), policy)
        assert exc_info.value.rule == "balance_missing"

        with pytest.raises(NotFoundException):
            await ledger.get((employee.id, policy.id, FISCAL_YEAR))


# ═════════════════════════════════════════════════════════════════════
# Invariant
# ═════════════════════════════════════════════════════════════════════


class TestInvariant:
    def test_consistent_row_passes(self):
        balance = LeaveBalance(
            total_entitlement=Decimal("20"),
            carried_forward=Decimal("5"),
            used_leaves=Decimal("3"),
            pending_leaves=Decimal("2"),
            available_balance=Decimal("20"),
        )
        BalanceLedger.check_invariant(balance)

    def test_mismatched_available_raises(self):
        balance = LeaveBalance(
            total_entitlement=Decimal("20"),
            carried_forward=Decimal("0"),
            used_leaves=Decimal("3"),
            pending_leaves=Decimal("0"),
            available_balance=Decimal("20"),
        )
        with pytest.raises(InvariantViolation) as exc_info:
            BalanceLedger.check_invariant(balance)
        assert exc_info.value.status_code == 500
        assert exc_info.value.snapshot["available_balance"] == "20"

    async def test_unwind_more_than_used_is_a_violation(self, db: AsyncSession):
        _, policy, key = await _key(db)
        ledger = _ledger(db)
        await ledger.reserve(key, Decimal("2"), policy)
        await ledger.commit(key, Decimal("2"))

        with pytest.raises(InvariantViolation):
            await ledger.unwind(key, Decimal("3"))

    async def test_release_more_than_pending_is_a_violation(self, db: AsyncSession):
        _, _, key = await _key(db)
        ledger = _ledger(db)

        with pytest.raises(InvariantViolation):
            await ledger.release(key, Decimal("1"))


# ═════════════════════════════════════════════════════════════════════
# Administration
# ═════════════════════════════════════════════════════════════════════


class TestCreateBalance:
    async def test_defaults_to_policy_quota(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db, quota=Decimal("18"))
        ledger = _ledger(db)

        balance = await ledger.create_balance(employee.id, policy, FISCAL_YEAR)

        assert balance.total_entitlement == Decimal("18")
        assert balance.available_balance == Decimal("18")
        assert balance.used_leaves == Decimal("0")

    async def test_explicit_entitlement_and_carry(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(db)
        ledger = _ledger(db)

        balance = await ledger.create_balance(
            employee.id, policy, FISCAL_YEAR,
            total_entitlement=Decimal("10"), carried_forward=Decimal("2.5"),
        )

        assert balance.available_balance == Decimal("12.5")

    async def test_duplicate_rejected(self, db: AsyncSession):
        employee, policy, _ = await _key(db)
        ledger = _ledger(db)

        with pytest.raises(DuplicateBalance):
            await ledger.create_balance(employee.id, policy, FISCAL_YEAR)


class TestRollOver:
    async def test_carry_forward_capped(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(
            db, carry_forward=True, max_carry_forward=Decimal("5")
        )
        await seed_balance(db, employee, policy, entitlement=Decimal("25"))
        ledger = _ledger(db)

        nxt = await ledger.roll_over(employee.id, policy, FISCAL_YEAR)

        assert nxt.fiscal_year == FISCAL_YEAR + 1
        assert nxt.carried_forward == Decimal("5")
        assert nxt.available_balance == Decimal("30")

    async def test_carry_forward_uses_leftover(self, db: AsyncSession):
        employee = await seed_employee(db)
        policy = await seed_policy(
            db, carry_forward=True, max_carry_forward=Decimal("10")
        )
        await seed_balance(db, employee, policy, entitlement=Decimal("25"))
        key = (employee.id, policy.id, FISCAL_YEAR)
        ledger = _ledger(db)
        await ledger.reserve(key, Decimal("22"), policy)
        await ledger.commit(key, Decimal("22"))

        nxt = await ledger.roll_over(employee.id, policy, FISCAL_YEAR)

        assert nxt.carried_forward == Decimal("3")

    async def test_no_carry_when_disabled(self, db: AsyncSession):
        employee, policy, _ = await _key(db)
        ledger = _ledger(db)

        nxt = await ledger.roll_over(employee.id, policy, FISCAL_YEAR)

        assert nxt.carried_forward == Decimal("0")
        assert nxt.available_balance == Decimal("25")

    async def test_roll_over_twice_is_duplicate(self, db: AsyncSession):
        employee, policy, _ = await _key(db)
        ledger = _ledger(db)
        await ledger.roll_over(employee.id, policy, FISCAL_YEAR)

        with pytest.raises(DuplicateBalance):
            await ledger.roll_over(employee.id, policy, FISCAL_YEAR)
