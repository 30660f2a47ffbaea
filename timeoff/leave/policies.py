"""Policy Registry: lookup, applicability filtering and versioned edits of leave policies."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional, Sequence

from timeoff.common.constants import LeaveType
from timeoff.common.exceptions import (
    DuplicatePolicyCode,
    NotFoundException,
    PolicyInUse,
    ValidationException,
)
from timeoff.leave.models import LeavePolicy
from timeoff.leave.repositories import PolicyRepository
from timeoff.leave.schemas import LeavePolicyCreate, LeavePolicyUpdate

logger = logging.getLogger(__name__)


def matches_applicability(allowed: Optional[Iterable[str]], *values: Optional[str]) -> bool:
    """Empty list is a wildcard; otherwise any non-empty value must be listed."""
    allowed = list(allowed or [])
    if not allowed:
        return True
    return any(v in allowed for v in values if v)


def applies_to(
    policy: LeavePolicy,
    *,
    location: Optional[str] = None,
    department: Optional[str] = None,
    role: Optional[str] = None,
    job_title: Optional[str] = None,
) -> bool:
    """Whether *policy* covers an employee with the given placement.

    The role list is matched against either the employee's role or job title.
    """
    return (
        matches_applicability(policy.applicable_locations, location)
        and matches_applicability(policy.applicable_departments, department)
        and matches_applicability(policy.applicable_roles, role, job_title)
    )


def check_policy_rules(policy: LeavePolicy) -> None:
    """Paired-field rules a stored policy must satisfy after every edit."""
    if policy.carry_forward and not policy.max_carry_forward:
        raise ValidationException(
            "policy_rules", "max_carry_forward is required when carry_forward is enabled."
        )
    if policy.allow_negative and not policy.max_negative_allowed:
        raise ValidationException(
            "policy_rules", "max_negative_allowed is required when allow_negative is enabled."
        )
    if (
        policy.effective_from
        and policy.effective_until
        and policy.effective_until < policy.effective_from
    ):
        raise ValidationException(
            "policy_rules", "effective_until must be on or after effective_from."
        )


class PolicyRegistry:
    def __init__(self, policies: PolicyRepository) -> None:
        self.policies = policies

    async def get(self, policy_id: uuid.UUID) -> LeavePolicy:
        """Return an active policy or raise NotFound (inactive counts as missing)."""
        policy = await self.policies.get(policy_id)
        if policy is None or not policy.is_active:
            raise NotFoundException("Leave policy", policy_id)
        return policy

    async def list_applicable(
        self,
        *,
        leave_type: Optional[LeaveType] = None,
        location: Optional[str] = None,
        department: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Sequence[LeavePolicy]:
        candidates = await self.policies.list_active(leave_type)
        return [
            p
            for p in candidates
            if applies_to(p, location=location, department=department, role=role)
        ]

    async def create(
        self, data: LeavePolicyCreate, *, created_by: Optional[uuid.UUID] = None
    ) -> LeavePolicy:
        if await self.policies.get_by_code(data.code) is not None:
            raise DuplicatePolicyCode(data.code)

        values: dict[str, Any] = data.model_dump(mode="json")
        # Keep Decimal/date/enum types for the ORM; JSON columns get plain dicts
        for field in ("quota", "max_carry_forward", "max_negative_allowed",
                      "effective_from", "effective_until", "leave_type",
                      "accrual_type", "approval_level"):
            values[field] = getattr(data, field)

        policy = LeavePolicy(**values, version=1, is_active=True, created_by=created_by)
        check_policy_rules(policy)
        await self.policies.add(policy)
        logger.info("Created leave policy %s (%s)", policy.code, policy.id)
        return policy

    async def update(self, policy_id: uuid.UUID, changes: LeavePolicyUpdate) -> LeavePolicy:
        """Apply the supplied fields and bump ``version``."""
        policy = await self.get(policy_id)
        supplied = changes.model_fields_set
        json_values = changes.model_dump(mode="json", include=supplied)
        for field in supplied:
            value = getattr(changes, field)
            if field in ("documentation_rules", "auto_approval_conditions"):
                value = json_values[field]
            setattr(policy, field, value)

        check_policy_rules(policy)
        policy.version = (policy.version or 1) + 1
        await self.policies.add(policy)
        logger.info("Updated leave policy %s to version %d", policy.code, policy.version)
        return policy

    async def delete(self, policy_id: uuid.UUID) -> LeavePolicy:
        """Soft-deactivate; refused while pending or approved requests reference it."""
        policy = await self.get(policy_id)
        in_use = await self.policies.count_active_requests(policy_id)
        if in_use:
            raise PolicyInUse(policy_id, in_use)
        policy.is_active = False
        await self.policies.add(policy)
        logger.info("Deactivated leave policy %s", policy.code)
        return policy
