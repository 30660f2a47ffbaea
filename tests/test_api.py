"""HTTP API tests — routing, caller identity headers, role checks and RFC 7807
problem responses for the leave endpoints.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from httpx import AsyncClient

from timeoff.common.constants import EmployeeRole
from tests.conftest import FISCAL_YEAR, actor_headers, seed_balance, seed_policy

BASE = "/api/v1/leave"


def _body(employee, policy, start="2026-06-15", end="2026-06-15", **overrides) -> dict:
    body = {
        "employee_id": str(employee.id),
        "policy_id": str(policy.id),
        "leave_type": policy.leave_type.value,
        "start_date": start,
        "end_date": end,
        "reason": "Family wedding out of town",
    }
    body.update(overrides)
    return body


async def _setup(db, team):
    policy = await seed_policy(db)
    await seed_balance(db, team["employee"], policy)
    return policy


# ═════════════════════════════════════════════════════════════════════
# System
# ═════════════════════════════════════════════════════════════════════


class TestSystem:
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    async def test_missing_identity_header(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/requests")
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")

    async def test_malformed_identity_header(self, client: AsyncClient):
        resp = await client.get(
            f"{BASE}/requests", headers={"X-Employee-Id": "not-a-uuid"}
        )
        assert resp.status_code == 400
        assert resp.json()["rule"] == "actor"


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class TestRequestEndpoints:
    async def test_apply_approve_cancel(self, client: AsyncClient, db, team):
        employee, manager = team["employee"], team["manager"]
        policy = await _setup(db, team)

        resp = await client.post(
            f"{BASE}/requests", json=_body(employee, policy), headers=actor_headers(employee)
        )
        assert resp.status_code == 201
        created = resp.json()
        assert created["status"] == "pending"
        assert Decimal(created["total_days"]) == Decimal("1")

        resp = await client.post(
            f"{BASE}/requests/{created['id']}/approve",
            json={"action": "approve", "approver_role": "manager", "comments": "OK"},
            headers=actor_headers(manager),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"

        resp = await client.post(
            f"{BASE}/requests/{created['id']}/cancel",
            json={"reason": "Trip postponed"},
            headers=actor_headers(employee),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

        resp = await client.get(
            f"{BASE}/requests/{created['id']}/audit", headers=actor_headers(employee)
        )
        assert resp.status_code == 200
        assert [e["action"] for e in resp.json()] == ["created", "approved", "cancelled"]

    async def test_employee_cannot_approve(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)
        created = (await client.post(
            f"{BASE}/requests", json=_body(employee, policy), headers=actor_headers(employee)
        )).json()

        resp = await client.post(
            f"{BASE}/requests/{created['id']}/approve",
            json={"action": "approve", "approver_role": "manager"},
            headers=actor_headers(team["colleague"]),
        )
        assert resp.status_code == 403
        assert resp.json()["rule"] == "forbidden"

    async def test_insufficient_balance_problem(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await seed_policy(db)
        await seed_balance(db, employee, policy, entitlement=Decimal("1"))

        resp = await client.post(
            f"{BASE}/requests",
            json=_body(employee, policy, end="2026-06-16"),
            headers=actor_headers(employee),
        )

        assert resp.status_code == 400
        assert resp.headers["content-type"].startswith("application/problem+json")
        problem = resp.json()
        assert problem["rule"] == "insufficient_balance"
        assert problem["title"] == "Insufficient Balance"
        assert problem["instance"] == f"{BASE}/requests"

    async def test_overlap_problem(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)
        headers = actor_headers(employee)
        await client.post(f"{BASE}/requests", json=_body(employee, policy), headers=headers)

        resp = await client.post(f"{BASE}/requests", json=_body(employee, policy), headers=headers)

        assert resp.status_code == 409
        assert resp.json()["rule"] == "overlap"

    async def test_validation_rule_problem(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)

        resp = await client.post(
            f"{BASE}/requests",
            json=_body(employee, policy, start="2026-06-16", end="2026-06-15"),
            headers=actor_headers(employee),
        )

        assert resp.status_code == 400
        assert resp.json()["rule"] == "date_range"
        assert "date_range" in resp.json()["errors"]

    async def test_short_reason_is_422(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)

        resp = await client.post(
            f"{BASE}/requests",
            json=_body(employee, policy, reason="short"),
            headers=actor_headers(employee),
        )
        assert resp.status_code == 422
        assert "reason" in resp.json()["errors"]

    async def test_unknown_request(self, client: AsyncClient, team):
        resp = await client.get(
            f"{BASE}/requests/{uuid.uuid4()}", headers=actor_headers(team["hr"])
        )
        assert resp.status_code == 404
        assert resp.json()["rule"] == "not_found"

    async def test_employee_sees_only_own_requests(self, client: AsyncClient, db, team):
        employee, colleague = team["employee"], team["colleague"]
        policy = await _setup(db, team)
        await seed_balance(db, colleague, policy)
        await client.post(
            f"{BASE}/requests", json=_body(employee, policy), headers=actor_headers(employee)
        )
        other = (await client.post(
            f"{BASE}/requests", json=_body(colleague, policy), headers=actor_headers(colleague)
        )).json()

        resp = await client.get(
            f"{BASE}/requests",
            params={"employee_id": str(colleague.id)},
            headers=actor_headers(employee),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 1
        assert body["data"][0]["employee_id"] == str(employee.id)

        resp = await client.get(f"{BASE}/requests/{other['id']}", headers=actor_headers(employee))
        assert resp.status_code == 403

        resp = await client.get(f"{BASE}/requests", headers=actor_headers(team["hr"]))
        assert resp.json()["meta"]["total"] == 2

    async def test_edit_pending_request(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)
        created = (await client.post(
            f"{BASE}/requests", json=_body(employee, policy), headers=actor_headers(employee)
        )).json()

        resp = await client.patch(
            f"{BASE}/requests/{created['id']}",
            json={"work_handover": "Anil has the on-call pager"},
            headers=actor_headers(employee),
        )

        assert resp.status_code == 200
        assert resp.json()["work_handover"] == "Anil has the on-call pager"

    async def test_pending_approvals(self, client: AsyncClient, db, team):
        employee, manager = team["employee"], team["manager"]
        policy = await _setup(db, team)
        created = (await client.post(
            f"{BASE}/requests", json=_body(employee, policy), headers=actor_headers(employee)
        )).json()

        resp = await client.get(f"{BASE}/approvals/pending", headers=actor_headers(manager))

        assert resp.status_code == 200
        assert [r["id"] for r in resp.json()] == [created["id"]]


# ═════════════════════════════════════════════════════════════════════
# Balances
# ═════════════════════════════════════════════════════════════════════


class TestBalanceEndpoints:
    async def test_open_balance_requires_hr(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await seed_policy(db)
        body = {
            "employee_id": str(employee.id),
            "policy_id": str(policy.id),
            "fiscal_year": FISCAL_YEAR,
        }

        resp = await client.post(f"{BASE}/balances", json=body, headers=actor_headers(employee))
        assert resp.status_code == 403

        resp = await client.post(f"{BASE}/balances", json=body, headers=actor_headers(team["hr"]))
        assert resp.status_code == 201
        assert Decimal(resp.json()["available_balance"]) == Decimal("25")

        resp = await client.post(f"{BASE}/balances", json=body, headers=actor_headers(team["hr"]))
        assert resp.status_code == 409
        assert resp.json()["rule"] == "duplicate_balance"

    async def test_read_balances(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)

        resp = await client.get(f"{BASE}/balances", headers=actor_headers(employee))
        assert resp.status_code == 200
        assert len(resp.json()) == 1

        resp = await client.get(
            f"{BASE}/balances/{employee.id}/{policy.id}/{FISCAL_YEAR}",
            headers=actor_headers(employee),
        )
        assert resp.status_code == 200
        assert Decimal(resp.json()["total_entitlement"]) == Decimal("25")

        resp = await client.get(
            f"{BASE}/balances/{employee.id}/{policy.id}/{FISCAL_YEAR}",
            headers=actor_headers(team["colleague"]),
        )
        assert resp.status_code == 403

    async def test_roll_over(self, client: AsyncClient, db, team):
        employee = team["employee"]
        policy = await _setup(db, team)

        resp = await client.post(
            f"{BASE}/balances/roll-over",
            json={
                "employee_id": str(employee.id),
                "policy_id": str(policy.id),
                "from_fiscal_year": FISCAL_YEAR,
            },
            headers=actor_headers(team["hr"], EmployeeRole.hr),
        )

        assert resp.status_code == 201
        assert resp.json()["fiscal_year"] == FISCAL_YEAR + 1


# ═════════════════════════════════════════════════════════════════════
# Policies
# ═════════════════════════════════════════════════════════════════════


class TestPolicyEndpoints:
    async def test_policy_crud(self, client: AsyncClient, team):
        hr = actor_headers(team["hr"])
        body = {
            "code": "PL",
            "name": "Paternity Leave",
            "leave_type": "paternity",
            "quota": "10",
            "approval_level": "hr",
            "documentation_required": True,
            "documentation_rules": {"minimum_days": "1"},
        }

        resp = await client.post(f"{BASE}/policies", json=body, headers=hr)
        assert resp.status_code == 201
        policy = resp.json()
        assert policy["version"] == 1

        resp = await client.post(f"{BASE}/policies", json=body, headers=hr)
        assert resp.status_code == 409
        assert resp.json()["rule"] == "duplicate_policy_code"

        resp = await client.patch(
            f"{BASE}/policies/{policy['id']}", json={"notice_period_days": 14}, headers=hr
        )
        assert resp.status_code == 200
        assert resp.json()["version"] == 2
        assert resp.json()["notice_period_days"] == 14

        resp = await client.get(
            f"{BASE}/policies",
            params={"leave_type": "paternity"},
            headers=actor_headers(team["employee"]),
        )
        assert [p["code"] for p in resp.json()] == ["PL"]

        resp = await client.delete(f"{BASE}/policies/{policy['id']}", headers=hr)
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

        resp = await client.get(f"{BASE}/policies/{policy['id']}", headers=hr)
        assert resp.status_code == 404

    async def test_employee_cannot_create_policy(self, client: AsyncClient, team):
        resp = await client.post(
            f"{BASE}/policies",
            json={"code": "XL", "name": "Extra", "leave_type": "unpaid"},
            headers=actor_headers(team["employee"]),
        )
        assert resp.status_code == 403

    async def test_invalid_policy_code(self, client: AsyncClient, team):
        resp = await client.post(
            f"{BASE}/policies",
            json={"code": "bad code", "name": "Bad", "leave_type": "unpaid"},
            headers=actor_headers(team["hr"]),
        )
        assert resp.status_code == 422
