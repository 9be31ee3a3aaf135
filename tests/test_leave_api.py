"""Leave HTTP endpoints — status codes, problem+json bodies and role gates."""

from __future__ import annotations

import uuid

import pytest

from leave_ledger.common.constants import UserRole
from tests.conftest import NEXT_FRIDAY, NEXT_MONDAY, auth_headers_for

APPLY_URL = "/api/v1/leave/apply"


def _body(start=NEXT_MONDAY, end=NEXT_FRIDAY, leave_type="casual", reason="Family trip") -> dict:
    return {
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "type": leave_type,
        "reason": reason,
    }


async def _apply(client, employee_id, **kwargs) -> dict:
    resp = await client.post(APPLY_URL, json=_body(**kwargs), headers=auth_headers_for(employee_id))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ═════════════════════════════════════════════════════════════════════
# System
# ═════════════════════════════════════════════════════════════════════


class TestHealth:
    async def test_health_needs_no_auth(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


# ═════════════════════════════════════════════════════════════════════
# POST /apply
# ═════════════════════════════════════════════════════════════════════


class TestApplyEndpoint:
    async def test_apply_created(self, client, employee_id):
        data = await _apply(client, employee_id)
        assert data["status"] == "pending"
        assert data["employee_id"] == str(employee_id)
        assert data["leave_type"] == "casual"
        assert data["days"] == 5

    async def test_requires_auth(self, client):
        resp = await client.post(APPLY_URL, json=_body())
        assert resp.status_code == 401

    async def test_insufficient_balance_problem_detail(self, client, employee_id):
        await _apply(client, employee_id)

        resp = await client.post(
            APPLY_URL, json=_body(), headers=auth_headers_for(employee_id),
        )

        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/insufficient-balance")
        assert body["remaining"] == 0
        assert body["requested"] == 5
        assert body["leave_type"] == "casual"
        assert body["instance"] == APPLY_URL

    async def test_past_date(self, client, employee_id):
        resp = await client.post(
            APPLY_URL,
            json=_body(start=NEXT_MONDAY.replace(year=2025), end=NEXT_FRIDAY),
            headers=auth_headers_for(employee_id),
        )
        assert resp.status_code == 422
        assert "dates" in resp.json()["errors"]

    async def test_inverted_range(self, client, employee_id):
        resp = await client.post(
            APPLY_URL,
            json=_body(start=NEXT_FRIDAY, end=NEXT_MONDAY),
            headers=auth_headers_for(employee_id),
        )
        assert resp.status_code == 422
        assert "end_date" in resp.json()["errors"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"start_date": "2026-03-09", "end_date": "2026-03-13"},
            {"start_date": "not-a-date", "end_date": "2026-03-13", "type": "casual"},
            {"start_date": "2026-03-09", "end_date": "2026-03-13", "type": "   "},
        ],
    )
    async def test_malformed_body(self, client, employee_id, payload):
        resp = await client.post(APPLY_URL, json=payload, headers=auth_headers_for(employee_id))
        assert resp.status_code == 422
        assert resp.json()["type"].endswith("/validation-error")


# ═════════════════════════════════════════════════════════════════════
# GET /balances
# ═════════════════════════════════════════════════════════════════════


class TestBalancesEndpoint:
    async def test_defaults_for_new_employee(self, client, employee_id):
        resp = await client.get(
            "/api/v1/leave/balances", params={"year": 2026}, headers=auth_headers_for(employee_id),
        )
        assert resp.status_code == 200
        data = {b["type"]: b for b in resp.json()}
        assert data["sick"] == {"type": "sick", "year": 2026, "total": 15, "used": 0, "remaining": 15}
        assert data["casual"]["remaining"] == 5

    async def test_reflects_pending_request(self, client, employee_id):
        await _apply(client, employee_id)
        resp = await client.get("/api/v1/leave/balances", headers=auth_headers_for(employee_id))
        casual = next(b for b in resp.json() if b["type"] == "casual")
        assert casual["used"] == 5
        assert casual["remaining"] == 0


# ═════════════════════════════════════════════════════════════════════
# PUT /{id}/approve | reject | withdraw
# ═════════════════════════════════════════════════════════════════════


class TestReviewEndpoints:
    async def test_manager_approves(self, client, employee_id, manager_id):
        leave = await _apply(client, employee_id)

        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/approve",
            json={"remarks": "Approved"},
            headers=auth_headers_for(manager_id, UserRole.manager),
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "approved"
        assert resp.json()["approved_by"] == str(manager_id)
        assert resp.json()["reviewer_remarks"] == "Approved"

    async def test_approve_without_body(self, client, employee_id, hr_id):
        leave = await _apply(client, employee_id)
        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/approve",
            headers=auth_headers_for(hr_id, "HR"),
        )
        assert resp.status_code == 200

    async def test_employee_cannot_approve(self, client, employee_id):
        leave = await _apply(client, employee_id)
        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/approve",
            headers=auth_headers_for(uuid.uuid4(), UserRole.employee),
        )
        assert resp.status_code == 403

    async def test_self_approval_forbidden(self, client, manager_id):
        leave = await _apply(client, manager_id)
        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/approve",
            headers=auth_headers_for(manager_id, UserRole.manager),
        )
        assert resp.status_code == 403
        assert resp.json()["type"].endswith("/self-approval-forbidden")

    async def test_reject_restores_balance(self, client, employee_id, manager_id):
        leave = await _apply(client, employee_id)

        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/reject",
            json={"remarks": "Release week"},
            headers=auth_headers_for(manager_id, UserRole.manager),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "rejected"

        balances = await client.get("/api/v1/leave/balances", headers=auth_headers_for(employee_id))
        casual = next(b for b in balances.json() if b["type"] == "casual")
        assert casual["used"] == 0

    async def test_review_twice_conflict(self, client, employee_id, manager_id):
        leave = await _apply(client, employee_id)
        headers = auth_headers_for(manager_id, UserRole.manager)
        await client.put(f"/api/v1/leave/{leave['id']}/approve", headers=headers)

        resp = await client.put(f"/api/v1/leave/{leave['id']}/reject", headers=headers)

        assert resp.status_code == 409
        assert resp.json()["status"] == 409
        assert resp.json()["type"].endswith("/not-found-or-not-pending")
        assert resp.json()["current_status"] == "approved"

    async def test_review_missing_request(self, client, manager_id):
        resp = await client.put(
            f"/api/v1/leave/{uuid.uuid4()}/approve",
            headers=auth_headers_for(manager_id, UserRole.manager),
        )
        assert resp.status_code == 404

    async def test_withdraw_own_pending(self, client, employee_id):
        leave = await _apply(client, employee_id)
        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/withdraw", headers=auth_headers_for(employee_id),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "withdrawn"

    async def test_withdraw_approved_conflict(self, client, employee_id, manager_id):
        leave = await _apply(client, employee_id)
        await client.put(
            f"/api/v1/leave/{leave['id']}/approve",
            headers=auth_headers_for(manager_id, UserRole.manager),
        )

        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/withdraw", headers=auth_headers_for(employee_id),
        )

        assert resp.status_code == 409
        assert resp.json()["type"].endswith("/only-pending-withdrawable")
        assert resp.json()["status"] == 409
        assert resp.json()["current_status"] == "approved"

    async def test_withdraw_someone_elses(self, client, employee_id):
        leave = await _apply(client, employee_id)
        resp = await client.put(
            f"/api/v1/leave/{leave['id']}/withdraw", headers=auth_headers_for(uuid.uuid4()),
        )
        assert resp.status_code == 403


# ═════════════════════════════════════════════════════════════════════
# Listings
# ═════════════════════════════════════════════════════════════════════


class TestListingEndpoints:
    async def test_my_leaves(self, client, employee_id):
        await _apply(client, employee_id, leave_type="sick")
        await _apply(client, employee_id, leave_type="casual")
        await _apply(client, uuid.uuid4(), leave_type="sick")

        resp = await client.get("/api/v1/leave/my-leaves", headers=auth_headers_for(employee_id))

        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["total"] == 2
        assert {r["leave_type"] for r in body["data"]} == {"sick", "casual"}

    async def test_my_leaves_status_filter(self, client, employee_id):
        leave = await _apply(client, employee_id)
        await client.put(f"/api/v1/leave/{leave['id']}/withdraw", headers=auth_headers_for(employee_id))

        resp = await client.get(
            "/api/v1/leave/my-leaves",
            params={"status": "pending"},
            headers=auth_headers_for(employee_id),
        )
        assert resp.json()["meta"]["total"] == 0

    async def test_team_leaves_requires_reviewer(self, client, employee_id, manager_id):
        await _apply(client, employee_id)

        denied = await client.get("/api/v1/leave/team-leaves", headers=auth_headers_for(employee_id))
        assert denied.status_code == 403

        resp = await client.get(
            "/api/v1/leave/team-leaves",
            params={"employee_id": str(employee_id), "page_size": 10},
            headers=auth_headers_for(manager_id, UserRole.manager),
        )
        assert resp.status_code == 200
        assert resp.json()["meta"]["total"] == 1
        assert resp.json()["meta"]["page_size"] == 10

    async def test_get_single_request(self, client, employee_id, hr_id):
        leave = await _apply(client, employee_id)

        own = await client.get(f"/api/v1/leave/{leave['id']}", headers=auth_headers_for(employee_id))
        assert own.status_code == 200
        assert own.json()["id"] == leave["id"]

        hr = await client.get(f"/api/v1/leave/{leave['id']}", headers=auth_headers_for(hr_id, UserRole.hr))
        assert hr.status_code == 200

        other = await client.get(f"/api/v1/leave/{leave['id']}", headers=auth_headers_for(uuid.uuid4()))
        assert other.status_code == 403

    async def test_team_leaves_without_filters_counts_every_row(self, client, employee_id, hr_id):
        for employee in (employee_id, uuid.uuid4(), uuid.uuid4()):
            await _apply(client, employee)

        resp = await client.get("/api/v1/leave/team-leaves", headers=auth_headers_for(hr_id, UserRole.hr))

        assert resp.status_code == 200
        body = resp.json()
        assert len(body["data"]) == 3
        assert body["meta"]["total"] == 3
        assert body["meta"]["total_pages"] == 1

    async def test_team_leaves_limited_to_reports(self, client, employee_id, manager_id):
        outsider = uuid.uuid4()
        await _apply(client, employee_id)
        await _apply(client, outsider)
        manager_headers = auth_headers_for(manager_id, UserRole.manager)

        resp = await client.get("/api/v1/leave/team-leaves", headers=manager_headers)
        assert resp.json()["meta"]["total"] == 1
        assert [r["employee_id"] for r in resp.json()["data"]] == [str(employee_id)]

        other_team = await client.get(
            "/api/v1/leave/team-leaves",
            params={"employee_id": str(outsider)},
            headers=manager_headers,
        )
        assert other_team.status_code == 403

    async def test_get_single_request_by_manager(self, client, employee_id, manager_id):
        report_leave = await _apply(client, employee_id)
        outsider_leave = await _apply(client, uuid.uuid4())
        manager_headers = auth_headers_for(manager_id, UserRole.manager)

        mine = await client.get(f"/api/v1/leave/{report_leave['id']}", headers=manager_headers)
        assert mine.status_code == 200

        theirs = await client.get(f"/api/v1/leave/{outsider_leave['id']}", headers=manager_headers)
        assert theirs.status_code == 403

    async def test_get_missing_request(self, client, employee_id):
        resp = await client.get(f"/api/v1/leave/{uuid.uuid4()}", headers=auth_headers_for(employee_id))
        assert resp.status_code == 404
