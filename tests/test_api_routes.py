"""
tests/test_api_routes.py -- Integration tests for the AuditDesk REST API.

These tests exercise the full stack: FastAPI routing -> access gate dependency
-> UserStore/AuditStore operations -> response model serialization -> error
envelope. Unit testing individual route functions would miss middleware,
dependency injection, and response model validation.

Fixtures used (from conftest.py):
  - api_client: ApiContext with one active user and token per role; every
    user's password is ApiContext.password.
"""

from __future__ import annotations

import re
from unittest.mock import patch

from auth.models import Role, UserStatus

API = "/api/v1"


# ---------------------------------------------------------------------------
# Access gate over HTTP
# ---------------------------------------------------------------------------


class TestAccessGate:
    def test_no_header_is_missing_token(self, api_client) -> None:
        resp = api_client.client.get(f"{API}/users/profile")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_bad_token_is_invalid_token(self, api_client) -> None:
        resp = api_client.client.get(f"{API}/users/profile", headers={"Authorization": "Bearer abc.def.ghi"})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_wrong_role_lists_required_roles(self, api_client) -> None:
        resp = api_client.client.get(f"{API}/users", headers=api_client.headers(Role.auditor))
        assert resp.status_code == 403
        error = resp.json()["error"]
        assert error["code"] == "insufficient_permissions"
        assert error["required_roles"] == ["director"]
        assert error["user_role"] == "auditor"

    def test_suspension_applies_to_outstanding_token(self, api_client) -> None:
        user = api_client.create_user("soon-suspended@audit.test", Role.auditor)
        headers = {"Authorization": f"Bearer {api_client.token_for(user)}"}
        assert api_client.client.get(f"{API}/users/profile", headers=headers).status_code == 200

        resp = api_client.client.put(
            f"{API}/users/{user.id}/status",
            json={"status": "suspended"},
            headers=api_client.headers(Role.director),
        )
        assert resp.status_code == 200

        resp = api_client.client.get(f"{API}/users/profile", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_or_inactive_user"

    def test_docs_require_auth(self, api_client) -> None:
        assert api_client.client.get("/docs").status_code == 401
        assert api_client.client.get("/docs", headers=api_client.headers(Role.board)).status_code == 200


# ---------------------------------------------------------------------------
# Auth routes
# ---------------------------------------------------------------------------


class TestLogin:
    def test_valid_credentials(self, api_client) -> None:
        resp = api_client.client.post(
            f"{API}/auth/login",
            json={"email": "Auditor@Audit.test", "password": api_client.password},
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 8 * 3600
        assert data["user"]["email"] == "auditor@audit.test"
        assert data["user"]["last_login"] is not None
        assert "password_hash" not in data["user"]

        me = api_client.client.get(
            f"{API}/users/profile", headers={"Authorization": f"Bearer {data['access_token']}"}
        )
        assert me.json()["role"] == "auditor"

    def test_wrong_password_and_unknown_email_look_the_same(self, api_client) -> None:
        wrong = api_client.client.post(f"{API}/auth/login", json={"email": "auditor@audit.test", "password": "nope"})
        unknown = api_client.client.post(
            f"{API}/auth/login", json={"email": "nobody@audit.test", "password": api_client.password}
        )
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"

    def test_inactive_account_refused_after_password_check(self, api_client) -> None:
        user = api_client.create_user("inactive@audit.test", Role.auditor)
        api_client.user_store.update_status(user.id, UserStatus.inactive)

        resp = api_client.client.post(
            f"{API}/auth/login", json={"email": "inactive@audit.test", "password": api_client.password}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "account_inactive"

        resp = api_client.client.post(f"{API}/auth/login", json={"email": "inactive@audit.test", "password": "nope"})
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_logout(self, api_client) -> None:
        assert api_client.client.post(f"{API}/auth/logout").status_code == 200


class TestRegister:
    _BODY = {
        "email": "new.hire@audit.test",
        "password": "a-long-enough-password",
        "first_name": "New",
        "last_name": "Hire",
        "role": "auditor",
        "department": "Internal Audit",
    }

    def test_director_registers_user(self, api_client) -> None:
        resp = api_client.client.post(f"{API}/auth/register", json=self._BODY, headers=api_client.headers(Role.director))
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["role"] == "auditor"
        assert data["status"] == "active"

        login = api_client.client.post(
            f"{API}/auth/login", json={"email": self._BODY["email"], "password": self._BODY["password"]}
        )
        assert login.status_code == 200

    def test_duplicate_email_conflict_without_hashing(self, api_client) -> None:
        body = {**self._BODY, "email": "director@audit.test"}
        with patch("api.routes.v1.auth.hash_password") as hasher:
            resp = api_client.client.post(f"{API}/auth/register", json=body, headers=api_client.headers(Role.director))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"
        hasher.assert_not_called()

    def test_senior_auditor_cannot_register(self, api_client) -> None:
        resp = api_client.client.post(
            f"{API}/auth/register",
            json={**self._BODY, "email": "x@audit.test"},
            headers=api_client.headers(Role.senior_auditor),
        )
        assert resp.status_code == 403

    def test_invalid_role_and_short_password_rejected(self, api_client) -> None:
        headers = api_client.headers(Role.director)
        bad_role = api_client.client.post(
            f"{API}/auth/register", json={**self._BODY, "email": "r@audit.test", "role": "admin"}, headers=headers
        )
        short = api_client.client.post(
            f"{API}/auth/register", json={**self._BODY, "email": "s@audit.test", "password": "short"}, headers=headers
        )
        too_long = api_client.client.post(
            f"{API}/auth/register", json={**self._BODY, "email": "l@audit.test", "password": "é" * 40}, headers=headers
        )
        for resp in (bad_role, short, too_long):
            assert resp.status_code == 422
            assert resp.json()["error"]["code"] == "validation_error"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class TestUsers:
    def test_list_ordered_by_last_name(self, api_client) -> None:
        api_client.create_user("aaron@audit.test", Role.board, last_name="Aaronson")
        resp = api_client.client.get(f"{API}/users", headers=api_client.headers(Role.director))
        assert resp.status_code == 200
        last_names = [u["last_name"] for u in resp.json()]
        assert last_names == sorted(last_names)
        assert last_names[0] == "Aaronson"

    def test_update_own_profile(self, api_client) -> None:
        headers = api_client.headers(Role.management)
        resp = api_client.client.put(
            f"{API}/users/profile",
            json={"phone": "+1 555 0100", "certifications": ["CIA", "CISA"]},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["certifications"] == ["CIA", "CISA"]
        assert api_client.client.get(f"{API}/users/profile", headers=headers).json()["phone"] == "+1 555 0100"

    def test_profile_names_cannot_be_nulled(self, api_client) -> None:
        headers = api_client.headers(Role.auditor)
        for field in ("first_name", "last_name"):
            resp = api_client.client.put(f"{API}/users/profile", json={field: None}, headers=headers)
            assert resp.status_code == 422, field
            assert resp.json()["error"]["code"] == "validation_error"
        assert api_client.client.get(f"{API}/users/profile", headers=headers).json()["last_name"] == "Tester"

    def test_profile_cannot_change_role(self, api_client) -> None:
        resp = api_client.client.put(
            f"{API}/users/profile", json={"role": "director"}, headers=api_client.headers(Role.auditor)
        )
        assert resp.status_code == 422

    def test_director_cannot_change_own_status(self, api_client) -> None:
        director = api_client.users[Role.director]
        resp = api_client.client.put(
            f"{API}/users/{director.id}/status",
            json={"status": "inactive"},
            headers=api_client.headers(Role.director),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_status_change"

    def test_status_of_unknown_user(self, api_client) -> None:
        resp = api_client.client.put(
            f"{API}/users/99999/status", json={"status": "active"}, headers=api_client.headers(Role.director)
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"


# ---------------------------------------------------------------------------
# Risk assessments
# ---------------------------------------------------------------------------


class TestRisks:
    _BODY = {
        "title": "Vendor payments",
        "area_assessed": "Accounts Payable",
        "inherent_risk_score": 9,
        "residual_risk_score": 6,
    }

    def test_create_then_update_rederives_level(self, api_client) -> None:
        headers = api_client.headers(Role.auditor)
        resp = api_client.client.post(f"{API}/risks", json={**self._BODY, "risk_level": "low"}, headers=headers)
        assert resp.status_code == 201, resp.text
        risk = resp.json()
        assert risk["risk_level"] == "high"
        assert risk["assessed_by"] == api_client.users[Role.auditor].id

        resp = api_client.client.put(f"{API}/risks/{risk['id']}", json={"residual_risk_score": 3}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["risk_level"] == "low"
        assert api_client.client.get(f"{API}/risks/{risk['id']}", headers=headers).json()["risk_level"] == "low"

    def test_management_cannot_assess(self, api_client) -> None:
        resp = api_client.client.post(f"{API}/risks", json=self._BODY, headers=api_client.headers(Role.management))
        assert resp.status_code == 403

    def test_scores_must_be_integers_in_range(self, api_client) -> None:
        headers = api_client.headers(Role.auditor)
        for score in (0, 11, True, "5", 5.5):
            resp = api_client.client.post(f"{API}/risks", json={**self._BODY, "residual_risk_score": score}, headers=headers)
            assert resp.status_code == 422, score

    def test_list_filter_heatmap_and_missing(self, api_client) -> None:
        headers = api_client.headers(Role.board)
        api_client.client.post(
            f"{API}/risks",
            json={**self._BODY, "area_assessed": "Cyber Security", "residual_risk_score": 9, "assessment_date": "2099-01-01"},
            headers=api_client.headers(Role.director),
        )
        critical = api_client.client.get(f"{API}/risks", params={"risk_level": "critical"}, headers=headers).json()
        assert {r["area_assessed"] for r in critical} == {"Cyber Security"}
        by_area = api_client.client.get(f"{API}/risks", params={"area": "cyber"}, headers=headers).json()
        assert [r["area_assessed"] for r in by_area] == ["Cyber Security"]

        heatmap = api_client.client.get(f"{API}/risks/heatmap", headers=headers)
        assert heatmap.status_code == 200
        assert "Cyber Security" in {p["area_assessed"] for p in heatmap.json()["heat_map_data"]}

        assert api_client.client.get(f"{API}/risks/99999", headers=headers).status_code == 404
        assert api_client.client.get(f"{API}/risks", params={"risk_level": "extreme"}, headers=headers).status_code == 422


# ---------------------------------------------------------------------------
# Plans, engagements and child records
# ---------------------------------------------------------------------------


class TestPlans:
    def test_create_and_approve(self, api_client) -> None:
        planner = api_client.headers(Role.senior_auditor)
        resp = api_client.client.post(f"{API}/audits/plans", json={"title": "2026 Annual Plan", "year": 2026}, headers=planner)
        assert resp.status_code == 201, resp.text
        plan = resp.json()
        assert plan["status"] == "draft"
        assert plan["created_by"] == api_client.users[Role.senior_auditor].id

        resp = api_client.client.patch(
            f"{API}/audits/plans/{plan['id']}", json={"status": "approved"}, headers=api_client.headers(Role.director)
        )
        approved = resp.json()
        assert approved["status"] == "approved"
        assert approved["approved_by"] == api_client.users[Role.director].id
        assert approved["approved_date"]

        listed = api_client.client.get(f"{API}/audits/plans", params={"year": 2026}, headers=api_client.headers(Role.board))
        assert plan["id"] in [p["id"] for p in listed.json()]

    def test_auditor_cannot_create_plan(self, api_client) -> None:
        resp = api_client.client.post(
            f"{API}/audits/plans", json={"title": "Nope", "year": 2026}, headers=api_client.headers(Role.auditor)
        )
        assert resp.status_code == 403

    def test_empty_patch_and_missing_plan(self, api_client) -> None:
        planner = api_client.headers(Role.director)
        assert api_client.client.patch(f"{API}/audits/plans/99999", json={}, headers=planner).status_code == 400
        resp = api_client.client.patch(f"{API}/audits/plans/99999", json={"title": "x"}, headers=planner)
        assert resp.status_code == 404


class TestEngagements:
    def _create(self, api_client, **extra) -> dict:
        resp = api_client.client.post(
            f"{API}/audits/engagements",
            json={"title": "Payroll audit", **extra},
            headers=api_client.headers(Role.senior_auditor),
        )
        assert resp.status_code == 201, resp.text
        return resp.json()

    def test_numbers_are_allocated_in_sequence(self, api_client) -> None:
        first = self._create(api_client)
        second = self._create(api_client, title="Procurement audit")
        assert re.fullmatch(r"\d{4}-\d{3}", first["engagement_number"])
        year, n = first["engagement_number"].split("-")
        assert second["engagement_number"] == f"{year}-{int(n) + 1:03d}"
        assert first["status"] == "planning"

    def test_unknown_references_rejected(self, api_client) -> None:
        resp = api_client.client.post(
            f"{API}/audits/engagements",
            json={"title": "Orphan", "lead_auditor": 99999, "audit_plan_id": 99999},
            headers=api_client.headers(Role.director),
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "user 99999" in error["detail"]
        assert "audit plan 99999" in error["detail"]

    def test_update_filter_and_missing(self, api_client) -> None:
        lead = api_client.users[Role.auditor]
        eng = self._create(api_client, lead_auditor=lead.id, planned_start_date="2026-03-01")
        resp = api_client.client.patch(
            f"{API}/audits/engagements/{eng['id']}",
            json={"status": "fieldwork", "actual_hours": 12},
            headers=api_client.headers(Role.director),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "fieldwork"
        assert resp.json()["planned_start_date"] == "2026-03-01"

        viewer = api_client.headers(Role.board)
        fieldwork = api_client.client.get(f"{API}/audits/engagements", params={"status": "fieldwork"}, headers=viewer)
        assert eng["id"] in [e["id"] for e in fieldwork.json()]
        assert api_client.client.get(f"{API}/audits/engagements/99999", headers=viewer).status_code == 404

    def test_findings_number_per_engagement_and_resolve(self, api_client) -> None:
        eng = self._create(api_client)
        auditor = api_client.headers(Role.auditor)
        url = f"{API}/audits/engagements/{eng['id']}/findings"
        f1 = api_client.client.post(url, json={"title": "No segregation", "severity": "high"}, headers=auditor).json()
        f2 = api_client.client.post(url, json={"title": "Late reconciliations"}, headers=auditor).json()
        assert (f1["finding_number"], f2["finding_number"]) == ("F01", "F02")
        assert [f["finding_number"] for f in api_client.client.get(url, headers=auditor).json()] == ["F01", "F02"]

        resp = api_client.client.patch(
            f"{API}/audits/findings/{f1['id']}",
            json={"status": "resolved", "management_response": "Fixed"},
            headers=api_client.headers(Role.management),
        )
        assert resp.status_code == 200
        assert resp.json()["resolved_date"]

        board = api_client.client.patch(
            f"{API}/audits/findings/{f1['id']}", json={"status": "closed"}, headers=api_client.headers(Role.board)
        )
        assert board.status_code == 403

    def test_children_of_missing_engagement(self, api_client) -> None:
        headers = api_client.headers(Role.director)
        for child in ("findings", "working-papers", "reports"):
            resp = api_client.client.get(f"{API}/audits/engagements/99999/{child}", headers=headers)
            assert resp.status_code == 404, child
        resp = api_client.client.post(f"{API}/audits/engagements/99999/findings", json={"title": "x"}, headers=headers)
        assert resp.status_code == 404

    def test_working_papers_and_review(self, api_client) -> None:
        eng = self._create(api_client)
        url = f"{API}/audits/engagements/{eng['id']}/working-papers"
        auditor = api_client.headers(Role.auditor)
        auto = api_client.client.post(url, json={"title": "Walkthrough"}, headers=auditor).json()
        custom = api_client.client.post(url, json={"title": "Sample", "wp_reference": "B.2"}, headers=auditor).json()
        assert (auto["wp_reference"], custom["wp_reference"]) == ("WP1", "B.2")
        assert auto["review_status"] == "draft"

        resp = api_client.client.patch(
            f"{API}/audits/working-papers/{auto['id']}/review",
            json={"review_status": "approved", "review_comments": "Fine"},
            headers=api_client.headers(Role.senior_auditor),
        )
        reviewed = resp.json()
        assert reviewed["review_status"] == "approved"
        assert reviewed["reviewed_by"] == api_client.users[Role.senior_auditor].id
        assert reviewed["reviewed_date"]

        assert api_client.client.patch(
            f"{API}/audits/working-papers/{auto['id']}/review", json={"review_status": "approved"}, headers=auditor
        ).status_code == 403

    def test_reports(self, api_client) -> None:
        eng = self._create(api_client)
        director = api_client.headers(Role.director)
        resp = api_client.client.post(
            f"{API}/audits/engagements/{eng['id']}/reports",
            json={"title": "Payroll audit report", "opinion": "needs_improvement"},
            headers=director,
        )
        assert resp.status_code == 201, resp.text
        report = resp.json()
        assert re.fullmatch(r"RPT-\d{4}-\d{3}", report["report_number"])
        assert report["prepared_by"] == api_client.users[Role.director].id

        final = api_client.client.patch(f"{API}/audits/reports/{report['id']}", json={"status": "final"}, headers=director)
        assert final.json()["status"] == "final"
        assert final.json()["issue_date"]

        reviewer = api_client.users[Role.senior_auditor]
        url = f"{API}/audits/reports/{report['id']}"
        reviewed = api_client.client.patch(url, json={"reviewed_by": reviewer.id}, headers=director)
        assert reviewed.status_code == 200
        assert reviewed.json()["reviewed_by"] == reviewer.id

        unknown = api_client.client.patch(url, json={"reviewed_by": 99999}, headers=director)
        assert unknown.status_code == 422
        assert "user 99999" in unknown.json()["error"]["detail"]
        missing = api_client.client.patch(f"{API}/audits/reports/99999", json={"reviewed_by": 99999}, headers=director)
        assert missing.status_code == 404

    def test_action_plans(self, api_client) -> None:
        eng = self._create(api_client)
        finding = api_client.client.post(
            f"{API}/audits/engagements/{eng['id']}/findings",
            json={"title": "Gap"},
            headers=api_client.headers(Role.auditor),
        ).json()
        manager = api_client.users[Role.management]
        url = f"{API}/audits/findings/{finding['id']}/action-plans"
        resp = api_client.client.post(
            url,
            json={"action_description": "Introduce dual approval", "responsible_person": manager.id, "target_completion_date": "2026-12-31"},
            headers=api_client.headers(Role.management),
        )
        assert resp.status_code == 201, resp.text
        action = resp.json()
        assert action["status"] == "pending"

        done = api_client.client.patch(
            f"{API}/audits/action-plans/{action['id']}", json={"status": "completed"}, headers=api_client.headers(Role.management)
        )
        assert done.json()["actual_completion_date"]
        assert [a["id"] for a in api_client.client.get(url, headers=api_client.headers(Role.board)).json()] == [action["id"]]

        assert api_client.client.get(f"{API}/audits/findings/99999/action-plans", headers=api_client.headers(Role.board)).status_code == 404


# ---------------------------------------------------------------------------
# Dashboard and health
# ---------------------------------------------------------------------------


class TestDashboard:
    def test_overview(self, api_client) -> None:
        resp = api_client.client.get(f"{API}/dashboard/overview", headers=api_client.headers(Role.board))
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {
            "audit_statistics",
            "risk_statistics",
            "finding_statistics",
            "recent_engagements",
            "overdue_actions",
            "metrics",
        }
        assert 0 <= data["metrics"]["completion_rate"] <= 100

    def test_my_tasks(self, api_client) -> None:
        lead = api_client.users[Role.senior_auditor]
        created = api_client.client.post(
            f"{API}/audits/engagements",
            json={"title": "Lead by senior", "lead_auditor": lead.id},
            headers=api_client.headers(Role.director),
        ).json()
        resp = api_client.client.get(f"{API}/dashboard/my-tasks", headers=api_client.headers(Role.senior_auditor))
        assert resp.status_code == 200
        assert created["id"] in [e["id"] for e in resp.json()["my_engagements"]]

    def test_requires_auth(self, api_client) -> None:
        assert api_client.client.get(f"{API}/dashboard/overview").status_code == 401


class TestHealth:
    def test_health_is_public(self, api_client) -> None:
        resp = api_client.client.get(f"{API}/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["components"] == {"api": "ok", "database": "ok"}
