"""Integration tests for the FastAPI endpoints.

Uses TestClient against an in-memory database shared through StaticPool.
"""
from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from radar.db import make_engine
from radar.models import AssessmentPeriod, Base, Category, Company, Question, User

FOUNDER = {"X-Auth-User-Id": "founder-1"}
ADMIN = {"X-Auth-User-Id": "admin-1"}
MISSING_UUID = "123e4567-e89b-12d3-a456-426614174000"


@pytest.fixture()
def test_db():
    engine = make_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield TestSession
    engine.dispose()


@pytest.fixture()
def client(test_db, monkeypatch):
    """TestClient with the db dependency pointed at the test database."""
    monkeypatch.setenv("RADAR_DATABASE_URL", "sqlite:///:memory:")
    from radar.app import app, db_session

    rate_limiter = app.state.rate_limiter

    def override_db_session():
        session = test_db()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    rate_limiter.reset()
    monkeypatch.setattr(rate_limiter, "max_requests", 1000)
    app.dependency_overrides[db_session] = override_db_session
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c, test_db
    app.dependency_overrides.clear()
    rate_limiter.reset()


@pytest.fixture()
def seeded(client):
    """Acme with a founder, an admin and two standard questions."""
    c, TestSession = client
    session = TestSession()
    acme = Company(name="Acme")
    session.add(acme)
    session.flush()
    cat = Category(pillar="Team", label="Hiring", sequence=1)
    session.add(cat)
    session.flush()
    q1 = Question(category_id=cat.id, prompt="We hire well", sequence=1)
    q2 = Question(category_id=cat.id, prompt="Onboarding is smooth", sequence=2)
    session.add_all([
        q1, q2,
        User(auth_user_id="founder-1", full_name="Fran Founder", company_id=acme.id),
        User(auth_user_id="admin-1", full_name="Ada Admin", role="admin"),
    ])
    session.commit()
    ids = {"company": acme.id, "q1": q1.id, "q2": q2.id}
    session.close()
    return c, TestSession, ids


def _submit(c, ids, year=2024, quarter=1, s1=4, s2=2):
    return c.post("/api/assessments", headers=FOUNDER, json={
        "year": year, "quarter": quarter, "answers": {ids["q1"]: s1, ids["q2"]: s2},
    })


class TestAuth:
    def test_missing_header(self, seeded):
        c, _, _ = seeded
        assert c.get("/api/me").status_code == 401

    def test_no_profile(self, seeded):
        c, _, _ = seeded
        assert c.get("/api/questions", headers={"X-Auth-User-Id": "stranger"}).status_code == 403

    def test_founder_cannot_use_admin_routes(self, seeded):
        c, _, _ = seeded
        resp = c.get("/api/admin/companies", headers=FOUNDER)
        assert resp.status_code == 403
        assert "Admin access required" in resp.json()["detail"]


class TestProfile:
    def test_create_profile(self, seeded):
        c, _, ids = seeded
        headers = {"X-Auth-User-Id": "new-1"}
        resp = c.post("/api/me", headers=headers, json={"full_name": "Nia", "company_name": "acme"})
        assert resp.status_code == 200
        assert resp.json()["company_id"] == ids["company"]
        assert resp.json()["role"] == "member"
        assert c.get("/api/me", headers=headers).json()["full_name"] == "Nia"

    def test_unknown_company(self, seeded):
        c, _, _ = seeded
        resp = c.post("/api/me", headers={"X-Auth-User-Id": "x"}, json={"full_name": "X", "company_name": "Globex"})
        assert resp.status_code == 404

    def test_admin_request(self, seeded):
        c, _, _ = seeded
        resp = c.post("/api/me/admin-request", headers=FOUNDER)
        assert resp.status_code == 200
        assert resp.json()["admin_requested_at"] is not None


class TestFounderFlow:
    def test_questions(self, seeded):
        c, _, ids = seeded
        data = c.get("/api/questions", headers=FOUNDER).json()
        assert [q["id"] for q in data] == [ids["q1"], ids["q2"]]
        assert data[0]["pillar"] == "Team"

    def test_submit_and_dashboard(self, seeded):
        c, _, ids = seeded
        assert _submit(c, ids).status_code == 201
        data = c.get("/api/dashboard", headers=FOUNDER).json()
        assert len(data) == 1
        assert data[0]["categories"][0]["axes"] == [{"label": "Hiring", "score": 3.0}]

    def test_duplicate_submission(self, seeded):
        c, _, ids = seeded
        _submit(c, ids)
        resp = _submit(c, ids)
        assert resp.status_code == 409
        assert resp.json()["detail"] == "You've already submitted Q1 2024."

    def test_invalid_score(self, seeded):
        c, _, ids = seeded
        resp = _submit(c, ids, s1=9)
        assert resp.status_code == 400
        assert "must be an integer from 1 to 5" in resp.json()["detail"]

    def test_prior_scores(self, seeded):
        c, _, ids = seeded
        fresh = c.get("/api/assessments/prior", headers=FOUNDER, params={"year": 2024, "quarter": 1}).json()
        assert fresh == {"scores": None, "defaults": {ids["q1"]: 3, ids["q2"]: 3}}
        _submit(c, ids)
        prior = c.get("/api/assessments/prior", headers=FOUNDER, params={"year": 2024, "quarter": 2}).json()
        assert prior["scores"] == {ids["q1"]: 4, ids["q2"]: 2}
        assert prior["defaults"] == {ids["q1"]: 4, ids["q2"]: 2}

    def test_prior_bad_quarter(self, seeded):
        c, _, _ = seeded
        resp = c.get("/api/assessments/prior", headers=FOUNDER, params={"year": 2024, "quarter": 7})
        assert resp.status_code == 400


class TestImportEndpoint:
    def _body(self, data, company="Acme", quarter=1):
        return {"company_name": company, "year": 2024, "quarter": quarter, "json_data": json.dumps(data)}

    def test_import(self, seeded):
        c, _, ids = seeded
        resp = c.post("/api/admin/import", headers=ADMIN, json=self._body(
            {"Team": {"Hiring": [{"statement": "We hire well", "score": 5}]}}
        ))
        assert resp.status_code == 200
        body = resp.json()
        assert body["company_id"] == ids["company"]
        assert body["responses_imported"] == 1
        assert body["questions_created"] == 1

    def test_all_failed(self, seeded):
        c, _, _ = seeded
        resp = c.post("/api/admin/import", headers=ADMIN, json=self._body({"Team": {"Hiring": [{"score": 5}]}}))
        assert resp.status_code == 422
        assert resp.json()["failures"][0]["statement"] == "Item #1"

    def test_unknown_company(self, seeded):
        c, _, _ = seeded
        resp = c.post("/api/admin/import", headers=ADMIN, json=self._body({}, company="Globex"))
        assert resp.status_code == 404

    def test_invalid_json(self, seeded):
        c, _, _ = seeded
        body = {"company_name": "Acme", "year": 2024, "quarter": 1, "json_data": "{nope"}
        resp = c.post("/api/admin/import", headers=ADMIN, json=body)
        assert resp.status_code == 400

    def test_founder_forbidden(self, seeded):
        c, _, _ = seeded
        assert c.post("/api/admin/import", headers=FOUNDER, json=self._body({})).status_code == 403


class TestAdminOverview:
    def test_companies(self, seeded):
        c, TestSession, ids = seeded
        _submit(c, ids)
        session = TestSession()
        session.add(Company(name="Beta"))
        session.commit()
        session.close()
        data = c.get("/api/admin/companies", headers=ADMIN).json()
        assert [x["name"] for x in data["with_assessments"]] == ["Acme"]
        assert [x["name"] for x in data["without_assessments"]] == ["Beta"]

    def test_company_assessments(self, seeded):
        c, _, ids = seeded
        for quarter in (1, 2, 3, 4):
            _submit(c, ids, quarter=quarter)
        url = f"/api/admin/companies/{ids['company']}/assessments"
        assert len(c.get(url, headers=ADMIN).json()) == 3
        assert len(c.get(url, headers=ADMIN, params={"all": True}).json()) == 4

    def test_unknown_company(self, seeded):
        c, _, _ = seeded
        assert c.get(f"/api/admin/companies/{MISSING_UUID}/assessments", headers=ADMIN).status_code == 404

    def test_detail_and_delete(self, seeded):
        c, TestSession, ids = seeded
        period_id = _submit(c, ids).json()["period_id"]
        detail = c.get(f"/api/admin/assessments/{period_id}", headers=ADMIN).json()
        assert len(detail["responses"]) == 2
        assert c.delete(f"/api/admin/assessments/{period_id}", headers=ADMIN).json() == {"ok": True}
        session = TestSession()
        assert session.execute(select(AssessmentPeriod)).first() is None
        session.close()

    def test_delete_bad_id(self, seeded):
        c, _, _ = seeded
        resp = c.delete("/api/admin/assessments/not-a-uuid", headers=ADMIN)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid assessment ID format"

    def test_delete_missing(self, seeded):
        c, _, _ = seeded
        assert c.delete(f"/api/admin/assessments/{MISSING_UUID}", headers=ADMIN).status_code == 404


class TestReviews:
    def test_monthly_reports(self, seeded):
        c, _, ids = seeded
        url = f"/api/admin/companies/{ids['company']}/monthly-reports"
        resp = c.put(url, headers=ADMIN, json={"year": 2024, "month": 2, "finance": "Runway is short"})
        assert resp.status_code == 200
        assert resp.json()["finance"] == "Runway is short"
        listed = c.get(url, headers=ADMIN, params={"year": 2024, "quarter": 1}).json()
        assert [r["month"] for r in listed] == [2]
        assert c.get(url, headers=ADMIN, params={"year": 2024, "quarter": 2}).json() == []

    def test_generate_review(self, seeded):
        c, _, ids = seeded
        _submit(c, ids, year=2023, quarter=4, s1=2, s2=2)
        _submit(c, ids, year=2024, quarter=1)
        fake = MagicMock()
        fake.model = "test-model"
        fake.complete = AsyncMock(return_value='{"executive_summary": "Better hiring."}')
        url = f"/api/admin/companies/{ids['company']}/reviews/2024/1"
        with patch("radar.services.LLMClient", return_value=fake) as factory:
            first = c.post(url, headers=ADMIN)
            second = c.post(url, headers=ADMIN)
        assert first.status_code == 200
        assert first.json()["executive_summary"] == "Better hiring."
        assert second.json() == first.json()
        assert factory.call_count == 1

    def test_review_needs_previous_quarter(self, seeded):
        c, _, ids = seeded
        _submit(c, ids)
        with patch("radar.services.LLMClient") as factory:
            resp = c.post(f"/api/admin/companies/{ids['company']}/reviews/2024/1", headers=ADMIN)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Previous quarter assessment not found"
        factory.assert_not_called()

    def test_llm_failure(self, seeded):
        from radar.reviewer import LLMCallError

        c, _, ids = seeded
        _submit(c, ids, year=2023, quarter=4)
        _submit(c, ids, year=2024, quarter=1)
        with patch("radar.services.LLMClient", side_effect=LLMCallError("Azure AI not configured.", retryable=False)):
            resp = c.post(f"/api/admin/companies/{ids['company']}/reviews/2024/1", headers=ADMIN)
        assert resp.status_code == 502
        assert resp.json()["retryable"] is False


class TestUsers:
    def test_list_grant_revoke(self, seeded):
        c, _, _ = seeded
        users = c.get("/api/admin/users", headers=ADMIN).json()
        assert {u["auth_user_id"] for u in users} == {"admin-1", "founder-1"}
        assert c.post("/api/admin/users/founder-1/grant", headers=ADMIN).status_code == 200
        admins = c.get("/api/admin/users", headers=ADMIN, params={"admins_only": True}).json()
        assert {u["auth_user_id"] for u in admins} == {"admin-1", "founder-1"}
        assert c.post("/api/admin/users/founder-1/revoke", headers=ADMIN).status_code == 200
        assert c.get("/api/admin/companies", headers=FOUNDER).status_code == 403

    def test_grant_unknown(self, seeded):
        c, _, _ = seeded
        assert c.post("/api/admin/users/ghost/grant", headers=ADMIN).status_code == 404

    def test_cannot_revoke_self(self, seeded):
        c, _, _ = seeded
        assert c.post("/api/admin/users/admin-1/revoke", headers=ADMIN).status_code == 400


class TestRateLimit:
    def test_too_many_requests(self, seeded, monkeypatch):
        from radar.app import app

        c, _, _ = seeded
        rate_limiter = app.state.rate_limiter
        rate_limiter.reset()
        monkeypatch.setattr(rate_limiter, "max_requests", 2)
        codes = [c.get("/api/me", headers=FOUNDER).status_code for _ in range(3)]
        assert codes == [200, 200, 429]
        other = c.get("/api/me", headers={**FOUNDER, "X-Forwarded-For": "10.1.1.1"})
        assert other.status_code == 200
