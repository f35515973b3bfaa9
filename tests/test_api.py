"""Tests for report, job, health and auth endpoints."""

from httpx import AsyncClient

from geoattend.core.exceptions import StorageUnavailable
from geoattend.core.security import create_access_token, get_password_hash
from geoattend.models.user import User
from tests.conftest import OFFICE, local


# ── Reports ─────────────────────────────────────────────────────────
async def test_daily_report(async_client: AsyncClient, services, make_employee, clock):
    a = await make_employee("A")
    await make_employee("B")
    await services.attendance.request_check_in(a.id, local(2025, 3, 3, 9, 30), OFFICE)
    clock.set(local(2025, 3, 3, 12, 0))

    resp = await async_client.get("/api/v1/reports/daily/2025-03-03")
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_employees"] == 2
    assert data["checked_in"] == 1
    assert data["still_working"] == 1
    assert data["late_count"] == 1
    assert data["attendance_rate"] == 50.0


async def test_daily_report_bad_date(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/reports/daily/03-03-2025")
    assert resp.status_code == 422


async def test_weekly_report(async_client: AsyncClient, services, make_employee, clock):
    emp = await make_employee()
    await services.attendance.request_check_in(emp.id, local(2025, 3, 3, 8, 30), OFFICE)
    clock.set(local(2025, 3, 4, 12, 0))

    resp = await async_client.get("/api/v1/reports/weekly/2025-03-04")
    assert resp.status_code == 200
    data = resp.json()
    assert data["start"] == "2025-03-03"
    assert data["end"] == "2025-03-09"
    assert data["working_days"] == 2
    assert data["attendance_rate"] == 50.0
    assert len(data["days"]) == 2


async def test_monthly_report(async_client: AsyncClient, clock):
    clock.set(local(2025, 3, 3, 12, 0))
    resp = await async_client.get("/api/v1/reports/monthly/2025/2")
    assert resp.status_code == 200
    assert resp.json()["working_days"] == 20

    bad = await async_client.get("/api/v1/reports/monthly/2025/13")
    assert bad.status_code == 422


async def test_absentees_report(async_client: AsyncClient, make_employee, clock):
    emp = await make_employee("Late Larry")

    clock.set(local(2025, 3, 3, 9, 0))
    before = await async_client.get("/api/v1/reports/absentees/2025-03-03")
    assert before.status_code == 200
    assert before.json() == {"date": "2025-03-03", "cutoff_passed": False, "absentees": []}

    clock.set(local(2025, 3, 3, 10, 30))
    after = await async_client.get("/api/v1/reports/absentees/2025-03-03")
    body = after.json()
    assert body["cutoff_passed"] is True
    assert [e["id"] for e in body["absentees"]] == [emp.id]


async def test_absentees_future_date_rejected(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/reports/absentees/2030-01-01")
    assert resp.status_code == 400


# ── Jobs ────────────────────────────────────────────────────────────
async def test_list_jobs(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/jobs")
    assert resp.status_code == 200
    names = [j["name"] for j in resp.json()]
    assert "monthly_summary" in names
    assert names == sorted(names)


async def test_trigger_job(async_client: AsyncClient, services):
    services.jobs._memory_probe = lambda: 50.0
    resp = await async_client.post("/api/v1/jobs/health_check/trigger")
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["job"]["run_count"] == 1
    assert data["job"]["last_outcome"] == "completed"


async def test_trigger_failing_job_reports_failure(async_client: AsyncClient, services):
    async def explode():
        raise RuntimeError("nope")

    services.orchestrator.register("explode", "0 0 * * *", explode)
    resp = await async_client.post("/api/v1/jobs/explode/trigger")
    assert resp.status_code == 200
    assert resp.json()["success"] is False
    assert resp.json()["job"]["last_error"] == "nope"


async def test_trigger_unknown_job(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/jobs/nope/trigger")
    assert resp.status_code == 404


# ── Health ──────────────────────────────────────────────────────────
async def test_health_is_public(anonymous_client: AsyncClient):
    resp = await anonymous_client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["db"] is True
    assert data["scheduler"] is False
    assert data["jobs"] == 9


async def test_health_reports_db_down(anonymous_client: AsyncClient, store, monkeypatch):
    async def broken_ping():
        raise StorageUnavailable("down")

    monkeypatch.setattr(store, "ping", broken_ping)
    resp = await anonymous_client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["db"] is False


async def test_storage_outage_is_503(async_client: AsyncClient, store, monkeypatch):
    async def unavailable(*_args, **_kwargs):
        raise StorageUnavailable("down")

    monkeypatch.setattr(store, "list_employees", unavailable)
    resp = await async_client.get("/api/v1/employees")
    assert resp.status_code == 503
    assert resp.json()["success"] is False


# ── Auth ────────────────────────────────────────────────────────────
async def _add_user(db_session, email="viewer@example.com", password="s3cret-pass", role="viewer"):
    user = User(email=email, hashed_password=get_password_hash(password), role=role)
    db_session.add(user)
    await db_session.commit()
    return user


async def test_reports_require_auth(anonymous_client: AsyncClient):
    resp = await anonymous_client.get("/api/v1/reports/daily/2025-03-03")
    assert resp.status_code == 401


async def test_login_and_me(anonymous_client: AsyncClient, db_session):
    await _add_user(db_session)
    resp = await anonymous_client.post(
        "/api/v1/auth/login", data={"username": "viewer@example.com", "password": "s3cret-pass"}
    )
    assert resp.status_code == 200
    token = resp.json()["access_token"]

    me = await anonymous_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "viewer@example.com"


async def test_login_wrong_password(anonymous_client: AsyncClient, db_session):
    await _add_user(db_session)
    resp = await anonymous_client.post(
        "/api/v1/auth/login", data={"username": "viewer@example.com", "password": "wrong"}
    )
    assert resp.status_code == 401


async def test_viewer_cannot_trigger_jobs(anonymous_client: AsyncClient, db_session):
    user = await _add_user(db_session)
    token = create_access_token(user.id)
    resp = await anonymous_client.post(
        "/api/v1/jobs/health_check/trigger", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 403


async def test_login_sets_httponly_cookies(anonymous_client: AsyncClient, db_session):
    await _add_user(db_session)
    resp = await anonymous_client.post(
        "/api/v1/auth/login", data={"username": "viewer@example.com", "password": "s3cret-pass"}
    )
    assert "access_token" in resp.cookies
    assert "refresh_token" in resp.cookies
    set_cookie = resp.headers.get("set-cookie")
    assert "HttpOnly" in set_cookie
    assert "SameSite=lax" in set_cookie


async def test_refresh_with_body_token(anonymous_client: AsyncClient, db_session):
    await _add_user(db_session)
    login = await anonymous_client.post(
        "/api/v1/auth/login", data={"username": "viewer@example.com", "password": "s3cret-pass"}
    )
    refreshed = await anonymous_client.post(
        "/api/v1/auth/refresh", json={"refresh_token": login.json()["refresh_token"]}
    )
    assert refreshed.status_code == 200
    assert refreshed.json()["token_type"] == "bearer"

    bogus = await anonymous_client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
    assert bogus.status_code == 401


async def test_trigger_job_removed_mid_run(async_client: AsyncClient, services, monkeypatch):
    services.jobs._memory_probe = lambda: 50.0
    monkeypatch.setattr(services.orchestrator, "get", lambda name: None)
    resp = await async_client.post("/api/v1/jobs/health_check/trigger")
    assert resp.status_code == 404
