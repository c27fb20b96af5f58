from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from conftest import DEFAULT_PASSWORD
from safra_api import dependencies as dependencies_module
from safra_api.core.config import get_settings
from safra_api.models.auth import UserSession
from safra_api.models.enums import PrincipalRole
from safra_api.models.user import User
from safra_api.services import credentials as credentials_module
from safra_api.services import password_reset as password_reset_module
from safra_api.utils.clock import utc_now


def _login(
    client: TestClient,
    email: str = "reader@example.com",
    password: str = DEFAULT_PASSWORD,
    *,
    path: str = "/api/auth/login",
):
    return client.post(path, json={"email": email, "password": password})


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _error_code(response) -> str:
    return response.json()["error"]["code"]


def test_health_probes(api_client: TestClient):
    live = api_client.get("/api/health/live")
    ready = api_client.get("/api/health/ready")

    assert live.status_code == 200
    assert live.json()["data"]["status"] == "ok"
    assert ready.status_code == 200
    assert ready.json()["data"] == {"status": "ready", "checks": {"database": "ok", "rate_limiter": "local"}}
    assert live.headers["X-Request-Id"]


def test_register_issues_session_and_cookie(api_client: TestClient):
    response = api_client.post(
        "/api/auth/register",
        json={"email": "New@Example.com", "password": DEFAULT_PASSWORD, "display_name": "Nuevo"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["request_id"]
    assert body["data"]["user"]["email"] == "new@example.com"
    assert body["data"]["user"]["role"] == "user"
    assert "password_hash" not in body["data"]["user"]
    assert body["data"]["session"]["pool"] == "user"
    assert api_client.cookies.get("safra_session") == body["data"]["session"]["access_token"]
    assert response.headers["Cache-Control"] == "no-store"

    me = api_client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["data"]["user"]["display_name"] == "Nuevo"


def test_register_duplicate_email_conflicts(api_client: TestClient, make_user):
    make_user()

    response = api_client.post(
        "/api/auth/register",
        json={"email": "reader@example.com", "password": DEFAULT_PASSWORD},
    )

    assert response.status_code == 409
    assert _error_code(response) == "CONFLICT"


def test_register_rejects_weak_password(api_client: TestClient):
    response = api_client.post(
        "/api/auth/register",
        json={"email": "weak@example.com", "password": "alllowercase"},
    )

    assert response.status_code == 422
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]["errors"][0]["field"] == "password"


def test_login_me_logout_with_bearer_token(api_client: TestClient, make_user):
    make_user()
    login = _login(api_client)
    assert login.status_code == 200
    token = login.json()["data"]["session"]["access_token"]
    api_client.cookies.clear()

    me = api_client.get("/api/auth/me", headers=_bearer(token))
    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == "reader@example.com"
    assert me.json()["data"]["pool"] == "user"

    logout = api_client.post("/api/auth/logout", headers=_bearer(token))
    assert logout.status_code == 200
    assert logout.json()["data"] == {"logged_out": True, "revoked": True}

    after = api_client.get("/api/auth/me", headers=_bearer(token))
    assert after.status_code == 401
    assert _error_code(after) == "SESSION_EXPIRED_OR_INVALID"

    again = api_client.post("/api/auth/logout", headers=_bearer(token))
    assert again.status_code == 200
    assert again.json()["data"] == {"logged_out": True, "revoked": False}


def test_logout_clears_session_cookie(api_client: TestClient, make_user):
    make_user()
    _login(api_client)
    assert api_client.cookies.get("safra_session")

    api_client.post("/api/auth/logout")

    assert api_client.cookies.get("safra_session") is None
    assert api_client.get("/api/auth/me").status_code == 401


def test_me_without_credentials_is_unauthenticated(api_client: TestClient):
    response = api_client.get("/api/auth/me")

    assert response.status_code == 401
    assert _error_code(response) == "SESSION_EXPIRED_OR_INVALID"
    assert api_client.get("/api/auth/me", headers=_bearer("garbage token")).status_code == 401


def test_unknown_email_and_wrong_password_get_same_response(api_client: TestClient, make_user):
    make_user()

    unknown = _login(api_client, "nobody@example.com", "Wrong-passw0rd")
    wrong = _login(api_client, "reader@example.com", "Wrong-passw0rd")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json()["error"] == wrong.json()["error"]


def test_account_lockout_scenario(api_client: TestClient, make_user, db_session: Session):
    user = make_user()
    for _ in range(5):
        response = _login(api_client, password="Wrong-passw0rd")
        assert response.status_code == 401
        assert _error_code(response) == "INVALID_CREDENTIALS"

    locked = _login(api_client)
    assert locked.status_code == 423
    assert _error_code(locked) == "ACCOUNT_LOCKED"

    db_session.expire_all()
    user = db_session.get(User, user.id)
    assert user.failed_login_attempts == 5
    user.locked_until = utc_now() - timedelta(seconds=1)
    db_session.commit()

    unlocked = _login(api_client)
    assert unlocked.status_code == 200
    db_session.expire_all()
    assert db_session.get(User, user.id).failed_login_attempts == 0


def test_expired_session_is_rejected(api_client: TestClient, make_user, db_session: Session):
    user = make_user()
    token = _login(api_client).json()["data"]["session"]["access_token"]
    api_client.cookies.clear()

    db_session.expire_all()
    record = db_session.execute(select(UserSession).where(UserSession.user_id == user.id)).scalar_one()
    record.expires_at = utc_now() - timedelta(seconds=1)
    db_session.commit()

    response = api_client.get("/api/auth/me", headers=_bearer(token))
    assert response.status_code == 401
    assert _error_code(response) == "SESSION_EXPIRED_OR_INVALID"


def test_refresh_rotates_token(api_client: TestClient, make_user):
    make_user()
    old_token = _login(api_client).json()["data"]["session"]["access_token"]
    api_client.cookies.clear()

    refreshed = api_client.post("/api/auth/refresh", headers=_bearer(old_token))
    assert refreshed.status_code == 200
    new_token = refreshed.json()["data"]["session"]["access_token"]
    api_client.cookies.clear()

    assert new_token != old_token
    assert api_client.get("/api/auth/me", headers=_bearer(old_token)).status_code == 401
    assert api_client.get("/api/auth/me", headers=_bearer(new_token)).status_code == 200
    assert api_client.post("/api/auth/refresh", headers=_bearer(old_token)).status_code == 401


def test_password_change_revokes_every_session(api_client: TestClient, make_user):
    make_user()
    first = _login(api_client).json()["data"]["session"]["access_token"]
    second = _login(api_client).json()["data"]["session"]["access_token"]
    api_client.cookies.clear()

    changed = api_client.post(
        "/api/auth/password",
        headers=_bearer(first),
        json={"current_password": DEFAULT_PASSWORD, "new_password": "N3wPassword"},
    )
    assert changed.status_code == 200
    assert changed.json()["data"] == {"password_changed": True, "revoked_sessions": 2}

    assert api_client.get("/api/auth/me", headers=_bearer(first)).status_code == 401
    assert api_client.get("/api/auth/me", headers=_bearer(second)).status_code == 401
    assert _login(api_client).status_code == 401
    assert _login(api_client, password="N3wPassword").status_code == 200


def test_password_change_with_wrong_current_password(api_client: TestClient, make_user):
    make_user()
    token = _login(api_client).json()["data"]["session"]["access_token"]

    response = api_client.post(
        "/api/auth/password",
        headers=_bearer(token),
        json={"current_password": "Wrong-passw0rd", "new_password": "N3wPassword"},
    )

    assert response.status_code == 401
    assert _error_code(response) == "INVALID_CREDENTIALS"
    assert api_client.get("/api/auth/me", headers=_bearer(token)).status_code == 200


def test_forgot_password_response_does_not_reveal_accounts(api_client: TestClient, make_user):
    make_user()

    known = api_client.post("/api/auth/forgot-password", json={"email": "reader@example.com"})
    unknown = api_client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json()["data"] == unknown.json()["data"]


def test_password_reset_flow(api_client: TestClient, make_user, monkeypatch: pytest.MonkeyPatch):
    delivered: list[str] = []
    monkeypatch.setattr(password_reset_module, "deliver_reset_token", lambda user, token: delivered.append(token))
    make_user()
    session_token = _login(api_client).json()["data"]["session"]["access_token"]
    api_client.cookies.clear()

    api_client.post("/api/auth/forgot-password", json={"email": "reader@example.com"})
    assert len(delivered) == 1
    reset_token = delivered[0]

    redeemed = api_client.post(
        "/api/auth/reset-password",
        json={"token": reset_token, "new_password": "Rotated1Pass"},
    )
    assert redeemed.status_code == 200
    assert redeemed.json()["data"] == {"password_reset": True}

    replay = api_client.post(
        "/api/auth/reset-password",
        json={"token": reset_token, "new_password": "Another1Pass"},
    )
    assert replay.status_code == 400
    assert _error_code(replay) == "INVALID_OR_EXPIRED_TOKEN"

    assert api_client.get("/api/auth/me", headers=_bearer(session_token)).status_code == 401
    assert _login(api_client, password="Rotated1Pass").status_code == 200


def test_login_rate_limited(api_client: TestClient, make_user, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SAFRA_RATE_LIMIT_AUTH_MAX_REQUESTS", "2")
    get_settings.cache_clear()
    make_user()

    assert _login(api_client).status_code == 200
    assert _login(api_client).status_code == 200
    limited = _login(api_client)

    assert limited.status_code == 429
    assert _error_code(limited) == "RATE_LIMITED"


def test_ip_failure_throttle(api_client: TestClient, make_user, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("SAFRA_AUTH_IP_FAILURE_THRESHOLD", "3")
    get_settings.cache_clear()
    make_user()

    for index in range(3):
        assert _login(api_client, f"guess-{index}@example.com", "Wrong-passw0rd").status_code == 401

    throttled = _login(api_client)
    assert throttled.status_code == 429
    assert _error_code(throttled) == "RATE_LIMITED"


def test_user_role_cannot_open_admin_session(api_client: TestClient, make_user):
    make_user(role=PrincipalRole.USER)

    response = _login(api_client, path="/api/admin/login")

    assert response.status_code == 401
    assert _error_code(response) == "INVALID_CREDENTIALS"


def test_password_change_rejected_while_account_locked(api_client: TestClient, make_user):
    make_user()
    token = _login(api_client).json()["data"]["session"]["access_token"]
    api_client.cookies.clear()
    for _ in range(5):
        assert _login(api_client, password="Wrong-passw0rd").status_code == 401
    assert _login(api_client).status_code == 423

    response = api_client.post(
        "/api/auth/password",
        headers=_bearer(token),
        json={"current_password": DEFAULT_PASSWORD, "new_password": "N3wPassword"},
    )

    assert response.status_code == 423
    assert _error_code(response) == "ACCOUNT_LOCKED"
    assert _login(api_client, password="N3wPassword").status_code == 423


def test_forwarded_header_does_not_bypass_ip_throttle(
    api_client: TestClient,
    make_user,
    monkeypatch: pytest.MonkeyPatch,
):
    monkeypatch.setenv("SAFRA_AUTH_IP_FAILURE_THRESHOLD", "3")
    get_settings.cache_clear()
    make_user()

    codes = [
        api_client.post(
            "/api/auth/login",
            headers={"X-Forwarded-For": f"203.0.113.{index}"},
            json={"email": "reader@example.com", "password": "Wrong-passw0rd"},
        ).status_code
        for index in range(5)
    ]

    assert codes == [401, 401, 401, 429, 429]


def test_storage_error_while_validating_session_is_internal_error(
    api_client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
):
    def _broken_validate(*args, **kwargs):
        raise OperationalError("SELECT user_sessions", {}, Exception("database is locked"))

    monkeypatch.setattr(dependencies_module, "validate_session", _broken_validate)

    response = api_client.get("/api/auth/me", headers=_bearer("a" * 43))

    assert response.status_code == 500
    assert _error_code(response) == "INTERNAL_ERROR"
    assert response.json()["error"]["details"]["reason"] == "storage_error"


def test_login_fails_closed_when_counter_update_errors(
    api_client: TestClient,
    make_user,
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
):
    make_user()

    def _broken_register_failure(*args, **kwargs):
        raise OperationalError("UPDATE users", {}, Exception("disk I/O error"))

    monkeypatch.setattr(credentials_module, "_register_failure", _broken_register_failure)

    response = _login(api_client, password="Wrong-passw0rd")

    assert response.status_code == 500
    assert _error_code(response) == "INTERNAL_ERROR"
    assert "access_token" not in response.text
    assert api_client.cookies.get("safra_session") is None
    assert db_session.execute(select(UserSession)).scalars().all() == []
