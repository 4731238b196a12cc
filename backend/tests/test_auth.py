"""
Authentication, throttling and role gates.

Verifies:
- login returns a bearer token usable on protected routes
- failed logins are counted per identity and lock the account
- logout revokes the token
- role gates answer 403 and are audited
"""

import pytest

from cafepos.extensions import db
from cafepos.models import SecurityEvent
from cafepos.services import auth_service, session_service
from cafepos.services.auth_service import PasswordValidationError, UserExistsError

from conftest import TEST_PASSWORD


def _login(client, username, password=TEST_PASSWORD):
    return client.post("/auth/login", json={"username": username, "password": password})


class TestLogin:

    def test_success_returns_token_and_user(self, client, staff_user):
        resp = _login(client, "barista")
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["user"]["role"] == "staff"

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.get_json()["data"]["username"] == "barista"

    def test_username_is_case_insensitive(self, client, staff_user):
        assert _login(client, "BARISTA").status_code == 200

    def test_missing_fields(self, client):
        resp = client.post("/auth/login", json={"username": "x"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_bad_password(self, client, staff_user):
        resp = _login(client, "barista", "WrongPass1")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "UNAUTHORIZED"

    def test_unknown_user(self, client):
        assert _login(client, "ghost").status_code == 401

    def test_inactive_user(self, client, staff_user):
        staff_user.is_active = False
        db.session.commit()
        resp = _login(client, "barista")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "INACTIVE"


class TestThrottle:

    def test_lockout_after_max_failures(self, app, client, staff_user):
        max_attempts = app.config["LOGIN_MAX_FAILED_ATTEMPTS"]
        for _ in range(max_attempts - 1):
            assert _login(client, "barista", "WrongPass1").status_code == 401

        resp = _login(client, "barista", "WrongPass1")
        assert resp.status_code == 429
        assert resp.get_json()["error"] == "ACCOUNT_LOCKED"

        # Correct password is refused while locked
        resp = _login(client, "barista")
        assert resp.status_code == 429
        assert resp.get_json()["details"]["retry_after_seconds"] > 0

    def test_warning_near_lockout(self, client, staff_user):
        resp = _login(client, "barista", "WrongPass1")
        assert "details" not in resp.get_json()
        _login(client, "barista", "WrongPass1")
        resp = _login(client, "barista", "WrongPass1")
        assert resp.get_json()["details"] == {"attempts_remaining": 2}

    def test_identities_are_independent(self, client, staff_user, manager_user):
        for _ in range(5):
            _login(client, "barista", "WrongPass1")
        assert _login(client, "manager").status_code == 200

    def test_failures_are_recorded(self, client, staff_user):
        _login(client, "Barista", "WrongPass1")
        event = db.session.query(SecurityEvent).filter_by(event_type="LOGIN_FAILED").one()
        assert event.action == "barista"
        assert event.user_id == staff_user.id


class TestSessions:

    def test_missing_header(self, client):
        resp = client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "UNAUTHORIZED"

    def test_invalid_token(self, client):
        resp = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "INVALID_TOKEN"

    def test_logout_revokes(self, client, staff_headers):
        assert client.post("/auth/logout", headers=staff_headers).status_code == 200
        resp = client.get("/auth/me", headers=staff_headers)
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "INVALID_TOKEN"

    def test_deactivated_user_loses_session(self, client, staff_user, staff_headers):
        staff_user.is_active = False
        db.session.commit()
        assert client.get("/auth/me", headers=staff_headers).status_code == 401

    def test_revoke_all(self, client, staff_user):
        _, token_a = session_service.create_session(staff_user)
        _, token_b = session_service.create_session(staff_user)
        assert session_service.revoke_all_user_sessions(staff_user.id) == 2
        assert session_service.validate_session(token_a) is None
        assert session_service.validate_session(token_b) is None


class TestRoleGates:

    @pytest.mark.parametrize("method,path", [
        ("GET", "/products"),
        ("GET", "/ingredients"),
        ("GET", "/inventory/movements"),
        ("GET", "/orders"),
        ("GET", "/promotions"),
        ("GET", "/suppliers"),
        ("GET", "/dashboard/summary"),
    ])
    def test_requires_auth(self, client, method, path):
        resp = client.open(path, method=method)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    @pytest.mark.parametrize("method,path", [
        ("POST", "/products"),
        ("PUT", "/products/1/recipe"),
        ("POST", "/ingredients"),
        ("POST", "/inventory/receive"),
        ("POST", "/inventory/adjust"),
        ("POST", "/promotions"),
        ("POST", "/suppliers"),
        ("DELETE", "/orders/1"),
    ])
    def test_staff_forbidden(self, client, staff_headers, method, path):
        resp = client.open(path, method=method, headers=staff_headers, json={})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "FORBIDDEN"

    def test_manager_cannot_delete_orders(self, client, manager_headers):
        assert client.delete("/orders/1", headers=manager_headers).status_code == 403

    def test_denial_is_audited(self, client, staff_user, staff_headers):
        client.post("/suppliers", headers=staff_headers, json={"name": "x"})
        event = db.session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == staff_user.id
        assert event.resource == "/suppliers"
        assert event.action == "POST"


class TestUserService:

    def test_weak_password_rejected(self, db_session):
        with pytest.raises(PasswordValidationError):
            auth_service.create_user(username="weak", password="short1")
        with pytest.raises(PasswordValidationError):
            auth_service.create_user(username="weak", password="lettersonly")

    def test_duplicate_username_case_insensitive(self, staff_user):
        with pytest.raises(UserExistsError):
            auth_service.create_user(username="Barista", password=TEST_PASSWORD)

    def test_unknown_role(self, db_session):
        with pytest.raises(ValueError):
            auth_service.create_user(username="x", password=TEST_PASSWORD, role="owner")

    def test_password_is_hashed(self, staff_user):
        assert staff_user.password_hash != TEST_PASSWORD
        assert auth_service.verify_password(TEST_PASSWORD, staff_user.password_hash)


class TestHealth:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json() == {
            "ok": True,
            "service": "cafepos",
            "database": "healthy",
            "latency_ms": resp.get_json()["latency_ms"],
        }

    def test_cors_for_allowed_origin_only(self, client):
        resp = client.get("/health", headers={"Origin": "http://localhost:3000"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:3000"
        resp = client.get("/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
