"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth/*.

Covers:
  - Password login for both allow-listed principals (cookie + no-store)
  - Uniform bad_credentials for wrong password and unknown email
  - A valid account outside the allow-list is refused with 403, no cookie
  - /auth/me derives the role on every request; a revoked identity is signed out
  - Access management endpoints are superuser-only
"""

from __future__ import annotations

import pytest

from auth.tokens import AUTH_COOKIE, create_access_token
from conftest import (
    NORMALUSER_EMAIL,
    NORMALUSER_PASSWORD,
    OUTSIDER_EMAIL,
    OUTSIDER_PASSWORD,
    SUPERUSER_EMAIL,
    SUPERUSER_PASSWORD,
    seed_run,
)


@pytest.fixture(autouse=True)
def _fresh_cookies(api_client):
    """The login tests write the auth cookie into the shared client jar."""
    api_client.client.cookies.clear()
    yield
    api_client.client.cookies.clear()


class TestLogin:
    def test_superuser_login(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": SUPERUSER_EMAIL, "password": SUPERUSER_PASSWORD}
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["role"] == "superuser"
        assert data["token_type"] == "bearer"
        assert AUTH_COOKIE in resp.cookies
        assert resp.headers["cache-control"] == "no-store"

    def test_normaluser_login_records_last_login(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": NORMALUSER_EMAIL, "password": NORMALUSER_PASSWORD}
        )
        assert resp.status_code == 200
        assert resp.json()["role"] == "normaluser"
        assert api_client.user_store.get_by_email(NORMALUSER_EMAIL).last_login is not None

    def test_wrong_password(self, api_client):
        resp = api_client.client.post("/api/v1/auth/login", json={"email": SUPERUSER_EMAIL, "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"
        assert AUTH_COOKIE not in resp.cookies

    def test_unknown_email_matches_wrong_password(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": "ghost@insightshield.com", "password": "whatever1"}
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_outsider_is_refused(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/login", json={"email": OUTSIDER_EMAIL, "password": OUTSIDER_PASSWORD}
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "unauthorized"
        assert api_client.client.cookies.get(AUTH_COOKIE) is None

    def test_login_validation_error_envelope(self, api_client):
        resp = api_client.client.post("/api/v1/auth/login", json={"email": SUPERUSER_EMAIL})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestMe:
    def test_me_for_superuser(self, api_client):
        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(api_client.superuser_token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == SUPERUSER_EMAIL
        assert data["role"] == "superuser"
        assert "Upload Data" in data["privileges"]

    def test_me_for_normaluser(self, api_client):
        data = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(api_client.normaluser_token)).json()
        assert data["role"] == "normaluser"
        assert data["privileges"] == ["Read Instances"]

    def test_me_requires_auth(self, api_client):
        resp = api_client.client.get("/api/v1/auth/me")
        assert resp.status_code == 401

    def test_garbage_token(self, api_client):
        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth("not-a-jwt"))
        assert resp.status_code == 401

    def test_token_for_unlisted_identity_is_revoked(self, api_client):
        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(api_client.outsider_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_revoked_identity_is_signed_out(self, api_client):
        run = seed_run(api_client.reports, name="Revocation Estate")
        normal = api_client.auth(api_client.normaluser_token)
        api_client.client.put("/api/v1/scope", json={"instance_id": run.instance_id}, headers=normal)

        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(api_client.outsider_token))
        assert resp.status_code == 403
        deleted = [h for h in resp.headers.get_list("set-cookie") if "max-age=0" in h.lower()]
        assert any(h.startswith(f"{AUTH_COOKIE}=") for h in deleted)
        assert api_client.client.get("/api/v1/scope", headers=normal).json()["instance_id"] is None

    def test_token_for_missing_user(self, api_client):
        token = create_access_token(user_id=9999, email=SUPERUSER_EMAIL, expire_seconds=60)
        resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(token))
        assert resp.status_code == 401

    def test_cookie_auth(self, api_client):
        api_client.login_as(api_client.normaluser_token)
        assert api_client.client.get("/api/v1/auth/me").json()["role"] == "normaluser"

    def test_logout_clears_cookie(self, api_client):
        api_client.client.post(
            "/api/v1/auth/login", json={"email": SUPERUSER_EMAIL, "password": SUPERUSER_PASSWORD}
        )
        assert api_client.client.get("/api/v1/auth/me").status_code == 200
        resp = api_client.client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert api_client.client.get("/api/v1/auth/me").status_code == 401


class TestAccessManagement:
    def test_list_principals(self, api_client):
        resp = api_client.client.get("/api/v1/auth/users", headers=api_client.auth(api_client.superuser_token))
        assert resp.status_code == 200
        principals = {p["email"]: p for p in resp.json()}
        assert set(principals) == {SUPERUSER_EMAIL, NORMALUSER_EMAIL}
        assert principals[NORMALUSER_EMAIL]["role"] == "normaluser"
        assert principals[SUPERUSER_EMAIL]["has_account"] is True

    def test_list_principals_forbidden_for_normaluser(self, api_client):
        resp = api_client.client.get("/api/v1/auth/users", headers=api_client.auth(api_client.normaluser_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_superuser_resets_password(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/users/password",
            json={"email": NORMALUSER_EMAIL, "new_password": NORMALUSER_PASSWORD},
            headers=api_client.auth(api_client.superuser_token),
        )
        assert resp.status_code == 200
        login = api_client.client.post(
            "/api/v1/auth/login", json={"email": NORMALUSER_EMAIL, "password": NORMALUSER_PASSWORD}
        )
        assert login.status_code == 200

    def test_reset_unknown_user(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/users/password",
            json={"email": "ghost@insightshield.com", "new_password": "longenough1"},
            headers=api_client.auth(api_client.superuser_token),
        )
        assert resp.status_code == 404

    def test_reset_forbidden_for_normaluser(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/users/password",
            json={"email": SUPERUSER_EMAIL, "new_password": "longenough1"},
            headers=api_client.auth(api_client.normaluser_token),
        )
        assert resp.status_code == 403

    def test_short_password_rejected(self, api_client):
        resp = api_client.client.post(
            "/api/v1/auth/password",
            json={"new_password": "short"},
            headers=api_client.auth(api_client.normaluser_token),
        )
        assert resp.status_code == 422
