"""
tests/test_auth_redirect.py -- Integration tests for the web route guard.

These tests exercise _guard() end-to-end through the real ASGI stack using the
web_client fixture (follow_redirects=False). We assert on redirect Location
headers directly -- following the redirect would hide them.

Coverage:
  - Unauthenticated requests -> 302 /login?next={path}
  - Loading state renders the loading page, no redirect
  - Revoked identity -> 302 /login?error=unauthorized, auth cookie deleted
  - Superuser-only pages send a normal user to /select-instance
  - Login form: bad credentials, unlisted account, next= handling
  - Security: next= is always a relative path (open-redirect prevention)
"""

from __future__ import annotations

import pytest

from auth.tokens import AUTH_COOKIE
from conftest import (
    NORMALUSER_EMAIL,
    NORMALUSER_PASSWORD,
    OUTSIDER_EMAIL,
    OUTSIDER_PASSWORD,
    SUPERUSER_EMAIL,
    SUPERUSER_PASSWORD,
)


def _deleted_cookies(resp) -> list[str]:
    """Set-Cookie headers that expire a cookie (Starlette sends max-age=0)."""
    return [h for h in resp.headers.get_list("set-cookie") if "max-age=0" in h.lower()]


@pytest.fixture(autouse=True)
def _signed_out(web_client):
    web_client.login_as(None)
    yield


class TestUnauthenticated:
    @pytest.mark.parametrize(
        "path", ["/dashboard", "/dashboard/cve-summary", "/select-instance", "/questionnaire", "/create-instance"]
    )
    def test_redirects_to_login_with_next(self, web_client, path):
        resp = web_client.client.get(path)
        assert resp.status_code == 302
        assert resp.headers["location"] == f"/login?next={path}"

    def test_landing_page_is_public(self, web_client):
        resp = web_client.client.get("/")
        assert resp.status_code == 200

    def test_login_page_renders(self, web_client):
        resp = web_client.client.get("/login")
        assert resp.status_code == 200
        assert 'name="password"' in resp.text

    def test_login_error_message_is_whitelisted(self, web_client):
        assert "Access denied" in web_client.client.get("/login?error=unauthorized").text
        resp = web_client.client.get("/login?error=<script>alert(1)</script>")
        assert "<script>alert(1)</script>" not in resp.text


class TestLoadingState:
    def test_guarded_page_shows_loading_without_redirect(self, web_client):
        app = web_client.client.app
        app.state.auth_ready = False
        try:
            resp = web_client.client.get("/dashboard")
        finally:
            app.state.auth_ready = True
        assert resp.status_code == 200
        assert "location" not in resp.headers
        assert resp.headers["refresh"] == "1"


class TestLoginForm:
    def test_bad_password(self, web_client):
        resp = web_client.client.post("/login", data={"email": SUPERUSER_EMAIL, "password": "wrong-pass"})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=bad_credentials"

    def test_unlisted_account_is_signed_out(self, web_client):
        resp = web_client.client.post("/login", data={"email": OUTSIDER_EMAIL, "password": OUTSIDER_PASSWORD})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=unauthorized"
        assert any(AUTH_COOKIE in h for h in _deleted_cookies(resp))

    def test_success_goes_to_instance_choice(self, web_client):
        resp = web_client.client.post("/login", data={"email": NORMALUSER_EMAIL, "password": NORMALUSER_PASSWORD})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/instance-choice"
        assert resp.headers["cache-control"] == "no-store"
        assert any(h.startswith(f"{AUTH_COOKIE}=") for h in resp.headers.get_list("set-cookie"))

    def test_success_honours_relative_next(self, web_client):
        resp = web_client.client.post(
            "/login?next=/dashboard/hosts-summary",
            data={"email": SUPERUSER_EMAIL, "password": SUPERUSER_PASSWORD},
        )
        assert resp.headers["location"] == "/dashboard/hosts-summary"

    @pytest.mark.parametrize("target", ["//evil.example.com", "https://evil.example.com/"])
    def test_offsite_next_is_ignored(self, web_client, target):
        resp = web_client.client.post(
            "/login", params={"next": target}, data={"email": SUPERUSER_EMAIL, "password": SUPERUSER_PASSWORD}
        )
        assert resp.headers["location"] == "/instance-choice"

    def test_signed_in_user_skips_login_page(self, web_client):
        web_client.login_as(web_client.normaluser_token)
        resp = web_client.client.get("/login?next=/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/dashboard"

    def test_logout(self, web_client):
        web_client.login_as(web_client.superuser_token)
        resp = web_client.client.post("/logout")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login"
        assert any(AUTH_COOKIE in h for h in _deleted_cookies(resp))


class TestRevokedIdentity:
    def test_revoked_cookie_redirects_and_is_deleted(self, web_client):
        web_client.login_as(web_client.outsider_token)
        resp = web_client.client.get("/dashboard")
        assert resp.status_code == 302
        assert resp.headers["location"] == "/login?error=unauthorized"
        assert any(AUTH_COOKIE in h for h in _deleted_cookies(resp))


class TestSuperuserPages:
    @pytest.mark.parametrize(
        "path",
        ["/create-instance", "/upload-vulnerabilities", "/dashboard/access-management", "/dashboard/instance-settings"],
    )
    def test_normaluser_is_sent_to_select_instance(self, web_client, path):
        web_client.login_as(web_client.normaluser_token)
        resp = web_client.client.get(path)
        assert resp.status_code == 302
        assert resp.headers["location"] == "/select-instance"

    def test_superuser_sees_create_instance(self, web_client):
        web_client.login_as(web_client.superuser_token)
        assert web_client.client.get("/create-instance").status_code == 200

    def test_instance_choice_hides_create_for_normaluser(self, web_client):
        web_client.login_as(web_client.normaluser_token)
        resp = web_client.client.get("/instance-choice")
        assert resp.status_code == 200
        assert 'href="/create-instance"' not in resp.text
        web_client.login_as(web_client.superuser_token)
        assert 'href="/create-instance"' in web_client.client.get("/instance-choice").text
