"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' when the report store answers
  - No authentication required
  - Degraded status while auth is still starting up
"""

from __future__ import annotations

from unittest.mock import patch


class TestHealth:
    def test_health_returns_200_with_components(self, api_client):
        resp = api_client.client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["version"]
        assert data["components"] == {"app": "ok", "database": "ok"}

    def test_health_no_auth_required(self, api_client):
        api_client.client.cookies.clear()
        resp = api_client.client.get("/api/v1/health", headers={})
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_health_degraded_when_database_fails(self, api_client):
        with patch.object(api_client.reports, "ping", return_value=False):
            data = api_client.client.get("/api/v1/health").json()
        assert data["status"] == "degraded"
        assert data["components"]["database"] == "error"

    def test_health_reports_starting_before_auth_ready(self, api_client):
        app = api_client.client.app
        app.state.auth_ready = False
        try:
            data = api_client.client.get("/api/v1/health").json()
        finally:
            app.state.auth_ready = True
        assert data["status"] == "degraded"
        assert data["components"]["app"] == "starting"

    def test_guarded_route_answers_503_while_starting(self, api_client):
        app = api_client.client.app
        app.state.auth_ready = False
        try:
            resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(api_client.superuser_token))
        finally:
            app.state.auth_ready = True
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "starting"
