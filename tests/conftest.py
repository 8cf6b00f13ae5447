"""
tests/conftest.py -- Shared test fixtures for InsightShield integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DBs for auth + reports
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - seed_run(): creates a completed run and loads report rows into it
  - api_client / web_client: one TestClient per module around an AppHarness

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import AUTH_COOKIE, create_access_token, hash_password
from cache.store import ReportCache
from core.analysis import AnalysisClient
from core.models import Scope
from reports.models import RUN_COMPLETED, Instance, Run
from reports.store import ReportStore

SUPERUSER_EMAIL = "superuser@insightshield.com"
NORMALUSER_EMAIL = "normaluser@insightshield.com"
OUTSIDER_EMAIL = "outsider@example.com"

SUPERUSER_PASSWORD = "superpass123"
NORMALUSER_PASSWORD = "normalpass123"
OUTSIDER_PASSWORD = "outsider1234"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, ReportStore]:
    """Create isolated named shared-memory SQLite stores.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'web').
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    reports_url = f"sqlite:///file:test_reports_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), ReportStore(db_url=reports_url)


def seed_run(
    reports: ReportStore,
    instance_id: Optional[int] = None,
    rows: Optional[dict[str, list[dict]]] = None,
    name: str = "Seeded",
    scan_date: Optional[str] = None,
) -> Run:
    """Create (or reuse) an instance, add a completed run, and load rows into it."""
    if instance_id is None:
        instance_id = reports.create_instance(Instance(name=name))
    run = reports.create_run(instance_id, scan_date=scan_date, status=RUN_COMPLETED)
    for table, table_rows in (rows or {}).items():
        reports.insert_rows(table, Scope(instance_id, run.id), table_rows)
    return run


SAMPLE_ROWS: dict[str, list[dict]] = {
    "risk_summary": [
        {"severity": "Critical", "count": 4, "vulnerabilities_with_cve": 4},
        {"severity": "High", "count": 6, "vulnerabilities_with_cve": 5},
        {"severity": "Low/None", "count": 2, "vulnerabilities_with_cve": 0},
    ],
    "cve_summary": [
        {"cve": "CVE-2021-44228", "name": "Log4Shell", "severity": "Critical", "count": 4, "hosts": "web01"},
        {"cve": "CVE-2023-44487", "name": "HTTP/2 Rapid Reset", "severity": "High", "count": 6, "hosts": "lb01"},
    ],
    "host_summary": [
        {"host": "web01", "critical": 4, "high": 1, "vulnerability_count": 5, "vulnerabilities_with_cve": 5},
        {"host": "lb01", "high": 5, "vulnerability_count": 7, "vulnerabilities_with_cve": 4},
    ],
    "ageing_of_vulnerability": [
        {"host": "web01", "cve": "CVE-2021-44228", "risk": "Critical", "days_after_discovery": 12},
        {"host": "lb01", "cve": "CVE-2023-44487", "risk": "High", "days_after_discovery": 400},
        {"host": "db01", "cve": None, "risk": "Low", "days_after_discovery": None},
    ],
    "exploitability_scoring": [
        {"host": "web01", "cve": "CVE-2021-44228", "risk": "Critical", "kev_listed": True, "exploitability_score": 9.8},
        {"host": "lb01", "cve": "CVE-2023-44487", "risk": "High", "kev_listed": False, "exploitability_score": 5.1},
    ],
    "unique_assets": [
        {"assets_type": "Linux", "asset_count": 2},
        {"assets_type": "Windows", "asset_count": 1},
    ],
}

# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


@dataclass
class AppHarness:
    client: TestClient
    user_store: UserStore
    reports: ReportStore
    cache: ReportCache
    analysis: MagicMock
    superuser_token: str
    normaluser_token: str
    outsider_token: str

    def auth(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def login_as(self, token: Optional[str]) -> None:
        """Swap the web session: new auth cookie (or none), fresh scope."""
        self.client.cookies.clear()
        if token:
            self.client.cookies.set(AUTH_COOKIE, token)


def _create_principals(user_store: UserStore) -> tuple[str, str, str]:
    tokens = []
    for email, password in (
        (SUPERUSER_EMAIL, SUPERUSER_PASSWORD),
        (NORMALUSER_EMAIL, NORMALUSER_PASSWORD),
        (OUTSIDER_EMAIL, OUTSIDER_PASSWORD),
    ):
        uid = user_store.create_user(User(email=email, hashed_password=hash_password(password)))
        tokens.append(create_access_token(user_id=uid, email=email, expire_seconds=3600))
    return tokens[0], tokens[1], tokens[2]


def _patch_lifespan(user_store: UserStore, reports: ReportStore, cache: ReportCache, analysis: MagicMock):
    """Return an async context manager that replaces the real lifespan.

    The analysis client is a MagicMock with AnalysisClient's spec so no test
    ever reaches a real backend. The purge_task is a long-sleeping coroutine
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.reports = reports
        app.state.cache = cache
        app.state.analysis = analysis
        app.state.auth_ready = True
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _harness(db_suffix: str, **client_kwargs) -> Generator[AppHarness, None, None]:
    user_store, reports = _make_test_stores(db_suffix)
    cache = ReportCache(":memory:")
    analysis = MagicMock(spec=AnalysisClient)
    su, nu, outsider = _create_principals(user_store)
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(user_store, reports, cache, analysis)

    with TestClient(app, raise_server_exceptions=True, **client_kwargs) as client:
        yield AppHarness(client, user_store, reports, cache, analysis, su, nu, outsider)

    cache.close()
    reports.close()
    user_store.close()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[AppHarness, None, None]:
    """AppHarness for API integration tests. Authenticate with harness.auth(token)."""
    yield from _harness(f"api_{request.module.__name__.rsplit('.', 1)[-1]}")


@pytest.fixture(scope="module")
def web_client(request) -> Generator[AppHarness, None, None]:
    """AppHarness for web route tests.

    follow_redirects=False is essential: we assert on redirect *locations*
    (e.g. 302 to /login), which are invisible once the client follows the
    redirect and returns the final 200 response.
    """
    yield from _harness(f"web_{request.module.__name__.rsplit('.', 1)[-1]}", follow_redirects=False)
