"""
auth/session.py -- Resolve the session state of an incoming request.

A request is in exactly one of three states:
  loading          -- the app has not finished wiring its auth store yet
  unauthenticated  -- no valid token, unknown/inactive user, or a user whose
                      email has no role (revoked=True: force sign-out)
  authenticated    -- valid token, active user, derived role

Credentials are checked in priority order:
  1. JWT cookie ("access_token") -- set by the web UI login flow.
  2. Authorization: Bearer <token> header -- API clients.

Layer rule: no imports from api/, web/, reports/, or cache/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import Request

from auth.models import User
from auth.tokens import AUTH_COOKIE, decode_access_token
from core.config import get_settings
from core.models import Role
from core.roles import derive_role

logger = logging.getLogger("insightshield.auth")


class SessionStatus(str, Enum):
    loading = "loading"
    unauthenticated = "unauthenticated"
    authenticated = "authenticated"


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus
    user: User | None = None
    role: Role | None = None
    # True when a valid identity was rejected because it has no role. The
    # caller must delete the auth cookie and clear the scope.
    revoked: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.status is SessionStatus.authenticated

    @property
    def is_superuser(self) -> bool:
        return self.is_authenticated and self.role is Role.superuser

    @property
    def email(self) -> str | None:
        return self.user.email if self.user else None


LOADING = SessionState(SessionStatus.loading)
ANONYMOUS = SessionState(SessionStatus.unauthenticated)


def _read_token(request: Request) -> str | None:
    token = request.cookies.get(AUTH_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def session_for_user(user: User | None) -> SessionState:
    """Build the session state for an already-verified user record."""
    if user is None or not user.is_active:
        return ANONYMOUS
    role = derive_role(user.email, get_settings().allowed_users)
    if role is None:
        logger.warning("Rejecting session for %s: not an authorized principal", user.email)
        return SessionState(SessionStatus.unauthenticated, revoked=True)
    return SessionState(SessionStatus.authenticated, user=user, role=role)


def resolve_session(request: Request) -> SessionState:
    """Return the SessionState for request. Never raises."""
    if not getattr(request.app.state, "auth_ready", False):
        return LOADING

    token = _read_token(request)
    if not token:
        return ANONYMOUS
    payload = decode_access_token(token)
    if payload is None:
        return ANONYMOUS
    user = request.app.state.user_store.get_by_id(payload["user_id"])
    return session_for_user(user)
