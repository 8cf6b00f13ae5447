"""
auth/guard.py -- Route guard decision logic.

evaluate_guard() is a pure function of the session state and the route's
requirement. The web layer re-runs it on every request and turns the
decision into a response; nothing here touches HTTP.

Decision table:
  loading                                   -> LOADING (no redirect)
  unauthenticated, revoked                  -> /login?error=unauthorized
  unauthenticated                           -> /login?next=<path>
  authenticated, superuser route, not su    -> /select-instance
  otherwise                                 -> RENDER
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote

from auth.session import SessionState, SessionStatus

LOGIN_PATH = "/login"
FALLBACK_PATH = "/select-instance"


class GuardAction(str, Enum):
    render = "render"
    loading = "loading"
    redirect = "redirect"


@dataclass(frozen=True)
class GuardDecision:
    action: GuardAction
    location: str | None = None


RENDER = GuardDecision(GuardAction.render)
SHOW_LOADING = GuardDecision(GuardAction.loading)


def safe_next(next_url: str | None, default: str = "/instance-choice") -> str:
    """Validate a post-login redirect target. Only relative paths are accepted.

    Rejects absolute URLs and protocol-relative "//host" targets so a crafted
    /login?next= link cannot send the user off-site.
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return default


def login_redirect(path: str) -> str:
    return f"{LOGIN_PATH}?next={quote(safe_next(path, '/'), safe='/')}"


def evaluate_guard(state: SessionState, path: str, require_superuser: bool = False) -> GuardDecision:
    if state.status is SessionStatus.loading:
        return SHOW_LOADING
    if state.status is SessionStatus.unauthenticated:
        if state.revoked:
            return GuardDecision(GuardAction.redirect, f"{LOGIN_PATH}?error=unauthorized")
        return GuardDecision(GuardAction.redirect, login_redirect(path))
    if require_superuser and not state.is_superuser:
        return GuardDecision(GuardAction.redirect, FALLBACK_PATH)
    return RENDER
