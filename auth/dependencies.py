"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_current_user() raises HTTP 401/403/503 unless the request is authenticated.
require_superuser() additionally raises HTTP 403 for a normal user.

Layer rule: no imports from web/, reports/, or cache/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.session import SessionState, SessionStatus, resolve_session


def get_current_user(request: Request) -> SessionState:
    """Require an authenticated session.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(session: SessionState = Depends(get_current_user)): ...
    """
    state = resolve_session(request)
    if state.status is SessionStatus.loading:
        raise HTTPException(
            status_code=503,
            detail={"code": "starting", "message": "Service is starting, retry shortly."},
        )
    if state.revoked:
        # api/main.py signs the caller out when this flag is set
        request.state.sign_out = True
        raise HTTPException(
            status_code=403,
            detail={"code": "unauthorized", "message": "Access denied. Only authorized users can sign in."},
        )
    if not state.is_authenticated:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return state


def require_superuser(request: Request) -> SessionState:
    state = get_current_user(request)
    if not state.is_superuser:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Superuser access required."},
        )
    return state
