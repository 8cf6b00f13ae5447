"""
api/routes/v1/auth.py -- Authentication and access management REST endpoints.

Routes:
  POST /api/v1/auth/login           -- password login; sets JWT cookie
  POST /api/v1/auth/logout          -- clears cookie and the selected scope
  GET  /api/v1/auth/me              -- current principal and privileges
  POST /api/v1/auth/password        -- change own password
  GET  /api/v1/auth/users           -- the allow-listed principals (superuser)
  POST /api/v1/auth/users/password  -- change another principal's password (superuser)

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  authenticate_user() provides timing equalization -- use it, never inline.
  A correct password for an email outside the allow-list still yields 403
  and no cookie.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    MeResponse,
    MessageResponse,
    PasswordChange,
    PrincipalResponse,
    UserPasswordChange,
)
from auth.dependencies import get_current_user, require_superuser
from auth.session import SessionState, session_for_user
from auth.store import UserStore
from auth.tokens import authenticate_user, clear_auth_cookie, create_access_token, hash_password, set_auth_cookie
from core.config import get_settings
from core.roles import derive_role, privileges_for
from reports.scope import clear_scope

logger = logging.getLogger("insightshield.api.auth")

_settings = get_settings()

router = APIRouter()


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set JWT cookie.

    Wrong email and wrong password produce the same "bad_credentials" error.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid email or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    state = session_for_user(user)
    if not state.is_authenticated:
        resp = JSONResponse(
            status_code=403,
            content={
                "error": {"code": "unauthorized", "message": "Access denied. Only authorized users can sign in."}
            },
        )
        clear_auth_cookie(resp)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    token = create_access_token(user.id, user.email)
    user_store.update_last_login(user.id)
    logger.info("Login succeeded for %s (%s)", user.email, state.role.value)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            email=user.email,
            role=state.role,
        ).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear the JWT cookie and the selected instance/run."""
    clear_scope(request.session)
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(session: SessionState = Depends(get_current_user)) -> MeResponse:
    return MeResponse(
        user_id=session.user.id,
        email=session.user.email,
        role=session.role,
        privileges=privileges_for(session.role),
    )


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    session: SessionState = Depends(get_current_user),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    user_store.set_password(session.user.id, hash_password(body.new_password))
    logger.info("Password changed by %s", session.email)
    return MessageResponse(message="Password updated.")


# ---------------------------------------------------------------------------
# Access management (superuser only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[PrincipalResponse])
def list_principals(
    request: Request,
    session: SessionState = Depends(require_superuser),
) -> list[PrincipalResponse]:
    """The allow-listed principals with their derived roles."""
    user_store: UserStore = request.app.state.user_store
    principals = []
    for email in _settings.allowed_users:
        role = derive_role(email, _settings.allowed_users)
        account = user_store.get_by_email(email)
        principals.append(
            PrincipalResponse(
                email=email,
                role=role,
                privileges=privileges_for(role),
                has_account=account is not None,
                last_login=account.last_login if account else None,
            )
        )
    return principals


@router.post("/auth/users/password", response_model=MessageResponse)
def change_user_password(
    request: Request,
    body: UserPasswordChange,
    session: SessionState = Depends(require_superuser),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_email(body.email)
    if target is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    user_store.set_password(target.id, hash_password(body.new_password))
    logger.info("Password for %s changed by %s", target.email, session.email)
    return MessageResponse(message=f"Password updated for {target.email}.")
