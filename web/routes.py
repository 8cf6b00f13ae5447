"""
web/routes.py -- Jinja2 template routes for the InsightShield web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user store, report store, cache, analysis client) but return
HTML instead of JSON.

Every guarded handler starts with:
    if response := _guard(request):
        return response
which re-evaluates auth/guard.py on each request and turns the decision into
the loading page, a redirect, or nothing (render). The resolved SessionState
is left on request.state.session.

Route registration order matters: the fixed /dashboard/* pages and the run
switcher are registered before /dashboard/{slug}, or FastAPI captures
"account" etc. as a report slug.

Routes:
  GET  /                                 -- landing page
  GET  /login, POST /login               -- password sign-in
  POST /logout                           -- clear cookie and scope
  GET  /questionnaire, POST              -- onboarding questions (auth)
  GET  /instance-choice                  -- create new vs select existing (auth)
  GET  /create-instance, POST            -- new instance (superuser)
  GET  /upload-vulnerabilities, POST     -- spreadsheet upload (superuser)
  GET  /select-instance, POST            -- pick an instance (auth)
  GET  /dashboard                        -- overview for the selected run (auth)
  POST /dashboard/run                    -- switch run within the instance (auth)
  GET  /dashboard/access-management, POST -- principals, password reset (superuser)
  GET  /dashboard/instance-settings, POST -- edit instance metadata (superuser)
  GET  /dashboard/account, POST          -- own account, password change (auth)
  GET  /dashboard/download               -- full workbook (auth)
  GET  /dashboard/{slug}                 -- one report or computed view (auth)
  GET  /dashboard/{slug}/download        -- the report's worksheet (auth)
  GET  /dashboard/{slug}/csv             -- all report rows as CSV (auth)
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Form, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates

from auth.guard import GuardAction, evaluate_guard, safe_next
from auth.session import resolve_session, session_for_user
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    clear_auth_cookie,
    create_access_token,
    hash_password,
    set_auth_cookie,
)
from core.analysis import ABORTED, HTTP_STATUS, MALFORMED, NETWORK, AnalysisError
from core.config import get_settings
from core.formatter import report_columns, to_csv
from core.models import ResultStatus, Scope
from core.roles import derive_role, privileges_for
from reports.catalog import CATALOG, COMPUTED_VIEWS
from reports.models import RUN_COMPLETED, Instance
from reports.scope import (
    clear_scope,
    read_analysis_results,
    read_scope,
    select_instance,
    select_run,
    store_analysis_results,
)
from reports.store import ReportStore
from reports.uploads import UploadRejected, process_upload
from reports.views import (
    LOAD_ERROR,
    UnknownReport,
    export_report,
    load_overview,
    load_view,
    scope_is_valid,
    sheet_for,
)

logger = logging.getLogger("insightshield.web")

_settings = get_settings()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.globals["nav_reports"] = [(s.slug, s.title) for s in CATALOG.values()] + list(
    COMPUTED_VIEWS.items()
)
templates.env.globals["report_columns"] = report_columns
router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid email or password.",
    "unauthorized": "Access denied. Only authorized users can sign in.",
}

_ANALYSIS_MESSAGES: dict[str, str] = {
    NETWORK: "Could not reach the analysis service. Check your connection and try again.",
    ABORTED: "The analysis took too long and was cancelled. Try a smaller file or try again later.",
    HTTP_STATUS: "The analysis service rejected the upload: {detail}",
    MALFORMED: "The analysis service returned an unexpected response.",
}

QUESTIONS = [
    {
        "id": "org_size",
        "question": "What is the size of your organization?",
        "options": [
            ("small", "Small (1-50 employees)"),
            ("medium", "Medium (51-500 employees)"),
            ("large", "Large (500+ employees)"),
        ],
    },
    {
        "id": "industry",
        "question": "What industry does your organization operate in?",
        "options": [
            ("healthcare", "Healthcare"),
            ("finance", "Financial Services"),
            ("technology", "Technology"),
            ("retail", "Retail"),
            ("other", "Other"),
        ],
    },
    {
        "id": "maturity",
        "question": "How would you rate your current security maturity?",
        "options": [
            ("basic", "Basic - Limited security measures"),
            ("intermediate", "Intermediate - Some security processes"),
            ("advanced", "Advanced - Comprehensive security program"),
        ],
    },
]

_MIN_PASSWORD = 8

# ---------------------------------------------------------------------------
# Guard and rendering helpers
# ---------------------------------------------------------------------------


def _sign_out(request: Request, response: Response) -> Response:
    clear_scope(request.session)
    clear_auth_cookie(response)
    return response


def _guard(request: Request, require_superuser: bool = False) -> Optional[Response]:
    """Evaluate the route guard. Returns the response to send, or None to render."""
    state = resolve_session(request)
    request.state.session = state
    decision = evaluate_guard(state, request.url.path, require_superuser)
    if decision.action is GuardAction.loading:
        resp = templates.TemplateResponse(request, "loading.html", {})
        resp.headers["Refresh"] = "1"
        return resp
    if decision.action is GuardAction.redirect:
        resp = RedirectResponse(decision.location, status_code=302)
        if state.revoked:
            _sign_out(request, resp)
        return resp
    return None


def _render(request: Request, name: str, context: Optional[dict] = None, status_code: int = 200) -> HTMLResponse:
    """TemplateResponse with the session, scope and run switcher filled in."""
    state = getattr(request.state, "session", None)
    ctx = {"session_state": state, "scope": Scope(), "current_instance": None, "runs": []}
    if state is not None and state.is_authenticated:
        store: ReportStore = request.app.state.reports
        scope = read_scope(request.session)
        ctx["scope"] = scope
        if scope.has_instance:
            ctx["current_instance"] = store.get_instance(scope.instance_id)
            ctx["runs"] = store.list_runs(scope.instance_id)
    ctx.update(context or {})
    return templates.TemplateResponse(request, name, ctx, status_code=status_code)


def _validate_new_password(new_password: str, confirm_password: str) -> Optional[str]:
    if len(new_password) < _MIN_PASSWORD:
        return f"Password must be at least {_MIN_PASSWORD} characters."
    if len(new_password) > 72:
        return "Password must be at most 72 characters."
    if new_password != confirm_password:
        return "Passwords do not match."
    return None


def _xlsx(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


# ---------------------------------------------------------------------------
# Landing and auth
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    request.state.session = resolve_session(request)
    return _render(request, "index.html")


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    state = resolve_session(request)
    if state.is_authenticated:
        return RedirectResponse(safe_next(request.query_params.get("next")), status_code=302)

    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)
    resp = templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": request.query_params.get("next", "")},
    )
    if state.revoked:
        _sign_out(request, resp)
    return resp


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    email: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle the sign-in form.

    A correct password for an email outside the allow-list is a forced
    sign-out, not a login.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, email.strip(), password)
    if user is None:
        return RedirectResponse("/login?error=bad_credentials", status_code=302)

    state = session_for_user(user)
    if not state.is_authenticated:
        return _sign_out(request, RedirectResponse("/login?error=unauthorized", status_code=302))

    token = create_access_token(user.id, user.email)
    user_store.update_last_login(user.id)
    logger.info("Web login for %s (%s)", user.email, state.role.value)
    resp = RedirectResponse(safe_next(request.query_params.get("next")), status_code=302)
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the JWT cookie and the selected scope, then go to /login."""
    return _sign_out(request, RedirectResponse("/login", status_code=302))


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------


@router.get("/questionnaire", response_class=HTMLResponse)
def questionnaire_form(request: Request) -> HTMLResponse:
    if response := _guard(request):
        return response
    return _render(request, "questionnaire.html", {"questions": QUESTIONS, "answers": {}})


@router.post("/questionnaire", response_class=HTMLResponse)
def questionnaire_post(
    request: Request,
    org_size: str = Form(default=""),
    industry: str = Form(default=""),
    maturity: str = Form(default=""),
    additional_info: str = Form(default=""),
) -> Response:
    if response := _guard(request):
        return response
    answers = {"org_size": org_size, "industry": industry, "maturity": maturity}
    for question in QUESTIONS:
        if answers[question["id"]] not in {value for value, _ in question["options"]}:
            return _render(
                request,
                "questionnaire.html",
                {"questions": QUESTIONS, "answers": answers, "error_msg": "Please answer every question."},
            )
    request.session["questionnaireAnswers"] = {**answers, "additional_info": additional_info[:2000]}
    return RedirectResponse("/select-instance", status_code=302)


@router.get("/instance-choice", response_class=HTMLResponse)
def instance_choice(request: Request) -> HTMLResponse:
    if response := _guard(request):
        return response
    return _render(request, "instance_choice.html")


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


@router.get("/create-instance", response_class=HTMLResponse)
def create_instance_form(request: Request) -> HTMLResponse:
    if response := _guard(request, require_superuser=True):
        return response
    return _render(request, "create_instance.html", {"name": "", "description": ""})


@router.post("/create-instance", response_class=HTMLResponse)
def create_instance_post(
    request: Request,
    name: str = Form(default=""),
    description: str = Form(default=""),
) -> Response:
    """Create the instance, select it, and continue to the upload form."""
    if response := _guard(request, require_superuser=True):
        return response
    name = name.strip()
    description = description.strip()
    if not name or len(name) > 255:
        return _render(
            request,
            "create_instance.html",
            {"name": name, "description": description, "error_msg": "Instance name is required."},
        )
    store: ReportStore = request.app.state.reports
    session = request.state.session
    instance_id = store.create_instance(Instance(name=name, description=description[:2000], created_by=session.email))
    select_instance(request.session, instance_id)
    logger.info("Instance %d (%s) created by %s", instance_id, name, session.email)
    return RedirectResponse("/upload-vulnerabilities", status_code=302)


@router.get("/select-instance", response_class=HTMLResponse)
def select_instance_form(request: Request) -> HTMLResponse:
    if response := _guard(request):
        return response
    store: ReportStore = request.app.state.reports
    rows = []
    for instance in store.list_instances():
        runs = store.list_runs(instance.id)
        rows.append({"instance": instance, "run_count": len(runs), "latest": store.latest_run(instance.id)})
    return _render(request, "select_instance.html", {"instances": rows})


@router.post("/select-instance", response_class=HTMLResponse)
def select_instance_post(request: Request, instance_id: int = Form(...)) -> Response:
    """Select an instance and its latest completed run, then open the dashboard."""
    if response := _guard(request):
        return response
    store: ReportStore = request.app.state.reports
    if store.get_instance(instance_id) is None:
        return RedirectResponse("/select-instance", status_code=302)
    latest = store.latest_run(instance_id)
    scope = select_instance(request.session, instance_id, latest.id if latest else None)
    if scope.is_complete:
        request.app.state.cache.invalidate_scope(scope)
    return RedirectResponse("/dashboard", status_code=302)


# ---------------------------------------------------------------------------
# Upload
# ---------------------------------------------------------------------------


@router.get("/upload-vulnerabilities", response_class=HTMLResponse)
def upload_form(request: Request) -> HTMLResponse:
    if response := _guard(request, require_superuser=True):
        return response
    if not read_scope(request.session).has_instance:
        return RedirectResponse("/create-instance", status_code=302)
    return _render(request, "upload.html", {"max_mb": _settings.max_upload_bytes // (1024 * 1024)})


@router.post("/upload-vulnerabilities", response_class=HTMLResponse)
async def upload_post(request: Request, file: Optional[UploadFile] = None) -> Response:
    """Analyse the workbook as a new run, then go where the backend says."""
    if response := _guard(request, require_superuser=True):
        return response
    scope = read_scope(request.session)
    if not scope.has_instance:
        return RedirectResponse("/create-instance", status_code=302)

    context = {"max_mb": _settings.max_upload_bytes // (1024 * 1024)}
    raw = await file.read(_settings.max_upload_bytes + 1) if file is not None else b""
    try:
        outcome = await asyncio.to_thread(
            process_upload,
            request.app.state.reports,
            request.app.state.analysis,
            scope.instance_id,
            file.filename if file is not None else "",
            raw,
            file.content_type if file is not None else "",
            _settings.max_upload_bytes,
        )
    except UploadRejected as exc:
        if exc.code == "no_instance":
            return RedirectResponse("/create-instance", status_code=302)
        return _render(request, "upload.html", {**context, "error_msg": exc.message})
    except AnalysisError as exc:
        message = _ANALYSIS_MESSAGES.get(exc.kind, _ANALYSIS_MESSAGES[HTTP_STATUS]).format(detail=exc.message)
        return _render(request, "upload.html", {**context, "error_msg": message, "retryable": exc.retryable})

    if not outcome.completed:
        message = outcome.result.message or "The analysis did not complete."
        return _render(request, "upload.html", {**context, "error_msg": message})

    select_instance(request.session, outcome.run.instance_id, outcome.run.id)
    store_analysis_results(request.session, outcome.session_payload())
    request.app.state.cache.invalidate_scope(outcome.scope)
    return RedirectResponse(outcome.redirect, status_code=302)


# ---------------------------------------------------------------------------
# Dashboard (fixed pages before /dashboard/{slug})
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
def dashboard(request: Request) -> HTMLResponse:
    if response := _guard(request):
        return response
    scope = read_scope(request.session)
    result = load_overview(request.app.state.reports, scope, request.app.state.cache)
    return _render(
        request,
        "dashboard.html",
        {
            "result": result,
            "load_error": LOAD_ERROR,
            "analysis_results": read_analysis_results(request.session),
        },
    )


@router.post("/dashboard/run")
def switch_run(request: Request, run_id: int = Form(...)) -> Response:
    """Select another completed run of the current instance and refresh its views."""
    if response := _guard(request):
        return response
    store: ReportStore = request.app.state.reports
    scope = read_scope(request.session)
    run = store.get_run(run_id)
    if run is not None and run.instance_id == scope.instance_id and run.status == RUN_COMPLETED:
        request.app.state.cache.invalidate_scope(select_run(request.session, run_id))
    return RedirectResponse(safe_next(request.query_params.get("next"), "/dashboard"), status_code=302)


@router.get("/dashboard/access-management", response_class=HTMLResponse)
def access_management(request: Request) -> HTMLResponse:
    if response := _guard(request, require_superuser=True):
        return response
    return _render(request, "access_management.html", {"principals": _principals(request)})


@router.post("/dashboard/access-management", response_class=HTMLResponse)
def access_management_post(
    request: Request,
    email: str = Form(...),
    new_password: str = Form(...),
    confirm_password: str = Form(...),
) -> HTMLResponse:
    """Reset another principal's password (creates the account if missing)."""
    if response := _guard(request, require_superuser=True):
        return response
    email = email.strip()
    error_msg = _validate_new_password(new_password, confirm_password)
    if error_msg is None and derive_role(email, _settings.allowed_users) is None:
        error_msg = "User not found."
    if error_msg is not None:
        return _render(request, "access_management.html", {"principals": _principals(request), "error_msg": error_msg})

    user_store: UserStore = request.app.state.user_store
    user_store.upsert_password(email, hash_password(new_password))
    logger.info("Password for %s set by %s", email, request.state.session.email)
    return _render(
        request,
        "access_management.html",
        {"principals": _principals(request), "success_msg": f"Password updated for {email}."},
    )


def _principals(request: Request) -> list[dict]:
    user_store: UserStore = request.app.state.user_store
    principals = []
    for email in _settings.allowed_users:
        role = derive_role(email, _settings.allowed_users)
        account = user_store.get_by_email(email)
        principals.append(
            {
                "email": email,
                "role": role,
                "privileges": privileges_for(role),
                "has_account": account is not None,
                "last_login": account.last_login if account else None,
            }
        )
    return principals


@router.get("/dashboard/instance-settings", response_class=HTMLResponse)
def instance_settings(request: Request) -> HTMLResponse:
    if response := _guard(request, require_superuser=True):
        return response
    if not read_scope(request.session).has_instance:
        return RedirectResponse("/select-instance", status_code=302)
    return _render(request, "instance_settings.html")


@router.post("/dashboard/instance-settings", response_class=HTMLResponse)
def instance_settings_post(
    request: Request,
    name: str = Form(default=""),
    description: str = Form(default=""),
) -> Response:
    if response := _guard(request, require_superuser=True):
        return response
    scope = read_scope(request.session)
    if not scope.has_instance:
        return RedirectResponse("/select-instance", status_code=302)
    name = name.strip()
    if not name or len(name) > 255:
        return _render(request, "instance_settings.html", {"error_msg": "Instance name is required."})
    store: ReportStore = request.app.state.reports
    store.update_instance(scope.instance_id, name=name, description=description.strip()[:2000])
    request.app.state.cache.invalidate_instance(scope.instance_id)
    logger.info("Instance %d updated by %s", scope.instance_id, request.state.session.email)
    return _render(request, "instance_settings.html", {"success_msg": "Instance updated."})


@router.get("/dashboard/account", response_class=HTMLResponse)
def account(request: Request) -> HTMLResponse:
    if response := _guard(request):
        return response
    session = request.state.session
    return _render(request, "account.html", {"privileges": privileges_for(session.role)})


@router.post("/dashboard/account", response_class=HTMLResponse)
def account_post(
    request: Request,
    new_password: str = Form(...),
    confirm_password: str = Form(...),
) -> HTMLResponse:
    if response := _guard(request):
        return response
    session = request.state.session
    context = {"privileges": privileges_for(session.role)}
    error_msg = _validate_new_password(new_password, confirm_password)
    if error_msg is not None:
        return _render(request, "account.html", {**context, "error_msg": error_msg})
    request.app.state.user_store.set_password(session.user.id, hash_password(new_password))
    logger.info("Password changed by %s", session.email)
    return _render(request, "account.html", {**context, "success_msg": "Password updated."})


@router.get("/dashboard/download")
def download_workbook(request: Request) -> Response:
    if response := _guard(request):
        return response
    scope = read_scope(request.session)
    if not scope_is_valid(request.app.state.reports, scope):
        return RedirectResponse("/select-instance", status_code=302)
    try:
        content = request.app.state.analysis.download_report(scope)
    except AnalysisError as exc:
        return _render(request, "error.html", {"error_msg": f"Download failed: {exc.message}"}, status_code=502)
    return _xlsx(content, f"insightshield-report-run{scope.run_id}.xlsx")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.get("/dashboard/{slug}", response_class=HTMLResponse)
def report_page(request: Request, slug: str, page: int = 1) -> HTMLResponse:
    if response := _guard(request):
        return response
    scope = read_scope(request.session)
    try:
        result = load_view(request.app.state.reports, slug, scope, max(1, page), request.app.state.cache)
    except UnknownReport:
        return _render(request, "error.html", {"error_msg": "Report not found."}, status_code=404)
    template = "report.html" if slug in CATALOG else f"{slug.replace('-', '_')}.html"
    return _render(
        request,
        template,
        {
            "slug": slug,
            "title": CATALOG[slug].title if slug in CATALOG else COMPUTED_VIEWS[slug],
            "result": result,
            "load_error": LOAD_ERROR,
            "downloadable": sheet_for(slug) is not None,
        },
    )


@router.get("/dashboard/{slug}/download")
def download_sheet(request: Request, slug: str) -> Response:
    if response := _guard(request):
        return response
    sheet = sheet_for(slug)
    if sheet is None:
        return _render(request, "error.html", {"error_msg": "Report not found."}, status_code=404)
    scope = read_scope(request.session)
    if not scope_is_valid(request.app.state.reports, scope):
        return RedirectResponse("/select-instance", status_code=302)
    try:
        content = request.app.state.analysis.download_sheet(scope, sheet)
    except AnalysisError as exc:
        return _render(request, "error.html", {"error_msg": f"Download failed: {exc.message}"}, status_code=502)
    return _xlsx(content, f"{slug}-run{scope.run_id}.xlsx")


@router.get("/dashboard/{slug}/csv")
def export_csv(request: Request, slug: str) -> Response:
    """Every row of a catalog report as CSV, formula-neutralised."""
    if response := _guard(request):
        return response
    spec = CATALOG.get(slug)
    if spec is None:
        return _render(request, "error.html", {"error_msg": "Report not found."}, status_code=404)
    result = export_report(request.app.state.reports, spec, read_scope(request.session))
    if result.status is ResultStatus.no_scope:
        return RedirectResponse("/select-instance", status_code=302)
    if result.status is ResultStatus.error:
        return _render(request, "error.html", {"error_msg": LOAD_ERROR}, status_code=503)
    return Response(
        content=to_csv(result.data["rows"]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{slug}.csv"'},
    )
