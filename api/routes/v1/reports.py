"""
api/routes/v1/reports.py -- Report views and workbook downloads.

Routes:
  GET /api/v1/reports                    -- available report slugs
  GET /api/v1/overview                   -- dashboard overview for the scope
  GET /api/v1/insights/instance          -- cross-run insights for the instance
  GET /api/v1/insights/trajectory        -- per-run severity series
  GET /api/v1/reports/{slug}?page=N      -- one report page plus summary
  GET /api/v1/reports/{slug}/download    -- the report's worksheet (xlsx)
  GET /api/v1/download                   -- the full generated workbook (xlsx)

Scope comes from the session unless the caller passes an instance_id query
parameter, in which case instance_id and run_id are taken from the query.
Every view answers with a ReportResponse whose status is ok, empty or
no_scope; a database failure is HTTP 503.

Auth policy: all routes require an authenticated principal.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response

from api.models import ReportInfo, ReportResponse
from auth.dependencies import get_current_user
from auth.session import SessionState
from core.analysis import ABORTED, AnalysisClient, AnalysisError
from core.models import QueryResult, ResultStatus, Scope
from reports.catalog import CATALOG, COMPUTED_VIEWS
from reports.scope import read_scope
from reports.store import ReportStore
from reports.views import (
    UnknownReport,
    load_instance_insights,
    load_overview,
    load_risk_trajectory,
    load_view,
    scope_is_valid,
    sheet_for,
)

router = APIRouter()

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _request_scope(request: Request, instance_id: Optional[int], run_id: Optional[int]) -> Scope:
    if instance_id is not None:
        return Scope(instance_id, run_id)
    return read_scope(request.session)


def _respond(report: str, result: QueryResult) -> ReportResponse:
    if result.status is ResultStatus.error:
        raise HTTPException(
            status_code=503,
            detail={"code": "query_failed", "message": result.error or "Error loading data"},
        )
    return ReportResponse.from_result(report, result)


def _download(data_fn, filename: str) -> Response:
    try:
        content = data_fn()
    except AnalysisError as exc:
        raise HTTPException(
            status_code=504 if exc.kind == ABORTED else 502,
            detail={"code": "download_failed", "message": "Download failed.", "detail": exc.message},
        ) from exc
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _require_run_scope(store: ReportStore, scope: Scope) -> None:
    if not scope_is_valid(store, scope):
        raise HTTPException(
            status_code=409,
            detail={"code": "no_scope", "message": "Select an instance and run first."},
        )


@router.get("/reports", response_model=list[ReportInfo])
def list_reports(session: SessionState = Depends(get_current_user)) -> list[ReportInfo]:
    infos = [
        ReportInfo(slug=s.slug, title=s.title, page_size=s.page_size, sheet_name=s.sheet_name)
        for s in CATALOG.values()
    ]
    infos.extend(
        ReportInfo(slug=slug, title=title, sheet_name=sheet_for(slug))
        for slug, title in COMPUTED_VIEWS.items()
    )
    return infos


@router.get("/overview", response_model=ReportResponse)
def overview(
    request: Request,
    instance_id: Optional[int] = Query(default=None, ge=1),
    run_id: Optional[int] = Query(default=None, ge=1),
    session: SessionState = Depends(get_current_user),
) -> ReportResponse:
    scope = _request_scope(request, instance_id, run_id)
    return _respond("overview", load_overview(request.app.state.reports, scope, request.app.state.cache))


@router.get("/insights/instance", response_model=ReportResponse)
def instance_insights(
    request: Request,
    instance_id: Optional[int] = Query(default=None, ge=1),
    session: SessionState = Depends(get_current_user),
) -> ReportResponse:
    scope = _request_scope(request, instance_id, None)
    result = load_instance_insights(request.app.state.reports, scope, request.app.state.cache)
    return _respond("instance-insights", result)


@router.get("/insights/trajectory", response_model=ReportResponse)
def trajectory(
    request: Request,
    instance_id: Optional[int] = Query(default=None, ge=1),
    session: SessionState = Depends(get_current_user),
) -> ReportResponse:
    scope = _request_scope(request, instance_id, None)
    result = load_risk_trajectory(request.app.state.reports, scope, request.app.state.cache)
    return _respond("risk-trajectory", result)


@router.get("/reports/{slug}", response_model=ReportResponse)
def report(
    request: Request,
    slug: str,
    page: int = Query(default=1, ge=1),
    instance_id: Optional[int] = Query(default=None, ge=1),
    run_id: Optional[int] = Query(default=None, ge=1),
    session: SessionState = Depends(get_current_user),
) -> ReportResponse:
    scope = _request_scope(request, instance_id, run_id)
    try:
        result = load_view(request.app.state.reports, slug, scope, page, request.app.state.cache)
    except UnknownReport as exc:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"Unknown report: {slug}"},
        ) from exc
    return _respond(slug, result)


@router.get("/reports/{slug}/download")
def download_report_sheet(
    request: Request,
    slug: str,
    instance_id: Optional[int] = Query(default=None, ge=1),
    run_id: Optional[int] = Query(default=None, ge=1),
    session: SessionState = Depends(get_current_user),
) -> Response:
    sheet = sheet_for(slug)
    if sheet is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": f"No downloadable sheet for {slug}"},
        )
    scope = _request_scope(request, instance_id, run_id)
    _require_run_scope(request.app.state.reports, scope)
    client: AnalysisClient = request.app.state.analysis
    return _download(lambda: client.download_sheet(scope, sheet), f"{slug}-run{scope.run_id}.xlsx")


@router.get("/download")
def download_workbook(
    request: Request,
    instance_id: Optional[int] = Query(default=None, ge=1),
    run_id: Optional[int] = Query(default=None, ge=1),
    session: SessionState = Depends(get_current_user),
) -> Response:
    scope = _request_scope(request, instance_id, run_id)
    _require_run_scope(request.app.state.reports, scope)
    client: AnalysisClient = request.app.state.analysis
    return _download(lambda: client.download_report(scope), f"insightshield-report-run{scope.run_id}.xlsx")
