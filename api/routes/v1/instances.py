"""
api/routes/v1/instances.py -- Instance, run and scope endpoints.

Routes:
  GET    /api/v1/instances              -- list instances (auth)
  POST   /api/v1/instances              -- create instance and select it (superuser)
  GET    /api/v1/instances/{id}         -- instance detail (auth)
  PATCH  /api/v1/instances/{id}         -- edit name/description (superuser)
  GET    /api/v1/instances/{id}/runs    -- runs of an instance, oldest first (auth)
  GET    /api/v1/scope                  -- currently selected instance/run
  PUT    /api/v1/scope                  -- select instance (and run)
  DELETE /api/v1/scope                  -- clear the selection

The selected scope lives in the signed session cookie (reports/scope.py).
Selecting a scope drops that scope's cached report payloads so every view
reads the current data for the new run.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    InstanceCreate,
    InstancePatch,
    InstanceResponse,
    RunResponse,
    ScopeRequest,
    ScopeResponse,
)
from auth.dependencies import get_current_user, require_superuser
from auth.session import SessionState
from reports.models import RUN_COMPLETED, Instance
from reports.scope import clear_scope, read_analysis_results, read_scope, select_instance
from reports.store import ReportStore

logger = logging.getLogger("insightshield.api.instances")

router = APIRouter()


def _get_instance_or_404(store: ReportStore, instance_id: int) -> Instance:
    instance = store.get_instance(instance_id)
    if instance is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Instance not found."},
        )
    return instance


def _scope_response(request: Request) -> ScopeResponse:
    scope = read_scope(request.session)
    return ScopeResponse(
        instance_id=scope.instance_id,
        run_id=scope.run_id,
        analysis_results=read_analysis_results(request.session),
    )


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


@router.get("/instances", response_model=list[InstanceResponse])
def list_instances(request: Request, session: SessionState = Depends(get_current_user)) -> list[InstanceResponse]:
    store: ReportStore = request.app.state.reports
    return [InstanceResponse.from_instance(i) for i in store.list_instances()]


@router.post("/instances", response_model=InstanceResponse, status_code=201)
def create_instance(
    request: Request,
    body: InstanceCreate,
    session: SessionState = Depends(require_superuser),
) -> InstanceResponse:
    """Create an instance and make it the selected scope (with no run yet)."""
    store: ReportStore = request.app.state.reports
    instance_id = store.create_instance(
        Instance(name=body.name, description=body.description, created_by=session.email)
    )
    select_instance(request.session, instance_id)
    logger.info("Instance %d (%s) created by %s", instance_id, body.name, session.email)
    return InstanceResponse.from_instance(store.get_instance(instance_id))


@router.get("/instances/{instance_id}", response_model=InstanceResponse)
def get_instance(
    request: Request,
    instance_id: int,
    session: SessionState = Depends(get_current_user),
) -> InstanceResponse:
    return InstanceResponse.from_instance(_get_instance_or_404(request.app.state.reports, instance_id))


@router.patch("/instances/{instance_id}", response_model=InstanceResponse)
def update_instance(
    request: Request,
    instance_id: int,
    body: InstancePatch,
    session: SessionState = Depends(require_superuser),
) -> InstanceResponse:
    store: ReportStore = request.app.state.reports
    _get_instance_or_404(store, instance_id)
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    store.update_instance(instance_id, **updates)
    request.app.state.cache.invalidate_instance(instance_id)
    logger.info("Instance %d updated by %s: %s", instance_id, session.email, sorted(updates))
    return InstanceResponse.from_instance(store.get_instance(instance_id))


@router.get("/instances/{instance_id}/runs", response_model=list[RunResponse])
def list_runs(
    request: Request,
    instance_id: int,
    session: SessionState = Depends(get_current_user),
) -> list[RunResponse]:
    store: ReportStore = request.app.state.reports
    _get_instance_or_404(store, instance_id)
    return [RunResponse.from_run(r) for r in store.list_runs(instance_id)]


# ---------------------------------------------------------------------------
# Scope
# ---------------------------------------------------------------------------


@router.get("/scope", response_model=ScopeResponse)
def get_scope(request: Request, session: SessionState = Depends(get_current_user)) -> ScopeResponse:
    return _scope_response(request)


@router.put("/scope", response_model=ScopeResponse)
def put_scope(
    request: Request,
    body: ScopeRequest,
    session: SessionState = Depends(get_current_user),
) -> ScopeResponse:
    """Select an instance and run. Without run_id the latest completed run is used."""
    store: ReportStore = request.app.state.reports
    _get_instance_or_404(store, body.instance_id)
    run_id = body.run_id
    if run_id is not None:
        run = store.get_run(run_id)
        if run is None or run.instance_id != body.instance_id:
            raise HTTPException(
                status_code=404,
                detail={"code": "run_not_found", "message": "Run not found for this instance."},
            )
        if run.status != RUN_COMPLETED:
            raise HTTPException(
                status_code=409,
                detail={"code": "run_not_completed", "message": f"Run {run.run_number} is {run.status}."},
            )
    else:
        latest = store.latest_run(body.instance_id)
        run_id = latest.id if latest else None
    scope = select_instance(request.session, body.instance_id, run_id)
    if scope.is_complete:
        request.app.state.cache.invalidate_scope(scope)
    return _scope_response(request)


@router.delete("/scope", response_model=ScopeResponse)
def delete_scope(request: Request, session: SessionState = Depends(get_current_user)) -> ScopeResponse:
    clear_scope(request.session)
    return _scope_response(request)
