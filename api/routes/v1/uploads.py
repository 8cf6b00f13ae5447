"""
api/routes/v1/uploads.py -- Vulnerability spreadsheet upload.

Routes:
  POST /api/v1/analyze  -- upload a workbook for the selected instance (superuser)

The file is analysed under a newly created run of the instance held in the
session. On return the session scope points at that run and the analysis
outcome is stored as analysisResults, so the dashboard can render at once.

Error mapping:
  no instance selected          -> 409 no_instance
  rejected file (type/size)     -> 422 <reason code>
  backend unreachable / non-2xx -> 502 analysis_failed
  backend timed out             -> 504 analysis_failed
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile

from api.limiter import limiter
from api.models import ErrorDetail, OutputFilesResponse, RunResponse, UploadResponse
from auth.dependencies import require_superuser
from auth.session import SessionState
from core.analysis import ABORTED, AnalysisError
from core.config import get_settings
from reports.scope import read_scope, select_instance, store_analysis_results
from reports.uploads import UploadRejected, process_upload

logger = logging.getLogger("insightshield.api.uploads")

_settings = get_settings()

router = APIRouter()


@limiter.limit("10/minute")
@router.post("/analyze", response_model=UploadResponse)
async def analyze(
    request: Request,
    file: UploadFile,
    session: SessionState = Depends(require_superuser),
) -> UploadResponse:
    """Analyse an uploaded .xlsx/.xls file as the next run of the selected instance."""
    scope = read_scope(request.session)
    if not scope.has_instance:
        raise HTTPException(
            status_code=409,
            detail=ErrorDetail(
                code="no_instance",
                message="Create or select an instance before uploading.",
            ).model_dump(),
        )

    # Read one byte past the limit so oversize files are detected without buffering them whole
    raw = await file.read(_settings.max_upload_bytes + 1)
    try:
        outcome = await asyncio.to_thread(
            process_upload,
            request.app.state.reports,
            request.app.state.analysis,
            scope.instance_id,
            file.filename or "",
            raw,
            file.content_type or "",
            _settings.max_upload_bytes,
        )
    except UploadRejected as exc:
        raise HTTPException(
            status_code=422,
            detail=ErrorDetail(code=exc.code, message=exc.message).model_dump(),
        ) from exc
    except AnalysisError as exc:
        raise HTTPException(
            status_code=504 if exc.kind == ABORTED else 502,
            detail={
                "code": "analysis_failed",
                "message": exc.message,
                "kind": exc.kind,
                "retryable": exc.retryable,
            },
        ) from exc

    # A failed run holds no rows; the session keeps its previous scope.
    if outcome.completed:
        select_instance(request.session, outcome.run.instance_id, outcome.run.id)
        store_analysis_results(request.session, outcome.session_payload())
        request.app.state.cache.invalidate_scope(outcome.scope)
    logger.info(
        "Upload by %s analysed as run %d (completed=%s)", session.email, outcome.run.id, outcome.completed
    )

    files = outcome.result.output_files
    return UploadResponse(
        run=RunResponse.from_run(outcome.run),
        status=outcome.result.status,
        message=outcome.result.message,
        completed=outcome.completed,
        redirect=outcome.redirect,
        output_files=OutputFilesResponse(
            standard_report=files.standard_report,
            enhanced_workbook=files.enhanced_workbook,
            json_results=files.json_results,
        ),
    )
