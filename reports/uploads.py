"""
reports/uploads.py -- Spreadsheet upload flow.

validate_spreadsheet() checks type and size before anything is written.
process_upload() then creates the next run for the instance, hands the file
to the analysis backend with that (instance, run) scope, and records the
outcome on the run:

  backend reports completed  -> run "completed"
  backend answers otherwise  -> run "failed", outcome.completed False
  client raises              -> run "failed", error re-raised to the caller

Shared by the API upload endpoint and the web upload form.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import PurePath
from typing import Optional

from core.analysis import AnalysisClient, AnalysisError
from core.models import AnalysisResult, Scope
from reports.models import RUN_COMPLETED, RUN_FAILED, Run
from reports.store import ReportStore

logger = logging.getLogger("insightshield.uploads")

SPREADSHEET_EXTENSIONS = (".xlsx", ".xls")
SPREADSHEET_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}
DEFAULT_REDIRECT = "/dashboard"


class UploadRejected(ValueError):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class UploadOutcome:
    run: Run
    result: AnalysisResult
    redirect: str

    @property
    def completed(self) -> bool:
        return self.run.status == RUN_COMPLETED

    @property
    def scope(self) -> Scope:
        return Scope(self.run.instance_id, self.run.id)

    def session_payload(self) -> dict:
        """The analysisResults value kept in the session."""
        return {"run_id": self.run.id, "run_number": self.run.run_number, **asdict(self.result)}


def validate_spreadsheet(filename: Optional[str], content_type: Optional[str], size: int, max_bytes: int) -> None:
    """Raise UploadRejected unless the upload looks like an Excel workbook.

    Either the extension or the declared content type is enough; browsers
    are inconsistent about the latter.
    """
    name = (filename or "").lower()
    if not name:
        raise UploadRejected("no_file", "Please choose a file to upload.")
    if not name.endswith(SPREADSHEET_EXTENSIONS) and (content_type or "") not in SPREADSHEET_CONTENT_TYPES:
        raise UploadRejected("invalid_type", "Please upload an Excel file (.xlsx or .xls).")
    if size == 0:
        raise UploadRejected("empty_file", "The uploaded file is empty.")
    if size > max_bytes:
        raise UploadRejected("too_large", f"File must be {max_bytes // (1024 * 1024)} MB or smaller.")


def _safe_redirect(target: Optional[str]) -> str:
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return DEFAULT_REDIRECT


def process_upload(
    store: ReportStore,
    client: AnalysisClient,
    instance_id: int,
    filename: str,
    content: bytes,
    content_type: str,
    max_bytes: int,
) -> UploadOutcome:
    validate_spreadsheet(filename, content_type, len(content), max_bytes)
    if store.get_instance(instance_id) is None:
        raise UploadRejected("no_instance", "Create or select an instance before uploading.")

    safe_name = PurePath(filename).name
    run = store.create_run(instance_id, source_filename=safe_name)
    logger.info("Run %d (#%d) created for instance %d from %s", run.id, run.run_number, instance_id, safe_name)

    try:
        result = client.analyze(safe_name, content, content_type, Scope(instance_id, run.id))
    except AnalysisError as exc:
        store.set_run_status(run.id, RUN_FAILED)
        logger.warning("Analysis failed for run %d (%s): %s", run.id, exc.kind, exc.message)
        raise
    except Exception:
        store.set_run_status(run.id, RUN_FAILED)
        logger.exception("Analysis crashed for run %d", run.id)
        raise

    run.status = RUN_COMPLETED if result.completed else RUN_FAILED
    store.set_run_status(run.id, run.status)
    if not result.completed:
        logger.warning("Analysis for run %d did not complete: %s", run.id, result.message)
    return UploadOutcome(run=run, result=result, redirect=_safe_redirect(result.redirect))
