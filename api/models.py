"""
API request and response models for InsightShield REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
reports/models.py, which own the internal domain representation. Route
handlers map between the two.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.models import QueryResult, Role
from reports.models import Instance, Run

# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=72)


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str
    expires_in: int
    email: str
    role: Role


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: Role
    privileges: list[str]


class PasswordChange(BaseModel):
    new_password: str = Field(min_length=8, max_length=72)


class UserPasswordChange(BaseModel):
    """Body for a superuser resetting another principal's password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    new_password: str = Field(min_length=8, max_length=72)


class PrincipalResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    role: Role
    privileges: list[str]
    has_account: bool
    last_login: Optional[str] = None


# ---------------------------------------------------------------------------
# Instances, runs, scope
# ---------------------------------------------------------------------------


class InstanceCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=2000)


class InstancePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)


class InstanceResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: str
    status: str
    created_by: Optional[str] = None
    created_at: str
    updated_at: str

    @classmethod
    def from_instance(cls, instance: Instance) -> "InstanceResponse":
        return cls(
            id=instance.id,
            name=instance.name,
            description=instance.description,
            status=instance.status,
            created_by=instance.created_by,
            created_at=instance.created_at,
            updated_at=instance.updated_at,
        )


class RunResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    instance_id: int
    run_number: int
    status: str
    scan_date: Optional[str] = None
    source_filename: Optional[str] = None
    created_at: str

    @classmethod
    def from_run(cls, run: Run) -> "RunResponse":
        return cls(
            id=run.id,
            instance_id=run.instance_id,
            run_number=run.run_number,
            status=run.status,
            scan_date=run.scan_date,
            source_filename=run.source_filename,
            created_at=run.created_at,
        )


class ScopeRequest(BaseModel):
    """Body for PUT /api/v1/scope.

    run_id may be omitted; the instance's latest completed run is selected.
    """

    instance_id: int = Field(ge=1)
    run_id: Optional[int] = Field(default=None, ge=1)


class ScopeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    instance_id: Optional[int] = None
    run_id: Optional[int] = None
    analysis_results: Optional[dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


class ReportInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    slug: str
    title: str
    page_size: Optional[int] = None
    sheet_name: Optional[str] = None


class ReportResponse(BaseModel):
    """Envelope for every report view.

    status mirrors core.models.ResultStatus. data is null for no_scope.
    """

    model_config = ConfigDict(frozen=True)

    report: str
    status: str
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None

    @classmethod
    def from_result(cls, report: str, result: QueryResult) -> "ReportResponse":
        message = None
        if result.status.value == "no_scope":
            message = "Select an instance and run to view this report."
        elif result.status.value == "empty":
            message = "No data for the selected run."
        return cls(report=report, status=result.status.value, message=message, data=result.data)


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


class OutputFilesResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    standard_report: Optional[str] = None
    enhanced_workbook: Optional[str] = None
    json_results: Optional[str] = None


class UploadResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    run: RunResponse
    status: str
    message: str
    completed: bool
    redirect: str
    output_files: OutputFilesResponse

