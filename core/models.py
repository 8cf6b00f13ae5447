from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Severity labels in display order. "Unknown" collects anything the analysis
# backend emitted that does not normalise to one of the four real levels.
SEVERITIES = ("Critical", "High", "Medium", "Low")
UNKNOWN = "Unknown"


class Role(str, Enum):
    superuser = "superuser"
    normaluser = "normaluser"


@dataclass(frozen=True)
class Scope:
    """The (instance, run) pair every report read is filtered by.

    Either id may be None: no instance selected yet, or an instance selected
    but no run. Data-access functions check completeness before querying.
    """

    instance_id: Optional[int] = None
    run_id: Optional[int] = None

    @property
    def has_instance(self) -> bool:
        return self.instance_id is not None

    @property
    def is_complete(self) -> bool:
        return self.instance_id is not None and self.run_id is not None

    @property
    def cache_key(self) -> str:
        return f"{self.instance_id}:{self.run_id}"


class ResultStatus(str, Enum):
    ok = "ok"
    empty = "empty"
    no_scope = "no_scope"
    error = "error"


@dataclass
class QueryResult:
    """Outcome of one report view.

    data is a JSON-ready dict when status is ok or empty and None otherwise.
    error carries a short human-readable message for status == error.
    """

    status: ResultStatus
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def no_scope(cls) -> "QueryResult":
        return cls(status=ResultStatus.no_scope)

    @classmethod
    def failed(cls, message: str) -> "QueryResult":
        return cls(status=ResultStatus.error, error=message)

    @classmethod
    def from_data(cls, data: dict[str, Any], row_count: int) -> "QueryResult":
        return cls(status=ResultStatus.ok if row_count else ResultStatus.empty, data=data)


@dataclass
class OutputFiles:
    standard_report: Optional[str] = None
    enhanced_workbook: Optional[str] = None
    json_results: Optional[str] = None


@dataclass
class AnalysisResult:
    """Parsed response of the analysis backend's upload endpoint."""

    status: str
    message: str = ""
    output_files: OutputFiles = field(default_factory=OutputFiles)
    completed: bool = False
    redirect: Optional[str] = None
