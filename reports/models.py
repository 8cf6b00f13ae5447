"""
reports/models.py -- Domain dataclasses for instances and runs.

Pure data containers. All persistence lives in reports/store.py.
"""

from dataclasses import dataclass
from typing import Optional

RUN_PENDING = "pending"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"


@dataclass
class Instance:
    """A named environment whose vulnerability data is tracked over time.

    Created by a superuser; name and description may be edited later.
    Instances are never deleted.
    """

    name: str
    description: str = ""
    status: str = "active"
    created_by: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class Run:
    """One ingestion of scan data into an instance.

    run_number counts from 1 within the instance. Apart from status moving
    out of "pending" once the analysis call returns, a run never changes.
    """

    instance_id: int
    run_number: int
    status: str = RUN_PENDING
    scan_date: Optional[str] = None
    source_filename: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
