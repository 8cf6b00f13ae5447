"""
reports/store.py -- SQLAlchemy-backed persistence layer for instances, runs
and report rows.

Uses SQLAlchemy Core (not ORM) so the dataclasses in reports/models.py remain
the authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. ReportStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

Security: all queries use bound parameters. Table and column names used to
build report queries are checked against schema.REPORT_TABLES first, never
taken raw from a request.

Usage:
    store = ReportStore()                                # SQLite default
    store = ReportStore("postgresql://user:pw@host/db")  # PostgreSQL
    instance_id = store.create_instance(Instance(name="Prod Environment"))
    run = store.create_run(instance_id)
    rows = store.fetch_rows("cve_summary", Scope(instance_id, run.id), [("count", True)])
    store.close()
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from sqlalchemy import Table, and_, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from core.models import Scope
from reports.models import RUN_COMPLETED, RUN_PENDING, Instance, Run
from reports.schema import REPORT_TABLES, instances, metadata, runs

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'insightshield.db'}"

logger = logging.getLogger("insightshield.reports.store")

# Ordering spec: (column name, descending)
OrderBy = Sequence[tuple[str, bool]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _report_table(name: str) -> Table:
    table = REPORT_TABLES.get(name)
    if table is None:
        raise ValueError(f"Unknown report table: {name!r}")
    return table


def _column(table: Table, name: str):
    if name not in table.c:
        raise ValueError(f"Unknown column {name!r} on {table.name}")
    return table.c[name]


class ReportStore:
    """Repository for Instance, Run and report-row reads."""

    _INSTANCE_FIELDS = {"name", "description", "status"}

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def create_instance(self, instance: Instance) -> int:
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                instances.insert().values(
                    name=instance.name,
                    description=instance.description or "",
                    status=instance.status,
                    created_by=instance.created_by,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_instance(self, instance_id: int) -> Optional[Instance]:
        with self.engine.connect() as conn:
            row = conn.execute(instances.select().where(instances.c.id == instance_id)).fetchone()
        return _row_to_instance(row) if row is not None else None

    def list_instances(self) -> list[Instance]:
        """Return all instances, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(instances.select().order_by(instances.c.created_at.desc(), instances.c.id.desc()))
            return [_row_to_instance(r) for r in rows.fetchall()]

    def update_instance(self, instance_id: int, **fields) -> bool:
        """Update name, description or status. Returns False if not found.

        Unknown field names raise ValueError.
        """
        unknown = set(fields) - self._INSTANCE_FIELDS
        if unknown:
            raise ValueError(f"Unknown instance fields: {unknown!r}")
        if not fields:
            return self.get_instance(instance_id) is not None
        with self.engine.connect() as conn:
            result = conn.execute(
                instances.update().where(instances.c.id == instance_id).values(updated_at=_now_iso(), **fields)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        instance_id: int,
        scan_date: Optional[str] = None,
        source_filename: Optional[str] = None,
        status: str = RUN_PENDING,
    ) -> Run:
        """Insert the next run for instance_id. run_number is max + 1."""
        now = _now_iso()
        with self.engine.connect() as conn:
            current = conn.execute(
                select(func.max(runs.c.run_number)).where(runs.c.instance_id == instance_id)
            ).scalar()
            run_number = (current or 0) + 1
            result = conn.execute(
                runs.insert().values(
                    instance_id=instance_id,
                    run_number=run_number,
                    status=status,
                    scan_date=scan_date or now,
                    source_filename=source_filename,
                    created_at=now,
                )
            )
            conn.commit()
            run_id = result.inserted_primary_key[0]
        return Run(
            id=run_id,
            instance_id=instance_id,
            run_number=run_number,
            status=status,
            scan_date=scan_date or now,
            source_filename=source_filename,
            created_at=now,
        )

    def get_run(self, run_id: int) -> Optional[Run]:
        with self.engine.connect() as conn:
            row = conn.execute(runs.select().where(runs.c.id == run_id)).fetchone()
        return _row_to_run(row) if row is not None else None

    def list_runs(self, instance_id: int) -> list[Run]:
        """Return every run of the instance, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                runs.select().where(runs.c.instance_id == instance_id).order_by(runs.c.run_number)
            ).fetchall()
        return [_row_to_run(r) for r in rows]

    def latest_run(self, instance_id: int) -> Optional[Run]:
        """Most recent completed run of the instance, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                runs.select()
                .where(and_(runs.c.instance_id == instance_id, runs.c.status == RUN_COMPLETED))
                .order_by(runs.c.run_number.desc())
                .limit(1)
            ).fetchone()
        return _row_to_run(row) if row is not None else None

    def set_run_status(self, run_id: int, status: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(runs.update().where(runs.c.id == run_id).values(status=status))
            conn.commit()
        return result.rowcount > 0

    def run_belongs_to(self, run_id: int, instance_id: int) -> bool:
        run = self.get_run(run_id)
        return run is not None and run.instance_id == instance_id

    # ------------------------------------------------------------------
    # Report rows
    # ------------------------------------------------------------------

    def fetch_rows(
        self,
        table_name: str,
        scope: Scope,
        order_by: OrderBy = (),
        limit: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Return the rows of one report table for a complete scope.

        Raises ValueError for an incomplete scope; callers decide what an
        unselected scope means before calling.
        """
        if not scope.is_complete:
            raise ValueError("fetch_rows requires both instance_id and run_id")
        table = _report_table(table_name)
        query = table.select().where(
            and_(table.c.instance_id == scope.instance_id, table.c.run_id == scope.run_id)
        )
        for name, descending in order_by:
            col = _column(table, name)
            query = query.order_by(col.desc() if descending else col.asc())
        query = query.order_by(table.c.id)
        if limit is not None:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(query).fetchall()]

    def fetch_instance_rows(self, table_name: str, instance_id: int) -> list[dict[str, Any]]:
        """Return the rows of one report table across every run of an instance."""
        table = _report_table(table_name)
        query = table.select().where(table.c.instance_id == instance_id).order_by(table.c.run_id, table.c.id)
        with self.engine.connect() as conn:
            return [dict(r._mapping) for r in conn.execute(query).fetchall()]

    def count_rows(
        self,
        table_name: str,
        scope: Scope,
        equals: Optional[dict[str, Any]] = None,
        at_least: Optional[dict[str, float]] = None,
    ) -> int:
        if not scope.is_complete:
            raise ValueError("count_rows requires both instance_id and run_id")
        table = _report_table(table_name)
        conditions = [table.c.instance_id == scope.instance_id, table.c.run_id == scope.run_id]
        for name, value in (equals or {}).items():
            conditions.append(_column(table, name) == value)
        for name, value in (at_least or {}).items():
            conditions.append(_column(table, name) >= value)
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table).where(and_(*conditions))).scalar() or 0

    def insert_rows(self, table_name: str, scope: Scope, rows: list[dict[str, Any]]) -> int:
        """Bulk-load report rows for a scope. Returns the number of rows written.

        Keys outside the table's columns raise ValueError before anything is
        written. instance_id and run_id always come from scope.
        """
        if not scope.is_complete:
            raise ValueError("insert_rows requires both instance_id and run_id")
        table = _report_table(table_name)
        allowed = {c.name for c in table.c} - {"id", "instance_id", "run_id"}
        for row in rows:
            unknown = set(row) - allowed
            if unknown:
                raise ValueError(f"Unknown columns for {table_name}: {sorted(unknown)!r}")
        if not rows:
            return 0
        now = _now_iso()
        # executemany needs the same keys in every parameter set
        keys = set().union(*rows)
        payload = [
            {
                "created_at": now,
                **{k: row.get(k) for k in keys},
                "instance_id": scope.instance_id,
                "run_id": scope.run_id,
            }
            for row in rows
        ]
        with self.engine.connect() as conn:
            conn.execute(table.insert(), payload)
            conn.commit()
        return len(payload)

    def ping(self) -> bool:
        """True when the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.exception("Report database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_instance(row) -> Instance:
    return Instance(
        id=row.id,
        name=row.name,
        description=row.description or "",
        status=row.status,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_run(row) -> Run:
    return Run(
        id=row.id,
        instance_id=row.instance_id,
        run_number=row.run_number,
        status=row.status,
        scan_date=row.scan_date,
        source_filename=row.source_filename,
        created_at=row.created_at,
    )
