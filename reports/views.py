"""
reports/views.py -- Scoped report views.

Every function here takes an explicit Scope and returns a QueryResult:

  no_scope  -- the scope is incomplete, or the run is not part of the
               instance. No report query is issued.
  error     -- the database raised; the exception is logged here once.
  empty/ok  -- data holds a JSON-ready payload.

Views read through the optional ReportCache keyed by (view, instance, run,
page). The cache is never consulted for an incomplete scope.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from cache.store import ReportCache
from core.models import QueryResult, Scope
from core.shaping import age_buckets, paginate, percentages, severity_buckets
from core.trends import instance_insights, risk_trajectory
from reports.catalog import CATALOG, COMPUTED_VIEWS, HIGH_EXPLOITABILITY, ReportSpec
from reports.models import RUN_COMPLETED
from reports.store import ReportStore

logger = logging.getLogger("insightshield.views")

LOAD_ERROR = "Error loading data"


class UnknownReport(LookupError):
    pass


def scope_is_valid(store: ReportStore, scope: Scope, need_run: bool = True) -> bool:
    """True when scope names an instance (and, if need_run, one of its runs)."""
    if not scope.has_instance:
        return False
    if not need_run:
        return True
    return scope.run_id is not None and store.run_belongs_to(scope.run_id, scope.instance_id)


def _run_view(
    name: str,
    store: ReportStore,
    scope: Scope,
    compute: Callable[[], tuple[dict, int]],
    cache: Optional[ReportCache] = None,
    page: int = 1,
    need_run: bool = True,
) -> QueryResult:
    try:
        if not scope_is_valid(store, scope, need_run):
            return QueryResult.no_scope()
        cache_scope = scope if need_run else Scope(scope.instance_id, None)
        if cache is not None:
            cached = cache.get(name, cache_scope, page)
            if cached is not None:
                return QueryResult.from_data(cached["data"], cached["row_count"])
        data, row_count = compute()
    except SQLAlchemyError:
        logger.exception("Query failed for %s (scope %s)", name, scope.cache_key)
        return QueryResult.failed(LOAD_ERROR)
    if cache is not None:
        cache.set(name, cache_scope, {"data": data, "row_count": row_count}, page)
    return QueryResult.from_data(data, row_count)


# ---------------------------------------------------------------------------
# Tabular reports
# ---------------------------------------------------------------------------


def load_report(
    store: ReportStore,
    spec: ReportSpec,
    scope: Scope,
    page: int = 1,
    cache: Optional[ReportCache] = None,
) -> QueryResult:
    """One page of a catalog report plus the summary over all of its rows."""

    def compute() -> tuple[dict, int]:
        rows = store.fetch_rows(spec.table, scope, spec.order_by)
        current = paginate(rows, page, spec.page_size)
        return {
            "report": spec.slug,
            "title": spec.title,
            "rows": current.items,
            "page": current.page,
            "page_size": current.page_size,
            "total": current.total,
            "total_pages": current.total_pages,
            "summary": spec.summarize(rows) if spec.summarize else {},
        }, len(rows)

    return _run_view(spec.slug, store, scope, compute, cache, page)


def export_report(store: ReportStore, spec: ReportSpec, scope: Scope) -> QueryResult:
    """Every row of a catalog report, unpaginated and uncached."""

    def compute() -> tuple[dict, int]:
        rows = store.fetch_rows(spec.table, scope, spec.order_by)
        return {"report": spec.slug, "title": spec.title, "rows": rows, "total": len(rows)}, len(rows)

    return _run_view(f"{spec.slug}:export", store, scope, compute)


# ---------------------------------------------------------------------------
# Computed views
# ---------------------------------------------------------------------------


def load_overview(store: ReportStore, scope: Scope, cache: Optional[ReportCache] = None) -> QueryResult:
    """Dashboard landing page: headline counts and the top-N panels."""

    def compute() -> tuple[dict, int]:
        ageing = store.fetch_rows("ageing_of_vulnerability", scope)
        risk_rows = store.fetch_rows("risk_summary", scope, (("count", True),))
        stats = {
            "total_vulnerabilities": len(ageing),
            "high_exploitability": store.count_rows(
                "exploitability_scoring", scope, at_least={"exploitability_score": HIGH_EXPLOITABILITY}
            ),
            "kev_listed": store.count_rows("exploitability_scoring", scope, equals={"kev_listed": True}),
            "eol_components": store.count_rows("eol_components", scope),
            "total_remediations": store.count_rows("remediation_insights", scope),
        }
        data = {
            "report": "overview",
            "title": "Dashboard",
            "stats": stats,
            "top_cves": store.fetch_rows("cve_summary", scope, (("count", True),), limit=10),
            "top_hosts": store.fetch_rows(
                "host_summary", scope, (("vulnerability_count", True), ("vulnerabilities_with_cve", True)), limit=10
            ),
            "clusters": store.fetch_rows(
                "vulnerability_clustering", scope, (("total_vulnerabilities", True),), limit=8
            ),
            "ageing": age_buckets(ageing),
            "assets": store.fetch_rows("unique_assets", scope, (("asset_count", True),)),
            "risk_summary": risk_rows,
            "by_severity": severity_buckets(risk_rows, "severity", weight="count"),
        }
        row_count = len(ageing) + len(risk_rows) + len(data["top_cves"]) + len(data["assets"])
        return data, row_count

    return _run_view("overview", store, scope, compute, cache)


def load_eol_summary(store: ReportStore, scope: Scope, cache: Optional[ReportCache] = None) -> QueryResult:
    def compute() -> tuple[dict, int]:
        summary_rows = store.fetch_rows("eol_summary", scope, limit=1)
        components = store.fetch_rows("eol_components", scope, (("eol_duration_days", True),))
        versions = store.fetch_rows("eol_versions", scope, (("instance_count", True),))
        distribution = severity_buckets(components, "risk")
        per_type: dict[str, int] = {}
        for row in versions:
            name = row.get("software_type") or "Unknown"
            per_type[name] = per_type.get(name, 0) + int(row.get("instance_count") or 0)
        top_software = sorted(per_type.items(), key=lambda kv: (-kv[1], kv[0]))[:8]
        data = {
            "report": "eol-summary",
            "title": COMPUTED_VIEWS["eol-summary"],
            "summary": summary_rows[0] if summary_rows else {},
            "total_components": len(components),
            "risk_distribution": distribution,
            "risk_percentages": percentages(distribution),
            "top_software": [{"software_type": k, "instance_count": v} for k, v in top_software],
            "oldest_components": components[:5],
        }
        return data, len(summary_rows) + len(components) + len(versions)

    return _run_view("eol-summary", store, scope, compute, cache)


def _runs_as_rows(store: ReportStore, instance_id: int) -> list[dict]:
    """Completed runs only; pending and failed runs hold no report rows."""
    return [
        {"id": r.id, "run_number": r.run_number, "scan_date": r.scan_date, "created_at": r.created_at}
        for r in store.list_runs(instance_id)
        if r.status == RUN_COMPLETED
    ]


def _completed_rows(store: ReportStore, table: str, instance_id: int, runs: list[dict]) -> list[dict]:
    run_ids = {r["id"] for r in runs}
    return [row for row in store.fetch_instance_rows(table, instance_id) if row["run_id"] in run_ids]


def load_instance_insights(store: ReportStore, scope: Scope, cache: Optional[ReportCache] = None) -> QueryResult:
    """Trends across the completed runs of the scoped instance. Needs no run."""

    def compute() -> tuple[dict, int]:
        runs = _runs_as_rows(store, scope.instance_id)
        data = instance_insights(
            runs,
            _completed_rows(store, "cve_summary", scope.instance_id, runs),
            _completed_rows(store, "eol_components", scope.instance_id, runs),
            _completed_rows(store, "eol_ip", scope.instance_id, runs),
        )
        data.update(report="instance-insights", title=COMPUTED_VIEWS["instance-insights"])
        return data, len(runs)

    return _run_view("instance-insights", store, scope, compute, cache, need_run=False)


def load_risk_trajectory(store: ReportStore, scope: Scope, cache: Optional[ReportCache] = None) -> QueryResult:
    def compute() -> tuple[dict, int]:
        runs = _runs_as_rows(store, scope.instance_id)
        data = risk_trajectory(runs, _completed_rows(store, "cve_summary", scope.instance_id, runs))
        data.update(report="risk-trajectory", title=COMPUTED_VIEWS["risk-trajectory"])
        return data, len(runs)

    return _run_view("risk-trajectory", store, scope, compute, cache, need_run=False)


_COMPUTED = {
    "eol-summary": load_eol_summary,
    "instance-insights": load_instance_insights,
    "risk-trajectory": load_risk_trajectory,
}


def load_view(
    store: ReportStore,
    slug: str,
    scope: Scope,
    page: int = 1,
    cache: Optional[ReportCache] = None,
) -> QueryResult:
    """Dispatch a slug to its catalog report or computed view.

    Raises UnknownReport for a slug that is neither.
    """
    if slug in _COMPUTED:
        return _COMPUTED[slug](store, scope, cache)
    spec = CATALOG.get(slug)
    if spec is None:
        raise UnknownReport(slug)
    return load_report(store, spec, scope, page, cache)


def sheet_for(slug: str) -> Optional[str]:
    """Worksheet name backing a view, for per-sheet downloads."""
    if slug == "eol-summary":
        return "EOL Summary"
    spec = CATALOG.get(slug)
    return spec.sheet_name if spec else None
