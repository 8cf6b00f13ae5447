"""
reports/catalog.py -- Registry of tabular reports.

Each ReportSpec names the table a report reads, its fixed ordering, page
size and the summary computed over the full (unpaginated) row set. Views in
reports/views.py are generic over this registry; adding a report is one
entry here.

Summaries only aggregate rows already returned by the query, so a summary
can never disagree with the rows shown beside it.
"""

from dataclasses import dataclass
from typing import Callable, Optional

from core.shaping import (
    Row,
    age_buckets,
    column_total,
    count_where,
    is_truthy,
    percentages,
    severity_buckets,
    top_n,
)

HIGH_EXPLOITABILITY = 7.0
DEFAULT_PAGE_SIZE = 50
WIDE_PAGE_SIZE = 75

Summary = Callable[[list[Row]], dict]


@dataclass(frozen=True)
class ReportSpec:
    slug: str
    title: str
    table: str
    order_by: tuple[tuple[str, bool], ...]
    page_size: int = DEFAULT_PAGE_SIZE
    summarize: Optional[Summary] = None
    # Worksheet name in the generated workbook, for per-sheet downloads.
    sheet_name: Optional[str] = None


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def _risk_summary(rows: list[Row]) -> dict:
    counts = severity_buckets(rows, "severity", weight="count")
    return {
        "total": sum(counts.values()),
        "by_severity": counts,
        "percentages": percentages(counts),
        "with_cve": column_total(rows, "vulnerabilities_with_cve"),
    }


def _severity_summary(column: str) -> Summary:
    def summarize(rows: list[Row]) -> dict:
        counts = severity_buckets(rows, column)
        return {"total": len(rows), "by_severity": counts, "percentages": percentages(counts)}

    return summarize


def _hosts_summary(rows: list[Row]) -> dict:
    return {
        "hosts": len(rows),
        "vulnerabilities": column_total(rows, "vulnerability_count"),
        "with_cve": column_total(rows, "vulnerabilities_with_cve"),
        "by_severity": {s: column_total(rows, s.lower()) for s in ("Critical", "High", "Medium", "Low")},
    }


def is_high_exploitability(row: Row) -> bool:
    score = row.get("exploitability_score")
    return score is not None and float(score) >= HIGH_EXPLOITABILITY


def _exploitability_summary(rows: list[Row]) -> dict:
    return {
        "total": len(rows),
        "high_exploitability": count_where(rows, is_high_exploitability),
        "kev_listed": count_where(rows, lambda r: is_truthy(r.get("kev_listed"))),
        "by_risk": severity_buckets(rows, "risk"),
    }


def _ip_summary(rows: list[Row]) -> dict:
    return {
        "ips": len(rows),
        "vulnerabilities": column_total(rows, "total_vulnerabilities"),
        "kev_total": column_total(rows, "kev_count"),
        "top_by_exploitability": [r.get("ip_address") for r in top_n(rows, "exploitability_score", 5)],
    }


def _top_summary(key: str, n: int, label: str) -> Summary:
    def summarize(rows: list[Row]) -> dict:
        return {"total": len(rows), "top": [r.get(label) for r in top_n(rows, key, n)]}

    return summarize


def _versions_summary(rows: list[Row]) -> dict:
    per_type: dict[str, int] = {}
    for row in rows:
        name = row.get("software_type") or "Unknown"
        per_type[name] = per_type.get(name, 0) + int(row.get("instance_count") or 0)
    ranked = sorted(per_type.items(), key=lambda kv: (-kv[1], kv[0]))[:8]
    return {
        "versions": len(rows),
        "instances": column_total(rows, "instance_count"),
        "top_software": [{"software_type": k, "instance_count": v} for k, v in ranked],
    }


def _mttm_summary(rows: list[Row]) -> dict:
    weighted = 0.0
    count = 0
    for row in rows:
        n = int(row.get("vulnerability_count") or 0)
        if row.get("average_mttm_days") is not None and n:
            weighted += float(row["average_mttm_days"]) * n
            count += n
    return {"vulnerabilities": count, "overall_mttm_days": round(weighted / count, 1) if count else None}


def _patch_availability_summary(rows: list[Row]) -> dict:
    return {
        "patches_to_apply": column_total(rows, "total_patches_to_be_applied"),
        "with_patch": column_total(rows, "vulnerabilities_with_patch_available"),
        "without_patch": column_total(rows, "vulnerabilities_with_patch_not_available"),
    }


def _patch_details_summary(rows: list[Row]) -> dict:
    statuses: dict[str, int] = {}
    for row in rows:
        status = row.get("patch_status") or "Unknown"
        statuses[status] = statuses.get(status, 0) + 1
    return {"total": len(rows), "by_status": statuses}


def _prioritization_summary(rows: list[Row]) -> dict:
    return {
        "metrics": len(rows),
        "totals": {s: column_total(rows, f"{s.lower()}_count") for s in ("Critical", "High", "Medium", "Low")},
    }


def _unique_vulns_summary(rows: list[Row]) -> dict:
    counts = severity_buckets(rows, "severity")
    return {
        "total": len(rows),
        "by_severity": counts,
        "kev_listed": count_where(rows, lambda r: is_truthy(r.get("kev_listed"))),
        "instances": column_total(rows, "instance_count"),
    }


def _ageing_summary(rows: list[Row]) -> dict:
    buckets = age_buckets(rows)
    return {"total": len(rows), "by_age": buckets, "percentages": percentages(buckets)}


def _assets_summary(rows: list[Row]) -> dict:
    return {"total": column_total(rows, "asset_count"), "types": len(rows)}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_SPECS = [
    ReportSpec(
        slug="risk-summary",
        title="Risk Summary",
        table="risk_summary",
        order_by=(("count", True),),
        summarize=_risk_summary,
        sheet_name="Risk Summary",
    ),
    ReportSpec(
        slug="cve-summary",
        title="CVE Summary",
        table="cve_summary",
        order_by=(("count", True),),
        page_size=WIDE_PAGE_SIZE,
        summarize=_severity_summary("severity"),
        sheet_name="CVE Summary",
    ),
    ReportSpec(
        slug="hosts-summary",
        title="Host Summary",
        table="host_summary",
        order_by=(("vulnerability_count", True), ("vulnerabilities_with_cve", True)),
        summarize=_hosts_summary,
        sheet_name="Host Summary",
    ),
    ReportSpec(
        slug="eol-components",
        title="EOL Components",
        table="eol_components",
        order_by=(("eol_duration_days", True),),
        summarize=_severity_summary("risk"),
        sheet_name="EOL Components",
    ),
    ReportSpec(
        slug="eol-ips",
        title="EOL by IP",
        table="eol_ip",
        order_by=(("seol_component_count", True),),
        summarize=_severity_summary("risk_level"),
        sheet_name="EOL IP",
    ),
    ReportSpec(
        slug="eol-versions",
        title="EOL Versions",
        table="eol_versions",
        order_by=(("instance_count", True),),
        summarize=_versions_summary,
        sheet_name="EOL Versions",
    ),
    ReportSpec(
        slug="exploitability",
        title="Exploitability Scoring",
        table="exploitability_scoring",
        order_by=(("exploitability_score", True),),
        summarize=_exploitability_summary,
        sheet_name="Exploitability Scoring",
    ),
    ReportSpec(
        slug="ip-insights",
        title="IP Insights",
        table="ip_insights",
        order_by=(("total_vulnerabilities", True),),
        summarize=_ip_summary,
        sheet_name="IP Insights",
    ),
    ReportSpec(
        slug="clustering",
        title="Vulnerability Clustering",
        table="vulnerability_clustering",
        order_by=(("total_vulnerabilities", True),),
        summarize=_top_summary("total_vulnerabilities", 8, "product_service"),
        sheet_name="Vulnerability Clustering",
    ),
    ReportSpec(
        slug="remediation",
        title="Remediation Insights",
        table="remediation_insights",
        order_by=(("observations_impacted", True),),
        summarize=_top_summary("observations_impacted", 10, "remediation"),
        sheet_name="Remediation Insights",
    ),
    ReportSpec(
        slug="remediation-unique",
        title="Remediation to Unique Vulnerabilities",
        table="remediation_to_unique_vulnerabilities",
        order_by=(("remediation", False),),
        page_size=WIDE_PAGE_SIZE,
        summarize=_severity_summary("risk_rating"),
        sheet_name="Remediation Unique Vulns",
    ),
    ReportSpec(
        slug="mttm-severity",
        title="Mean Time to Mitigate",
        table="mttm_by_severity",
        order_by=(("average_mttm_days", True),),
        summarize=_mttm_summary,
        sheet_name="MTTM by Severity",
    ),
    ReportSpec(
        slug="patch-availability",
        title="Patch Availability",
        table="patch_availability",
        order_by=(("total_patches_to_be_applied", True),),
        summarize=_patch_availability_summary,
        sheet_name="Patch Availability",
    ),
    ReportSpec(
        slug="patch-details",
        title="Patch Details",
        table="patch_details",
        order_by=(("cve", False),),
        page_size=WIDE_PAGE_SIZE,
        summarize=_patch_details_summary,
        sheet_name="Patch Details",
    ),
    ReportSpec(
        slug="prioritization",
        title="Prioritization Insights",
        table="prioritization_insights",
        order_by=(("metric", False),),
        summarize=_prioritization_summary,
        sheet_name="Prioritization Insights",
    ),
    ReportSpec(
        slug="unique-vulnerabilities",
        title="Unique Vulnerabilities",
        table="unique_vulnerabilities",
        order_by=(("instance_count", True),),
        page_size=WIDE_PAGE_SIZE,
        summarize=_unique_vulns_summary,
        sheet_name="Unique Vulnerabilities",
    ),
    ReportSpec(
        slug="vulnerability-ageing",
        title="Vulnerability Ageing",
        table="ageing_of_vulnerability",
        order_by=(("days_after_discovery", True),),
        page_size=WIDE_PAGE_SIZE,
        summarize=_ageing_summary,
        sheet_name="Ageing of Vulnerability",
    ),
    ReportSpec(
        slug="assets",
        title="Unique Assets",
        table="unique_assets",
        order_by=(("asset_count", True),),
        summarize=_assets_summary,
        sheet_name="Unique Assets",
    ),
    ReportSpec(
        slug="most-exploitable",
        title="Most Exploitable Hosts",
        table="most_exploitable",
        order_by=(("cumulative_exploitability", True),),
        summarize=_top_summary("cumulative_exploitability", 10, "host"),
        sheet_name="Most Exploitable",
    ),
]

CATALOG: dict[str, ReportSpec] = {spec.slug: spec for spec in _SPECS}

# Reports computed from several tables rather than listed from one.
COMPUTED_VIEWS: dict[str, str] = {
    "eol-summary": "EOL Summary",
    "instance-insights": "Instance-Wide Insights",
    "risk-trajectory": "Risk Trajectory",
}
