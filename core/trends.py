"""
trends.py -- Cross-run insight computations for one instance.

Inputs are plain row dicts already filtered to a single instance: the runs
(ordered oldest first) and the report rows of every run, each carrying its
run_id. Outputs are JSON-ready dicts. Pure functions, no I/O.
"""

from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Optional

from .models import SEVERITIES, UNKNOWN
from .shaping import percentages, severity_buckets

Row = dict[str, Any]


def _parse_date(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _rows_by_run(rows: list[Row]) -> dict[int, list[Row]]:
    grouped: dict[int, list[Row]] = defaultdict(list)
    for row in rows:
        grouped[row["run_id"]].append(row)
    return grouped


def _run_date(run: Row) -> Any:
    return run.get("scan_date") or run.get("created_at")


# ---------------------------------------------------------------------------
# Per-run severity series
# ---------------------------------------------------------------------------


def run_severity_totals(runs: list[Row], cve_rows: list[Row]) -> list[Row]:
    """One entry per run with severity counts weighted by the CVE row count.

    A CVE row with no count contributes 1.
    """
    grouped = _rows_by_run(cve_rows)
    series = []
    for run in runs:
        rows = grouped.get(run["id"], [])
        counts = severity_buckets(rows, "severity", weight="count")
        series.append(
            {
                "run_id": run["id"],
                "run_number": run.get("run_number"),
                "scan_date": _run_date(run),
                **counts,
                "total": sum(counts.values()),
                "unique_cves": len({r.get("cve") for r in rows if r.get("cve")}),
            }
        )
    return series


def risk_trajectory(runs: list[Row], cve_rows: list[Row]) -> dict:
    series = run_severity_totals(runs, cve_rows)
    deltas = []
    for previous, current in zip(series, series[1:]):
        deltas.append(
            {
                "run_number": current["run_number"],
                "total_change": current["total"] - previous["total"],
                "critical_change": current["Critical"] - previous["Critical"],
            }
        )
    return {"runs": series, "deltas": deltas}


# ---------------------------------------------------------------------------
# Instance-wide insights
# ---------------------------------------------------------------------------


def _cve_totals(cve_rows: list[Row]) -> list[Row]:
    totals: Counter = Counter()
    names: dict[str, str] = {}
    for row in cve_rows:
        cve = row.get("cve")
        if not cve:
            continue
        count = row.get("count")
        totals[cve] += int(count) if count is not None else 1
        if row.get("name"):
            names.setdefault(cve, row["name"])
    ranked = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{"cve": cve, "name": names.get(cve, ""), "count": count} for cve, count in ranked]


def _longest_unfixed(cve_rows: list[Row], limit: int = 3) -> list[Row]:
    runs_per_cve: dict[str, set] = defaultdict(set)
    for row in cve_rows:
        if row.get("cve"):
            runs_per_cve[row["cve"]].add(row["run_id"])
    ranked = sorted(runs_per_cve.items(), key=lambda kv: (-len(kv[1]), kv[0]))
    return [{"cve": cve, "runs": len(run_ids)} for cve, run_ids in ranked[:limit]]


def _scan_frequency_days(runs: list[Row]) -> Optional[float]:
    dates = [d for d in (_parse_date(_run_date(r)) for r in runs) if d is not None]
    if len(dates) < 2:
        return None
    gaps = [(b - a).total_seconds() / 86400 for a, b in zip(dates, dates[1:])]
    return round(sum(gaps) / len(gaps), 1)


def _most_improved(series: list[Row]) -> Optional[Row]:
    best: Optional[Row] = None
    for previous, current in zip(series, series[1:]):
        drop = previous["total"] - current["total"]
        if drop > 0 and (best is None or drop > best["drop"]):
            best = {"run_number": current["run_number"], "drop": drop}
    return best


def _argmax_run(series: list[Row], key: str) -> Optional[int]:
    if not series:
        return None
    return max(series, key=lambda s: s[key])["run_number"]


def eol_insights(runs: list[Row], eol_rows: list[Row], eol_ip_rows: list[Row]) -> dict:
    """EOL cards for the latest run plus churn against the previous run."""
    grouped = _rows_by_run(eol_rows)
    per_run = [
        {"run_number": r.get("run_number"), **severity_buckets(grouped.get(r["id"], []), "risk")} for r in runs
    ]
    if not runs:
        return {
            "total_components": 0,
            "risk_distribution": {},
            "risk_percentages": {},
            "top_software": [],
            "risk_over_time": [],
            "ageing": [],
            "new_components": [],
            "resolved_components": [],
            "top_hosts": [],
        }

    latest = grouped.get(runs[-1]["id"], [])
    previous = grouped.get(runs[-2]["id"], []) if len(runs) > 1 else []
    latest_names = {r.get("name") for r in latest if r.get("name")}
    previous_names = {r.get("name") for r in previous if r.get("name")}

    software = Counter(r.get("software") or r.get("name") for r in latest if r.get("software") or r.get("name"))
    ageing = sorted(
        (r for r in latest if r.get("eol_duration_days") is not None),
        key=lambda r: -float(r["eol_duration_days"]),
    )[:5]
    latest_ips = [r for r in eol_ip_rows if r["run_id"] == runs[-1]["id"]]
    top_hosts = sorted(latest_ips, key=lambda r: -(r.get("seol_component_count") or 0))[:5]
    distribution = severity_buckets(latest, "risk")

    return {
        "total_components": len(latest),
        "risk_distribution": distribution,
        "risk_percentages": percentages(distribution),
        "top_software": [{"software": s, "count": c} for s, c in software.most_common(8)],
        "risk_over_time": per_run,
        "ageing": [{"name": r.get("name"), "eol_duration_days": r["eol_duration_days"]} for r in ageing],
        "new_components": sorted(latest_names - previous_names),
        "resolved_components": sorted(previous_names - latest_names),
        "top_hosts": [
            {"ip_address": r.get("ip_address"), "seol_component_count": r.get("seol_component_count")}
            for r in top_hosts
        ],
    }


def instance_insights(
    runs: list[Row],
    cve_rows: list[Row],
    eol_rows: Optional[list[Row]] = None,
    eol_ip_rows: Optional[list[Row]] = None,
) -> dict:
    """Trend summary across every run of one instance.

    runs must be ordered oldest first.
    """
    series = run_severity_totals(runs, cve_rows)
    totals = [s["total"] for s in series]

    growth = 0
    critical_trend = 0
    if len(series) > 1:
        first, latest = series[0]["total"], series[-1]["total"]
        if first > 0:
            growth = round((latest - first) * 100.0 / first)
        critical_trend = series[-1]["Critical"] - series[-2]["Critical"]

    severity_sums = {s: sum(entry[s] for entry in series) for s in (*SEVERITIES, UNKNOWN)}
    most_common = max(severity_sums, key=lambda k: severity_sums[k]) if any(severity_sums.values()) else None
    ranked_cves = _cve_totals(cve_rows)

    return {
        "run_count": len(runs),
        "runs": series,
        "growth_percentage": growth,
        "critical_trend": critical_trend,
        "avg_vulnerabilities_per_run": round(sum(totals) / len(totals)) if totals else 0,
        "max_vulnerabilities": max(totals) if totals else 0,
        "min_vulnerabilities": min(totals) if totals else 0,
        "total_unique_cves": len({r["cve"] for r in cve_rows if r.get("cve")}),
        "most_common_severity": most_common,
        "top_cves": ranked_cves[:10],
        "top_5_cves": ranked_cves[:5],
        "severity_proportions": [
            {"run_number": s["run_number"], **percentages({k: s[k] for k in SEVERITIES})} for s in series
        ],
        "most_improved": _most_improved(series),
        "longest_unfixed": _longest_unfixed(cve_rows),
        "scan_frequency_days": _scan_frequency_days(runs),
        "first_scan_date": _run_date(runs[0]) if runs else None,
        "last_scan_date": _run_date(runs[-1]) if runs else None,
        "scan_with_most_critical": _argmax_run(series, "Critical"),
        "scan_with_most_high": _argmax_run(series, "High"),
        "scan_with_most_unique_cves": _argmax_run(series, "unique_cves"),
        "eol": eol_insights(runs, eol_rows or [], eol_ip_rows or []),
    }
