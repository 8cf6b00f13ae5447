"""Unit tests for core/trends.py -- cross-run insights for one instance."""

from core.trends import eol_insights, instance_insights, risk_trajectory, run_severity_totals

RUNS = [
    {"id": 10, "run_number": 1, "scan_date": "2026-01-01T00:00:00+00:00"},
    {"id": 11, "run_number": 2, "scan_date": "2026-01-11T00:00:00+00:00"},
]

CVE_ROWS = [
    {"run_id": 10, "cve": "CVE-2021-44228", "name": "Log4Shell", "severity": "Critical", "count": 4},
    {"run_id": 10, "cve": "CVE-2023-44487", "name": "Rapid Reset", "severity": "High", "count": 6},
    {"run_id": 11, "cve": "CVE-2021-44228", "name": "Log4Shell", "severity": "Critical", "count": 2},
    {"run_id": 11, "cve": "CVE-2020-0001", "name": "", "severity": "Informational", "count": None},
]


class TestRunSeverityTotals:
    def test_one_entry_per_run_in_order(self):
        series = run_severity_totals(RUNS, CVE_ROWS)
        assert [s["run_number"] for s in series] == [1, 2]

    def test_counts_are_weighted_and_unknown_is_kept(self):
        first, second = run_severity_totals(RUNS, CVE_ROWS)
        assert first["Critical"] == 4
        assert first["High"] == 6
        assert first["total"] == 10
        # null count weighs 1; unrecognised severity lands in Unknown
        assert second["Unknown"] == 1
        assert second["total"] == 3

    def test_run_without_rows_is_zero(self):
        series = run_severity_totals([{"id": 99, "run_number": 1}], CVE_ROWS)
        assert series[0]["total"] == 0
        assert series[0]["unique_cves"] == 0


class TestRiskTrajectory:
    def test_deltas_between_consecutive_runs(self):
        data = risk_trajectory(RUNS, CVE_ROWS)
        assert data["deltas"] == [{"run_number": 2, "total_change": -7, "critical_change": -2}]

    def test_single_run_has_no_deltas(self):
        assert risk_trajectory(RUNS[:1], CVE_ROWS)["deltas"] == []


class TestInstanceInsights:
    def test_trend_figures(self):
        data = instance_insights(RUNS, CVE_ROWS)
        assert data["run_count"] == 2
        assert data["growth_percentage"] == -70
        assert data["critical_trend"] == -2
        assert data["max_vulnerabilities"] == 10
        assert data["min_vulnerabilities"] == 3
        assert data["total_unique_cves"] == 3
        assert data["most_improved"] == {"run_number": 2, "drop": 7}
        assert data["scan_frequency_days"] == 10.0
        assert data["scan_with_most_critical"] == 1

    def test_top_cves_rank_by_total_count(self):
        data = instance_insights(RUNS, CVE_ROWS)
        assert data["top_cves"][0] == {"cve": "CVE-2021-44228", "name": "Log4Shell", "count": 6}
        assert data["longest_unfixed"][0] == {"cve": "CVE-2021-44228", "runs": 2}

    def test_no_runs(self):
        data = instance_insights([], [])
        assert data["run_count"] == 0
        assert data["avg_vulnerabilities_per_run"] == 0
        assert data["most_common_severity"] is None
        assert data["scan_frequency_days"] is None
        assert data["eol"]["total_components"] == 0


class TestEolInsights:
    def test_component_churn_against_previous_run(self):
        eol_rows = [
            {"run_id": 10, "name": "OpenSSL 1.0", "risk": "High", "eol_duration_days": 900},
            {"run_id": 10, "name": "PHP 5.6", "risk": "Critical", "eol_duration_days": 2000},
            {"run_id": 11, "name": "PHP 5.6", "risk": "Critical", "eol_duration_days": 2010},
            {"run_id": 11, "name": "Python 2.7", "risk": "Medium", "eol_duration_days": 300},
        ]
        ip_rows = [
            {"run_id": 11, "ip_address": "10.0.0.5", "seol_component_count": 3},
            {"run_id": 10, "ip_address": "10.0.0.9", "seol_component_count": 9},
        ]
        data = eol_insights(RUNS, eol_rows, ip_rows)
        assert data["total_components"] == 2
        assert data["new_components"] == ["Python 2.7"]
        assert data["resolved_components"] == ["OpenSSL 1.0"]
        assert data["ageing"][0]["name"] == "PHP 5.6"
        assert data["top_hosts"] == [{"ip_address": "10.0.0.5", "seol_component_count": 3}]
