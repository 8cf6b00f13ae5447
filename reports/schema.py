"""
reports/schema.py -- SQLAlchemy Core table definitions.

instances and runs are owned by this service. The report tables are written
by the analysis backend (and by ReportStore.insert_rows for bulk loads); this
service only reads them. Every report table carries instance_id and run_id,
and every read filters on both.
"""

from sqlalchemy import Boolean, Column, Float, Index, Integer, MetaData, String, Table, Text

metadata = MetaData()

instances = Table(
    "instances",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("status", String(30), nullable=False, server_default="active"),
    Column("created_by", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

runs = Table(
    "runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("instance_id", Integer, nullable=False, index=True),
    Column("run_number", Integer, nullable=False),
    Column("status", String(30), nullable=False, server_default="pending"),
    Column("scan_date", String(32)),
    Column("source_filename", String(255)),
    Column("created_at", String(32), nullable=False),
)


def _report_table(name: str, *columns: Column) -> Table:
    table = Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("instance_id", Integer, nullable=False),
        Column("run_id", Integer, nullable=False),
        *columns,
        Column("created_at", String(32)),
    )
    Index(f"ix_{name}_scope", table.c.instance_id, table.c.run_id)
    return table


REPORT_TABLES: dict[str, Table] = {
    t.name: t
    for t in (
        _report_table(
            "risk_summary",
            Column("severity", String(30)),
            Column("count", Integer),
            Column("vulnerabilities_with_cve", Integer),
        ),
        _report_table(
            "cve_summary",
            Column("cve", String(30)),
            Column("name", Text),
            Column("severity", String(30)),
            Column("count", Integer),
            Column("hosts", Text),
            Column("description", Text),
            Column("solutions", Text),
        ),
        _report_table(
            "host_summary",
            Column("host", String(255)),
            Column("critical", Integer),
            Column("high", Integer),
            Column("medium", Integer),
            Column("low", Integer),
            Column("vulnerability_count", Integer),
            Column("vulnerabilities_with_cve", Integer),
        ),
        _report_table(
            "eol_summary",
            Column("total_count", Integer),
            Column("critical_count", Integer),
            Column("high_count", Integer),
            Column("medium_count", Integer),
            Column("low_count", Integer),
            Column("critical_pct", Float),
            Column("high_pct", Float),
            Column("medium_pct", Float),
            Column("low_pct", Float),
            Column("hosts_with_eol_components", Integer),
            Column("software_types_affected", Integer),
            Column("total_unique_components", Integer),
            Column("unique_eol_versions", Integer),
        ),
        _report_table(
            "eol_components",
            Column("name", Text),
            Column("software", String(255)),
            Column("cve", String(30)),
            Column("plugin_id", String(30)),
            Column("risk", String(30)),
            Column("eol_duration_days", Integer),
        ),
        _report_table(
            "eol_ip",
            Column("ip_address", String(45)),
            Column("risk_level", String(30)),
            Column("seol_component_count", Integer),
        ),
        _report_table(
            "eol_versions",
            Column("software_type", String(255)),
            Column("version", String(100)),
            Column("instance_count", Integer),
            Column("unique_vulnerability_count", Integer),
        ),
        _report_table(
            "exploitability_scoring",
            Column("host", String(255)),
            Column("plugin_id", String(30)),
            Column("name", Text),
            Column("cve", String(30)),
            Column("risk", String(30)),
            Column("description", Text),
            Column("plugin_output", Text),
            Column("cvss_v3_base_score", Float),
            Column("cvss_category", String(30)),
            Column("epss_score", Float),
            Column("epss_category", String(30)),
            Column("vpr_score", Float),
            Column("vpr_category", String(30)),
            Column("kev_listed", Boolean),
            Column("exploitability_score", Float),
        ),
        _report_table(
            "ip_insights",
            Column("ip_address", String(45)),
            Column("hostname", String(255)),
            Column("critical", Integer),
            Column("high", Integer),
            Column("medium", Integer),
            Column("low", Integer),
            Column("total_vulnerabilities", Integer),
            Column("kev_count", Integer),
            Column("exploitability_score", Float),
            Column("most_common_category", String(100)),
            Column("last_scan_date", String(32)),
        ),
        _report_table(
            "vulnerability_clustering",
            Column("product_service", String(255)),
            Column("critical", Integer),
            Column("high", Integer),
            Column("medium", Integer),
            Column("low", Integer),
            Column("total_vulnerabilities", Integer),
            Column("affected_hosts", Integer),
            Column("cve_count", Integer),
            Column("kev_count", Integer),
            Column("common_vulnerabilities", Text),
        ),
        _report_table(
            "remediation_insights",
            Column("remediation", Text),
            Column("observations_impacted", Integer),
            Column("percentage", Float),
        ),
        _report_table(
            "remediation_to_unique_vulnerabilities",
            Column("remediation", Text),
            Column("unique_vulnerability", Text),
            Column("risk_rating", String(30)),
        ),
        _report_table(
            "mttm_by_severity",
            Column("risk_severity", String(30)),
            Column("average_mttm_days", Float),
            Column("vulnerability_count", Integer),
        ),
        _report_table(
            "patch_availability",
            Column("risk_severity", String(30)),
            Column("total_patches_to_be_applied", Integer),
            Column("vulnerabilities_with_patch_available", Integer),
            Column("vulnerabilities_with_patch_not_available", Integer),
        ),
        _report_table(
            "patch_details",
            Column("cve", String(30)),
            Column("patch_status", String(50)),
            Column("source", String(255)),
            Column("url", Text),
            Column("tags", Text),
        ),
        _report_table(
            "prioritization_insights",
            Column("metric", String(255)),
            Column("critical_count", Integer),
            Column("high_count", Integer),
            Column("medium_count", Integer),
            Column("low_count", Integer),
        ),
        _report_table(
            "unique_vulnerabilities",
            Column("vulnerability_name", Text),
            Column("cve", String(30)),
            Column("severity", String(30)),
            Column("cvss_score", Float),
            Column("epss_score", Float),
            Column("kev_listed", Boolean),
            Column("instance_count", Integer),
            Column("affected_hosts", Text),
            Column("remediation", Text),
        ),
        _report_table(
            "ageing_of_vulnerability",
            Column("host", String(255)),
            Column("plugin_id", String(30)),
            Column("name", Text),
            Column("cve", String(30)),
            Column("risk", String(30)),
            Column("cve_published_date", String(32)),
            Column("days_after_discovery", Integer),
        ),
        _report_table(
            "unique_assets",
            Column("assets_type", String(100)),
            Column("asset_count", Integer),
        ),
        _report_table(
            "most_exploitable",
            Column("host", String(255)),
            Column("total_vulnerabilities", Integer),
            Column("cumulative_exploitability", Float),
            Column("counts", Text),
        ),
    )
}
