"""
formatter.py -- Renders report payloads to terminal tables, JSON, or CSV.
"""

import csv
import io
import json
import os
import sys
from typing import Any, Optional

W = 100  # terminal table width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org).
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


SEVERITY_COLORS = {
    "Critical": "\033[91m",  # red
    "High": "\033[93m",  # yellow
    "Medium": "\033[94m",  # blue
    "Low": "\033[92m",  # green
}


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _severity_color(label: str) -> str:
    return SEVERITY_COLORS.get(label, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_HIDDEN_COLUMNS = ("id", "instance_id", "run_id", "created_at")


def report_columns(rows: list[dict]) -> list[str]:
    """Union of row keys in first-seen order, minus the bookkeeping columns."""
    seen: list[str] = []
    for row in rows:
        for key in row:
            if key not in seen and key not in _HIDDEN_COLUMNS:
                seen.append(key)
    return seen


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


# Characters that make spreadsheet applications evaluate a cell as a formula
# (CWE-1236). Tab prefixing forces the cell to be read as text.
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_csv_cell(value: Any) -> Any:
    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "\t" + value
    return value


# ---------------------------------------------------------------------------
# Terminal renderer
# ---------------------------------------------------------------------------


def print_report(title: str, payload: dict, columns: Optional[list[str]] = None) -> None:
    """Print a report payload ({rows, summary, page, total_pages}) as a table."""
    bold = _bold()
    reset = _reset()
    rows = payload.get("rows") or []
    cols = columns or report_columns(rows)

    print(f"\n  {bold}{title}{reset}")
    print("  " + "─" * (W - 2))
    if not rows:
        print("  No data for this run.\n")
        return

    width = max(8, (W - 2) // max(1, len(cols)) - 1)
    print("  " + " ".join(c[:width].ljust(width) for c in cols))
    for row in rows:
        cells = []
        for c in cols:
            text = _cell(row.get(c))[:width].ljust(width)
            color = _severity_color(_cell(row.get(c))) if c in ("severity", "risk", "risk_severity") else ""
            cells.append(f"{color}{text}{_reset() if color else ''}")
        print("  " + " ".join(cells))

    summary = payload.get("summary") or {}
    if summary:
        print(f"\n  {bold}Summary{reset}")
        for key, value in summary.items():
            print(f"    {key}: {json.dumps(value) if isinstance(value, (dict, list)) else value}")
    if payload.get("total_pages"):
        print(f"\n  Page {payload.get('page', 1)} of {payload['total_pages']} ({payload.get('total', len(rows))} rows)\n")


# ---------------------------------------------------------------------------
# Machine-readable exports
# ---------------------------------------------------------------------------


def to_json(payload: dict) -> str:
    return json.dumps(payload, indent=2, default=str)


def to_csv(rows: list[dict], columns: Optional[list[str]] = None) -> str:
    """Render report rows as CSV.

    Columns default to the union of row keys without the bookkeeping columns.
    Every string cell passes through _sanitize_csv_cell.
    """
    cols = columns or report_columns(rows)
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(cols)
    for row in rows:
        writer.writerow([_cell(_sanitize_csv_cell(row.get(c))) for c in cols])
    return buf.getvalue()
