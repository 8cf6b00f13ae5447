"""
core/shaping.py -- Pure helpers that turn report rows into display data.

Nothing here touches the database. Every function takes plain lists of row
dicts and returns new values, so report views and the CLI share one
implementation of pagination, severity bucketing and ageing buckets.

Bucketing functions are total: each input row lands in exactly one bucket,
and the bucket counts always add up to len(rows).
"""

import math
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from core.models import SEVERITIES, UNKNOWN

Row = dict[str, Any]

# (label, inclusive upper bound in days). None marks the open-ended bucket.
AGE_BUCKETS: list[tuple[str, Optional[int]]] = [
    ("0-30 days", 30),
    ("31-90 days", 90),
    ("91-180 days", 180),
    ("181-365 days", 365),
    ("Over 1 year", None),
]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


@dataclass
class Page:
    items: list[Row]
    page: int
    page_size: int
    total: int
    total_pages: int


def page_count(total: int, page_size: int) -> int:
    """Number of pages needed to show total rows, ceil(total / page_size)."""
    if page_size < 1:
        raise ValueError("page_size must be positive")
    return math.ceil(total / page_size)


def paginate(rows: list[Row], page: int, page_size: int) -> Page:
    """Slice one page out of rows.

    page is clamped into [1, total_pages] so a stale page number from a
    previous run never produces an empty slice when data exists.
    """
    total = len(rows)
    total_pages = page_count(total, page_size)
    page = max(1, min(page, max(1, total_pages)))
    start = (page - 1) * page_size
    return Page(
        items=rows[start : start + page_size],
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
    )


def iter_pages(rows: list[Row], page_size: int) -> Iterator[Page]:
    for number in range(1, page_count(len(rows), page_size) + 1):
        yield paginate(rows, number, page_size)


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


def normalize_severity(value: Any) -> str:
    """Map a raw severity label to one of SEVERITIES or "Unknown".

    The analysis backend emits "Low/None" for the lowest band; that is
    folded into Low. Matching is case-insensitive.
    """
    if value is None:
        return UNKNOWN
    label = str(value).strip()
    if label.lower() in ("low/none", "none"):
        return "Low"
    for severity in SEVERITIES:
        if label.lower() == severity.lower():
            return severity
    return UNKNOWN


def severity_buckets(rows: list[Row], column: str, weight: Optional[str] = None) -> dict[str, int]:
    """Count rows per normalised severity.

    With weight set, each row contributes int(row[weight]) (missing or null
    counts as 1) instead of 1.
    """
    counts = {s: 0 for s in SEVERITIES}
    counts[UNKNOWN] = 0
    for row in rows:
        amount = 1
        if weight is not None:
            raw = row.get(weight)
            amount = int(raw) if raw is not None else 1
        counts[normalize_severity(row.get(column))] += amount
    return counts


# ---------------------------------------------------------------------------
# Ageing
# ---------------------------------------------------------------------------


def age_bucket(days: Any) -> str:
    if days is None:
        return UNKNOWN
    try:
        value = float(days)
    except (TypeError, ValueError):
        return UNKNOWN
    for label, upper in AGE_BUCKETS:
        if upper is None or value <= upper:
            return label
    return AGE_BUCKETS[-1][0]


def age_buckets(rows: list[Row], column: str = "days_after_discovery") -> dict[str, int]:
    counts = {label: 0 for label, _ in AGE_BUCKETS}
    counts[UNKNOWN] = 0
    for row in rows:
        counts[age_bucket(row.get(column))] += 1
    return counts


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def percentages(counts: dict[str, int]) -> dict[str, float]:
    """Share of each count in the total, rounded to one decimal."""
    total = sum(counts.values())
    if total == 0:
        return {k: 0.0 for k in counts}
    return {k: round(v * 100.0 / total, 1) for k, v in counts.items()}


def column_total(rows: list[Row], column: str) -> float:
    total = 0.0
    for row in rows:
        value = row.get(column)
        if value is not None:
            total += float(value)
    return int(total) if total.is_integer() else round(total, 2)


def count_where(rows: list[Row], predicate: Callable[[Row], bool]) -> int:
    return sum(1 for row in rows if predicate(row))


def top_n(rows: list[Row], key: str, n: int) -> list[Row]:
    """Return the n rows with the largest key value; nulls sort last."""
    ranked = sorted(rows, key=lambda r: (r.get(key) is None, -(r.get(key) or 0)))
    return ranked[:n]


def is_truthy(value: Any) -> bool:
    """Interpret the flag encodings found in report tables (bool, 0/1, "Yes")."""
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "y", "1")
    return bool(value)
