"""
report_writer.py — Text tables and report file exports.

Every report prints fixed-width text tables to stdout and can write its
tables as CSV or JSON under ``runs/system1/<run date>/`` with a
timestamped filename.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence

import pandas as pd

from campaign_analytics.serp_metrics import SerpAggregate

logger = logging.getLogger(__name__)


@dataclass
class Column:
    """One column of a text table."""
    header: str
    width: int
    render: Callable[[Any], str]
    align: str = "right"     # 'left' or 'right'


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def money(value: float, decimals: int = 2) -> str:
    """'$1234.50' style currency (no thousands separator, matches CSV output)."""
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):.{decimals}f}"


def pct(value: float, decimals: int = 2) -> str:
    """Fraction → percentage string: 0.1234 → '12.34%'."""
    return f"{value * 100:.{decimals}f}%"


def truncate(text: Any, width: int) -> str:
    """Cut text to ``width`` characters, ending with '...' when cut."""
    s = str(text if text is not None else "")
    if len(s) <= width:
        return s
    if width <= 3:
        return s[:width]
    return s[: width - 3] + "..."


def safe_filename(text: str, max_len: int = 50) -> str:
    """Replace anything but letters and digits with '_'."""
    return re.sub(r"[^a-zA-Z0-9]", "_", text)[:max_len]


def format_table(columns: Sequence[Column], rows: Iterable[Any]) -> str:
    """Render rows as a fixed-width text table.

    Args:
        columns: Column definitions; ``render`` receives each row.
        rows: Row objects.

    Returns:
        Multi-line string: header, rule, one line per row.
    """
    widths = [max(c.width, len(c.header)) for c in columns]
    header = " | ".join(c.header.ljust(w) for c, w in zip(columns, widths))
    rule = "-|-".join("-" * w for w in widths)
    lines = [header, rule]
    for row in rows:
        cells = []
        for c, width in zip(columns, widths):
            text = truncate(c.render(row), width)
            cells.append(text.ljust(width) if c.align == "left" else text.rjust(width))
        lines.append(" | ".join(cells))
    return "\n".join(lines)


def aggregate_columns(key_header: str, key_width: int = 50, with_rank: bool = True,
                      extra: Sequence[Column] = ()) -> list[Column]:
    """Standard column set for SerpAggregate tables."""
    cols = []
    if with_rank:
        cols.append(Column("Rank", 4, lambda r: str(r[0])))
    cols.extend([
        Column(key_header, key_width, lambda r: r[1].key, align="left"),
        Column("Revenue", 10, lambda r: money(r[1].revenue)),
        Column("Clicks", 8, lambda r: f"{r[1].clicks:.0f}"),
        Column("Searches", 8, lambda r: f"{r[1].searches:.0f}"),
        Column("RPC", 8, lambda r: money(r[1].rpc, 4)),
        Column("RPS", 8, lambda r: money(r[1].rps, 4)),
    ])
    cols.extend(extra)
    return cols


def ranked(items: Iterable[Any]) -> list[tuple[int, Any]]:
    """Pair items with a 1-based rank."""
    return list(enumerate(items, start=1))


# ---------------------------------------------------------------------------
# File exports
# ---------------------------------------------------------------------------

def run_dir(base: str | Path, run_date: Optional[date] = None) -> Path:
    """Return (and create) the output directory for one run date."""
    d = Path(base) / (run_date or date.today()).isoformat()
    d.mkdir(parents=True, exist_ok=True)
    return d


def timestamp(now: Optional[datetime] = None) -> str:
    """Filename-safe timestamp: 2025-11-07T14-03-59."""
    return (now or datetime.now()).strftime("%Y-%m-%dT%H-%M-%S")


def aggregates_to_frame(
    items: Sequence[SerpAggregate],
    key_name: str,
    total_revenue: Optional[float] = None,
) -> pd.DataFrame:
    """Flatten aggregates into a DataFrame ready for export.

    Args:
        items: Aggregates in the desired order.
        key_name: Column name for the grouping key (e.g. 'state', 'slug').
        total_revenue: When given, adds a ``pct_of_total`` column.
    """
    records = []
    for rank, item in enumerate(items, start=1):
        rec: dict[str, Any] = {"rank": rank, key_name: item.key}
        rec["revenue"] = round(item.revenue, 2)
        if total_revenue is not None:
            rec["pct_of_total"] = round(item.revenue / total_revenue * 100, 2) if total_revenue else 0.0
        rec["clicks"] = round(item.clicks)
        rec["searches"] = round(item.searches)
        for k, v in item.extra.items():
            rec[k] = v
        rec["rpc"] = round(item.rpc, 4)
        rec["rps"] = round(item.rps, 4)
        records.append(rec)
    columns = ["rank", key_name, "revenue"]
    if total_revenue is not None:
        columns.append("pct_of_total")
    columns += ["clicks", "searches"]
    columns += [k for k in (items[0].extra.keys() if items else [])]
    columns += ["rpc", "rps"]
    return pd.DataFrame.from_records(records, columns=columns)


def write_csv(path: str | Path, frame: pd.DataFrame) -> Path:
    """Write a DataFrame as CSV (fields quoted only when needed)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(p, index=False)
    logger.info("Wrote %d rows to %s", len(frame), p)
    return p


def write_json(path: str | Path, payload: Any) -> Path:
    """Write a JSON document (dataclasses should be converted first)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str)
    logger.info("Wrote JSON report to %s", p)
    return p
