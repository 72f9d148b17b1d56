"""
data_formatter.py — Shape analytics rows into generative-UI components.

The analytics backend returns plain row dicts; the chat route renders them
as one of four component payloads:

    BarChart     {"title", "data": [{"x", "y", "label"}], "xLabel", "yLabel"}
    LineChart    {"title", "data": [{"x", "y"}], "xLabel", "yLabel"}
    Table        {"title", "columns": [{"key", "label", "type"}], "rows"}
    TextContent  {"textMarkdown"}

Every payload is wrapped as ``{"component": {"component": <name>, "props": {...}}}``.
"""

import logging
import re
from typing import Any, Iterable, Optional

from campaign_analytics.csv_source import to_number

logger = logging.getLogger(__name__)

CURRENCY_HINTS = ("usd", "spend", "revenue", "margin")
PERCENTAGE_HINTS = ("rate", "roas")

DEFAULT_X_KEY = "campaign_name"
DEFAULT_Y_KEY = "revenue_usd"
AUTO_X_KEYS = ("owner", "lane", "category", "date")   # later keys win


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text(value: Any) -> str:
    return str(value) if value not in (None, "", 0, False) else ""


def _label(key: str) -> str:
    """'revenue_usd' → 'Revenue Usd'."""
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), key.replace("_", " "))


def _sort_key(x_key: str):
    def _key(row: dict):
        value = row.get(x_key)
        return (0, value, 0.0) if isinstance(value, str) else (1, "", to_number(value))
    return _key


def format_bar_chart_data(
    rows: Optional[list[dict]],
    x_key: str,
    y_key: str,
    group_by: Optional[str] = None,
) -> dict:
    """Bar chart points, or per-group sums when ``group_by`` is given."""
    if not rows:
        return {"data": []}

    if group_by:
        groups: dict[str, dict] = {}
        for row in rows:
            name = _text(row.get(group_by)) or "Unknown"
            point = groups.setdefault(name, {"x": name, "y": 0.0, "count": 0})
            point["y"] += to_number(row.get(y_key))
            point["count"] += 1
        return {"data": list(groups.values())}

    data = []
    for row in rows:
        x = _text(row.get(x_key))
        point = {"x": x, "y": to_number(row.get(y_key))}
        if x:
            point["label"] = x
        data.append(point)
    return {"data": data}


def format_line_chart_data(rows: Optional[list[dict]], x_key: str, y_key: str) -> dict:
    """Line chart points sorted by x (text order for strings, numeric otherwise)."""
    if not rows:
        return {"data": []}
    ordered = sorted(rows, key=_sort_key(x_key))
    return {"data": [{"x": _text(r.get(x_key)), "y": to_number(r.get(y_key))} for r in ordered]}


def format_table_data(rows: Optional[list[dict]], columns: Optional[Iterable[str]] = None) -> dict:
    """Table columns (with display type) and rows restricted to those columns.

    Column type is read off the first row: numeric values are ``currency``
    or ``percentage`` by key name, else ``number``; anything else is
    ``string``.
    """
    if not rows:
        return {"columns": [], "rows": []}

    if columns is None:
        selected: list[str] = []
        for row in rows:
            for key in row:
                if key not in selected:
                    selected.append(key)
    else:
        selected = list(columns)

    first = rows[0]
    table_columns = []
    for key in selected:
        col_type = "string"
        if _is_number(first.get(key)):
            col_type = "number"
            if any(h in key for h in CURRENCY_HINTS):
                col_type = "currency"
            elif any(h in key for h in PERCENTAGE_HINTS):
                col_type = "percentage"
        table_columns.append({"key": key, "label": _label(key), "type": col_type})

    table_rows = [{key: row.get(key) for key in selected} for row in rows]
    return {"columns": table_columns, "rows": table_rows}


def extract_rows(data: Any) -> list[dict]:
    """Pull row dicts out of the backend payload ({rows}, a list, or {results})."""
    if isinstance(data, dict) and isinstance(data.get("rows"), list):
        return data["rows"]
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        rows = []
        for result in data["results"]:
            inner = result.get("rows") if isinstance(result, dict) else None
            if isinstance(inner, list):
                rows.extend(inner)
            elif result:
                rows.append(result)
        return rows
    return []


def _summary_markdown(rows: list[dict]) -> str:
    spend = sum(to_number(r.get("spend_usd")) for r in rows)
    revenue = sum(to_number(r.get("revenue_usd")) for r in rows)
    margin = sum(to_number(r.get("net_margin_usd")) for r in rows)
    roas = revenue / spend if spend > 0 else 0.0
    margin_rate = margin / revenue if revenue > 0 else 0.0
    return (
        "## Summary\n\n"
        f"- **Total Spend:** ${spend:.2f}\n"
        f"- **Total Revenue:** ${revenue:.2f}\n"
        f"- **Net Margin:** ${margin:.2f}\n"
        f"- **ROAS:** {roas:.2f}x\n"
        f"- **Margin Rate:** {margin_rate * 100:.1f}%\n"
    )


def _results_markdown(rows: list[dict]) -> str:
    if not rows:
        return "No data found for this query."
    text = f"Found {len(rows)} results. "
    if len(rows) <= 5:
        text += "\n\nTop performers:\n"
        for idx, row in enumerate(rows, start=1):
            name = row.get("campaign_name") or row.get("adset_name") or "Unknown"
            text += (
                f"{idx}. {name}: ROAS {to_number(row.get('roas')):.2f}x, "
                f"Revenue ${to_number(row.get('revenue_usd')):.2f}\n"
            )
    return text


def _wrap(name: str, props: dict) -> dict:
    return {"component": {"component": name, "props": props}}


def generate_component(intent: dict, data: Any) -> dict:
    """Pick and build the component for a classified intent.

    Args:
        intent: Backend intent with ``visualization`` ('bar', 'line',
            'table' or anything else for text), ``type`` and optional
            ``aggregation.groupBy``.
        data: Backend data payload.
    """
    visualization = intent.get("visualization")
    rows = extract_rows(data)
    group_by = ((intent.get("aggregation") or {}).get("groupBy") or [None])[0]
    logger.debug("Building %s component from %d rows", visualization or "text", len(rows))

    if visualization == "bar":
        x_key, y_key = DEFAULT_X_KEY, DEFAULT_Y_KEY
        if group_by:
            x_key = group_by
        elif rows:
            for candidate in AUTO_X_KEYS:
                if rows[0].get(candidate):
                    x_key = candidate
        chart = format_bar_chart_data(rows, x_key, y_key, group_by)
        return _wrap("BarChart", {
            "title": f"Performance by {x_key.replace('_', ' ')}",
            "data": chart["data"],
            "xLabel": x_key.replace("_", " "),
            "yLabel": y_key.replace("_", " "),
        })

    if visualization == "line":
        x_key = "date" if rows and rows[0].get("date") else DEFAULT_X_KEY
        chart = format_line_chart_data(rows, x_key, DEFAULT_Y_KEY)
        return _wrap("LineChart", {
            "title": "Performance Trend",
            "data": chart["data"],
            "xLabel": x_key.replace("_", " "),
            "yLabel": DEFAULT_Y_KEY.replace("_", " "),
        })

    if visualization == "table":
        table = format_table_data(rows)
        return _wrap("Table", {
            "title": "Performance Data",
            "columns": table["columns"],
            "rows": table["rows"],
        })

    if intent.get("type") == "summary" and data:
        text = _summary_markdown(rows)
    else:
        text = _results_markdown(rows)
    return _wrap("TextContent", {"textMarkdown": text})
