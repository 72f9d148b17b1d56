"""
excel_pack.py — Pareto gap analysis workbook.

Companion to the text/CSV output of the Pareto gap report. Sheets:
    1. Summary          — totals, 80% cut and top-20% share
    2. Top 80% Revenue  — the items that together produce the target share
    3. Top by RPS       — most efficient items above the revenue floor
    4. All Items        — the full ranked list
    5. Data Dictionary  — column definitions

Data sheets get a styled header row, frozen panes, an auto-filter and a
colour scale on RPC.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

import pandas as pd
from openpyxl import Workbook
from openpyxl.formatting.rule import ColorScaleRule
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.utils.dataframe import dataframe_to_rows

from campaign_analytics.report_writer import aggregates_to_frame
from campaign_analytics.serp_metrics import ParetoSummary, SerpAggregate

logger = logging.getLogger(__name__)

PRIMARY = "1B3A5C"
LIGHT = "DCE6F1"

THIN = Side(style="thin")
THIN_BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)


def _fill(hex_colour: str) -> PatternFill:
    return PatternFill(fill_type="solid", fgColor=hex_colour.lstrip("#"))


def _font(bold: bool = False, colour: str = "000000", size: int = 10,
          italic: bool = False) -> Font:
    return Font(name="Calibri", bold=bold, color=colour.lstrip("#"),
                size=size, italic=italic)


def _center() -> Alignment:
    return Alignment(horizontal="center", vertical="center", wrap_text=False)


def _auto_fit(ws, min_w: int = 8, max_w: int = 60) -> None:
    for col in ws.columns:
        max_len = max(
            (len(str(cell.value)) if cell.value is not None else 0 for cell in col), default=0
        )
        ws.column_dimensions[get_column_letter(col[0].column)].width = \
            min(max(max_len + 3, min_w), max_w)


def _write_header_row(ws, row: int, headers: list[str]) -> None:
    for col_i, h in enumerate(headers, start=1):
        cell = ws.cell(row=row, column=col_i, value=h)
        cell.fill = _fill(PRIMARY)
        cell.font = _font(bold=True, colour="FFFFFF", size=10)
        cell.alignment = _center()
        cell.border = THIN_BORDER
    ws.row_dimensions[row].height = 20


def _sheet_summary(ws, summary: ParetoSummary, title: str, item_label: str) -> None:
    ws.sheet_properties.tabColor = PRIMARY

    ws.merge_cells("A1:C1")
    cell = ws["A1"]
    cell.value = title
    cell.fill = _fill(PRIMARY)
    cell.font = _font(bold=True, colour="FFFFFF", size=14)
    cell.alignment = _center()
    ws.row_dimensions[1].height = 30

    ws.merge_cells("A2:C2")
    ws["A2"].value = f"Generated: {datetime.today().strftime('%Y-%m-%d %H:%M')}"
    ws["A2"].font = _font(italic=True, colour="555555", size=9)
    ws["A2"].alignment = _center()

    total = summary.total_revenue
    rows = [
        ("Metric", "Value", "Share"),
        (f"Total {item_label}", summary.total_items, ""),
        ("Total revenue", round(total, 2), ""),
        (f"{summary.share:.0%} target revenue", round(summary.target_revenue, 2), ""),
        (f"{item_label} producing {summary.share:.0%}", len(summary.head),
         round(len(summary.head) / summary.total_items, 4) if summary.total_items else 0),
        ("Revenue of that head", round(summary.head_revenue, 2),
         round(summary.head_revenue / total, 4) if total else 0),
        (f"Top {summary.top_share_count} {item_label}", summary.top_share_count, ""),
        ("Revenue of top share", round(summary.top_share_revenue, 2),
         round(summary.top_share_revenue / total, 4) if total else 0),
    ]
    for row_i, values in enumerate(rows, start=4):
        for col_i, val in enumerate(values, start=1):
            c = ws.cell(row=row_i, column=col_i, value=val)
            c.border = THIN_BORDER
            if row_i == 4:
                c.fill = _fill(LIGHT)
                c.font = _font(bold=True, colour="333333", size=9)
                c.alignment = _center()
            else:
                c.font = _font(size=9)
                if col_i == 3 and isinstance(val, float):
                    c.number_format = "0.0%"
    for col, width in zip("ABC", (40, 20, 12)):
        ws.column_dimensions[col].width = width


def _sheet_table(ws, frame: pd.DataFrame) -> None:
    if frame.empty:
        ws["A1"].value = "No rows"
        return

    _write_header_row(ws, 1, list(frame.columns))
    ws.freeze_panes = "A2"
    ws.auto_filter.ref = f"A1:{get_column_letter(len(frame.columns))}1"

    for row_i, row in enumerate(dataframe_to_rows(frame, index=False, header=False), start=2):
        for col_i, val in enumerate(row, start=1):
            c = ws.cell(row=row_i, column=col_i, value=val)
            c.font = _font(size=9)
            c.border = THIN_BORDER
            name = frame.columns[col_i - 1]
            if name == "revenue":
                c.number_format = "$#,##0.00"
            elif name in ("rpc", "rps"):
                c.number_format = "$0.0000"
            c.fill = _fill("F9F9F9" if row_i % 2 == 0 else "FFFFFF")

    if "rpc" in frame.columns:
        col = get_column_letter(frame.columns.get_loc("rpc") + 1)
        ws.conditional_formatting.add(
            f"{col}2:{col}{len(frame) + 1}",
            ColorScaleRule(start_type="min", start_color="FFC7CE",
                           end_type="max", end_color="C6EFCE"),
        )
    _auto_fit(ws)


def _sheet_data_dict(ws, key_name: str) -> None:
    ws.sheet_properties.tabColor = "888888"
    definitions = [
        ("Column", "Description"),
        ("rank", "Position by revenue (or by RPS on the Top by RPS sheet)"),
        (key_name, f"Trimmed {key_name} from the System1 export"),
        ("revenue", "Sum of estimated net revenue"),
        ("pct_of_total", "Revenue as % of total gap revenue"),
        ("clicks", "Sum of sellside network clicks"),
        ("searches", "Sellside searches (row count when the export has no searches column)"),
        ("rpc", "Revenue per click; 0 when there are no clicks"),
        ("rps", "Revenue per search; 0 when there are no searches"),
    ]
    for row_i, values in enumerate(definitions, start=1):
        for col_i, val in enumerate(values, start=1):
            c = ws.cell(row=row_i, column=col_i, value=val)
            c.border = THIN_BORDER
            if row_i == 1:
                c.fill = _fill(PRIMARY)
                c.font = _font(bold=True, colour="FFFFFF", size=9)
            else:
                c.font = _font(size=9)
    ws.column_dimensions["A"].width = 16
    ws.column_dimensions["B"].width = 70


def write_gap_workbook(
    path: str | Path,
    summary: ParetoSummary,
    items: Sequence[SerpAggregate],
    top_rps: Sequence[SerpAggregate],
    key_name: str = "keyword",
    title: str = "Pareto Gap Analysis",
) -> Path:
    """Build the gap analysis workbook and write it to disk.

    Args:
        path: Output .xlsx path.
        summary: Pareto cut over ``items``.
        items: All gap items, revenue descending.
        top_rps: RPS leaders.
        key_name: 'keyword' or 'slug'.
        title: Title on the summary sheet.

    Returns:
        Path to the written workbook.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    total = summary.total_revenue
    wb = Workbook()
    wb.remove(wb.active)

    sheets = [
        ("Summary", lambda ws: _sheet_summary(ws, summary, title, f"{key_name}s")),
        ("Top 80% Revenue", lambda ws: _sheet_table(ws, aggregates_to_frame(summary.head, key_name, total))),
        ("Top by RPS", lambda ws: _sheet_table(ws, aggregates_to_frame(top_rps, key_name, total))),
        ("All Items", lambda ws: _sheet_table(ws, aggregates_to_frame(items, key_name, total))),
        ("Data Dictionary", lambda ws: _sheet_data_dict(ws, key_name)),
    ]
    for sheet_name, builder in sheets:
        ws = wb.create_sheet(sheet_name)
        builder(ws)
        logger.debug("Built sheet: %s", sheet_name)

    wb.save(output_path)
    logger.info("Gap workbook saved to %s", output_path)
    return output_path
