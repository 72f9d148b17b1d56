"""
state_chart.py — Interactive Plotly HTML report for state-level RPC.

Produces a self-contained HTML page (plotly.js from CDN) for one keyword
or slug:

    Header KPI bar  — revenue, clicks, blended RPC/RPS, state count
    Chart 1         — RPC by state, coloured above/below the blended average
    Chart 2         — Revenue by state (bars) with RPC overlay (line)
"""

import html
import logging
from datetime import datetime
from pathlib import Path
from typing import Sequence

import plotly.graph_objects as go
from plotly.subplots import make_subplots

from campaign_analytics.serp_metrics import SerpAggregate, summarize

logger = logging.getLogger(__name__)

TEMPLATE = "plotly_white"

PALETTE = {
    "primary": "#1B3A5C",
    "above": "#2E8B57",
    "below": "#C0392B",
    "accent": "#E67E22",
}


def build_rpc_chart(states: Sequence[SerpAggregate], title: str) -> go.Figure:
    """Bar chart of RPC per state, sorted by RPC, with the average as a line."""
    totals = summarize(states)
    ordered = sorted(states, key=lambda s: s.rpc, reverse=True)
    colours = [PALETTE["above"] if s.rpc >= totals.avg_rpc else PALETTE["below"] for s in ordered]

    fig = go.Figure()
    fig.add_trace(go.Bar(
        x=[s.key for s in ordered],
        y=[round(s.rpc, 4) for s in ordered],
        marker_color=colours,
        name="RPC",
        customdata=[[round(s.revenue, 2), round(s.clicks)] for s in ordered],
        hovertemplate=(
            "State: %{x}<br>RPC: $%{y:.4f}<br>Revenue: $%{customdata[0]:,.2f}"
            "<br>Clicks: %{customdata[1]:,}<extra></extra>"
        ),
    ))
    fig.add_hline(
        y=totals.avg_rpc, line_dash="dash", line_color=PALETTE["accent"], line_width=1,
        annotation_text=f"Average RPC ${totals.avg_rpc:.4f}", annotation_position="top right",
    )
    fig.update_layout(
        title=dict(text=f"RPC by State — {title}", font=dict(size=14, color=PALETTE["primary"])),
        template=TEMPLATE,
        yaxis=dict(title="RPC ($)", tickprefix="$"),
        height=380,
        margin=dict(l=50, r=30, t=80, b=40),
        showlegend=False,
    )
    return fig


def build_revenue_chart(states: Sequence[SerpAggregate], title: str) -> go.Figure:
    """Revenue bars by state (revenue order) with RPC on a secondary axis."""
    ordered = sorted(states, key=lambda s: s.revenue, reverse=True)
    fig = make_subplots(specs=[[{"secondary_y": True}]])
    fig.add_trace(go.Bar(
        x=[s.key for s in ordered],
        y=[round(s.revenue, 2) for s in ordered],
        name="Revenue",
        marker_color=PALETTE["primary"],
        hovertemplate="State: %{x}<br>Revenue: $%{y:,.2f}<extra></extra>",
    ), secondary_y=False)
    fig.add_trace(go.Scatter(
        x=[s.key for s in ordered],
        y=[round(s.rpc, 4) for s in ordered],
        name="RPC",
        mode="lines+markers",
        line=dict(color=PALETTE["accent"], width=2),
        marker=dict(size=5),
        hovertemplate="State: %{x}<br>RPC: $%{y:.4f}<extra></extra>",
    ), secondary_y=True)
    fig.update_layout(
        title=dict(text=f"Revenue by State — {title}", font=dict(size=14, color=PALETTE["primary"])),
        template=TEMPLATE,
        legend=dict(orientation="h", yanchor="bottom", y=1.02, x=0),
        height=380,
        margin=dict(l=50, r=50, t=80, b=40),
    )
    fig.update_yaxes(title_text="Revenue ($)", tickprefix="$", secondary_y=False)
    fig.update_yaxes(title_text="RPC ($)", tickprefix="$", showgrid=False, secondary_y=True)
    return fig


def _kpi_header(states: Sequence[SerpAggregate], title: str) -> str:
    totals = summarize(states)
    tiles = [
        ("Revenue", f"${totals.revenue:,.2f}"),
        ("Clicks", f"{totals.clicks:,.0f}"),
        ("Searches", f"{totals.searches:,.0f}"),
        ("Avg RPC", f"${totals.avg_rpc:.4f}"),
        ("Avg RPS", f"${totals.avg_rps:.4f}"),
        ("States", str(totals.count)),
    ]
    tile_html = ""
    for label, value in tiles:
        tile_html += f"""
        <div style="background:rgba(255,255,255,.12);color:#fff;border-radius:8px;padding:10px 16px;
                    min-width:110px;text-align:center;">
            <div style="font-size:10px;font-weight:600;letter-spacing:.8px;opacity:.85;">{label.upper()}</div>
            <div style="font-size:20px;font-weight:700;margin-top:2px;">{value}</div>
        </div>"""
    return f"""
    <div style="font-family:'Segoe UI',Arial,sans-serif;background:{PALETTE['primary']};padding:20px 28px;">
        <h1 style="color:#fff;margin:0 0 3px;font-size:20px;">RPC by State</h1>
        <p style="color:rgba(255,255,255,.7);margin:0 0 14px;font-size:12px;">
            {html.escape(title)} &nbsp;|&nbsp; Generated: {datetime.today().strftime('%Y-%m-%d %H:%M')}
        </p>
        <div style="display:flex;gap:10px;flex-wrap:wrap;">{tile_html}</div>
    </div>"""


def write_state_chart(states: Sequence[SerpAggregate], path: str | Path, title: str) -> Path:
    """Write the state RPC report as a standalone HTML page.

    Args:
        states: State aggregates (any order).
        path: Output .html path.
        title: Keyword or slug the states were computed for.

    Returns:
        Path to the written file.
    """
    if not states:
        raise ValueError("No state data to chart")

    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    chart_args = {"include_plotlyjs": False, "full_html": False}
    rpc_div = build_rpc_chart(states, title).to_html(**chart_args)
    revenue_div = build_revenue_chart(states, title).to_html(**chart_args)

    page = f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width,initial-scale=1.0">
    <title>RPC by State — {html.escape(title)}</title>
    <script src="https://cdn.plot.ly/plotly-latest.min.js"></script>
    <style>
        *{{box-sizing:border-box;margin:0;padding:0;}}
        body{{font-family:'Segoe UI',Arial,sans-serif;background:#F4F7FA;}}
        .grid{{display:grid;grid-template-columns:1fr;gap:14px;padding:18px;}}
        .card{{background:#fff;border-radius:8px;padding:6px;
               box-shadow:0 2px 8px rgba(0,0,0,.07);}}
    </style>
</head>
<body>
    {_kpi_header(states, title)}
    <div class="grid">
        <div class="card">{rpc_div}</div>
        <div class="card">{revenue_div}</div>
    </div>
</body>
</html>"""

    output_path.write_text(page, encoding="utf-8")
    logger.info("State chart saved to %s", output_path)
    return output_path
