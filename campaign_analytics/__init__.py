"""
campaign-analytics — Source package.

Modules:
    config            — config.yaml + .env loading with built-in defaults
    csv_source        — latest-export discovery, CSV line parsing, numeric coercion
    query_engine      — in-memory DuckDB table over one CSV, parameterized queries
    serp_metrics      — System1 aggregations: RPC/RPS by state, slug, keyword; Pareto; state picks
    report_writer     — fixed-width text tables, CSV/JSON exports under runs/
    state_chart       — Plotly HTML report of RPC and revenue by state
    excel_pack        — openpyxl workbook for the Pareto gap analysis
    content_signals   — heuristic AI-content and scaled-content-abuse detector
    data_formatter    — rows → BarChart / LineChart / Table / TextContent payloads
    analytics_chat    — analytics chat route (intent backend + LLM gateway streaming)
    image_generation  — Gemini image generation with Retry-After backoff
    distributor       — Slack webhook summaries and channel digests
    data_simulator    — synthetic System1 SERP export
"""
