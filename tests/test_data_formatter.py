"""
test_data_formatter.py — Tests for the chart/table/text component builders.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from campaign_analytics.data_formatter import (
    extract_rows,
    format_bar_chart_data,
    format_line_chart_data,
    format_table_data,
    generate_component,
)

ROWS = [
    {"campaign_name": "Tubs", "owner": "ana", "spend_usd": 100.0, "revenue_usd": 250.0,
     "net_margin_usd": 150.0, "roas": 2.5, "ctr_rate": 0.031, "clicks": 40},
    {"campaign_name": "Loans", "owner": "ben", "spend_usd": 200.0, "revenue_usd": 300.0,
     "net_margin_usd": 100.0, "roas": 1.5, "ctr_rate": 0.02, "clicks": 25},
]


# ---------------------------------------------------------------------------
# Bar / line
# ---------------------------------------------------------------------------

class TestBarChart:

    def test_empty(self):
        assert format_bar_chart_data([], "campaign_name", "revenue_usd") == {"data": []}
        assert format_bar_chart_data(None, "campaign_name", "revenue_usd") == {"data": []}

    def test_points_with_labels(self):
        out = format_bar_chart_data(ROWS, "campaign_name", "revenue_usd")
        assert out["data"][0] == {"x": "Tubs", "y": 250.0, "label": "Tubs"}

    def test_missing_values(self):
        out = format_bar_chart_data([{"revenue_usd": "n/a"}], "campaign_name", "revenue_usd")
        assert out["data"] == [{"x": "", "y": 0.0}]

    def test_grouped_sums(self):
        rows = [
            {"lane": "search", "revenue_usd": 10},
            {"lane": "social", "revenue_usd": 5},
            {"lane": "search", "revenue_usd": 2.5},
            {"revenue_usd": 1},
        ]
        out = format_bar_chart_data(rows, "lane", "revenue_usd", group_by="lane")
        assert out["data"] == [
            {"x": "search", "y": 12.5, "count": 2},
            {"x": "social", "y": 5.0, "count": 1},
            {"x": "Unknown", "y": 1.0, "count": 1},
        ]


class TestLineChart:

    def test_sorted_by_date_text(self):
        rows = [{"date": "2025-11-03", "revenue_usd": 3}, {"date": "2025-11-01", "revenue_usd": 1}]
        out = format_line_chart_data(rows, "date", "revenue_usd")
        assert [p["x"] for p in out["data"]] == ["2025-11-01", "2025-11-03"]

    def test_sorted_numerically(self):
        rows = [{"week": 10, "revenue_usd": 1}, {"week": 2, "revenue_usd": 2}]
        out = format_line_chart_data(rows, "week", "revenue_usd")
        assert [p["y"] for p in out["data"]] == [2.0, 1.0]

    def test_empty(self):
        assert format_line_chart_data([], "date", "revenue_usd") == {"data": []}


# ---------------------------------------------------------------------------
# Table
# ---------------------------------------------------------------------------

class TestTable:

    def test_empty(self):
        assert format_table_data([]) == {"columns": [], "rows": []}

    def test_column_types(self):
        out = format_table_data(ROWS)
        types = {c["key"]: c["type"] for c in out["columns"]}
        assert types["campaign_name"] == "string"
        assert types["spend_usd"] == "currency"
        assert types["net_margin_usd"] == "currency"
        assert types["roas"] == "percentage"
        assert types["ctr_rate"] == "percentage"
        assert types["clicks"] == "number"

    def test_labels(self):
        out = format_table_data(ROWS)
        labels = {c["key"]: c["label"] for c in out["columns"]}
        assert labels["net_margin_usd"] == "Net Margin Usd"

    def test_selected_columns_only(self):
        out = format_table_data(ROWS, columns=["owner", "missing"])
        assert [c["key"] for c in out["columns"]] == ["owner", "missing"]
        assert out["rows"][0] == {"owner": "ana", "missing": None}

    def test_union_of_keys_in_order(self):
        out = format_table_data([{"a": 1}, {"b": "x", "a": 2}])
        assert [c["key"] for c in out["columns"]] == ["a", "b"]
        assert out["rows"][0] == {"a": 1, "b": None}


# ---------------------------------------------------------------------------
# Payload extraction and component selection
# ---------------------------------------------------------------------------

class TestExtractRows:

    @pytest.mark.parametrize("payload,expected", [
        ({"rows": [{"a": 1}]}, [{"a": 1}]),
        ([{"a": 1}], [{"a": 1}]),
        ({"results": [{"rows": [{"a": 1}, {"a": 2}]}, {"a": 3}]}, [{"a": 1}, {"a": 2}, {"a": 3}]),
        ({"other": 1}, []),
        (None, []),
    ])
    def test_shapes(self, payload, expected):
        assert extract_rows(payload) == expected


class TestGenerateComponent:

    def test_bar_uses_owner_when_present(self):
        out = generate_component({"visualization": "bar"}, {"rows": ROWS})["component"]
        assert out["component"] == "BarChart"
        assert out["props"]["title"] == "Performance by owner"
        assert out["props"]["data"][0]["x"] == "ana"
        assert out["props"]["yLabel"] == "revenue usd"

    def test_bar_grouped(self):
        intent = {"visualization": "bar", "aggregation": {"groupBy": ["owner"]}}
        out = generate_component(intent, ROWS)["component"]
        assert out["props"]["data"][1] == {"x": "ben", "y": 300.0, "count": 1}

    def test_line(self):
        out = generate_component({"visualization": "line"}, ROWS)["component"]
        assert out["component"] == "LineChart"
        assert out["props"]["xLabel"] == "campaign name"
        assert [p["x"] for p in out["props"]["data"]] == ["Loans", "Tubs"]

    def test_table(self):
        out = generate_component({"visualization": "table"}, {"rows": ROWS})["component"]
        assert out["component"] == "Table"
        assert out["props"]["title"] == "Performance Data"
        assert len(out["props"]["rows"]) == 2

    def test_summary_text(self):
        out = generate_component({"type": "summary"}, {"rows": ROWS})["component"]
        text = out["props"]["textMarkdown"]
        assert out["component"] == "TextContent"
        assert "**Total Spend:** $300.00" in text
        assert "**ROAS:** 1.83x" in text
        assert "**Margin Rate:** 45.5%" in text

    def test_summary_without_data_falls_back(self):
        out = generate_component({"type": "summary"}, None)["component"]
        assert out["props"]["textMarkdown"] == "No data found for this query."

    def test_results_text_lists_top_performers(self):
        out = generate_component({"type": "query"}, ROWS)["component"]
        text = out["props"]["textMarkdown"]
        assert text.startswith("Found 2 results.")
        assert "1. Tubs: ROAS 2.50x, Revenue $250.00" in text

    def test_many_results_not_listed(self):
        rows = [{"campaign_name": str(i)} for i in range(6)]
        text = generate_component({}, rows)["component"]["props"]["textMarkdown"]
        assert text == "Found 6 results. "
