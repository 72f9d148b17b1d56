"""
test_csv_source.py — Unit tests for CSV discovery and parsing.

Tests cover:
    - Quoted fields with embedded commas and escaped quotes
    - Report file reading (blank lines, short rows, BOM)
    - Loose numeric coercion
    - Latest-export discovery and slug variants
    - Every package module imports cleanly
"""

import importlib
import pkgutil
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

import campaign_analytics
from campaign_analytics.csv_source import (
    latest_csv,
    parse_csv_line,
    read_csv_records,
    slug_variants,
    to_number,
)


# ---------------------------------------------------------------------------
# parse_csv_line
# ---------------------------------------------------------------------------

class TestParseCsvLine:

    def test_quoted_field_with_comma_and_escaped_quote(self):
        assert parse_csv_line('a,"b,""c""",d') == ["a", 'b,"c"', "d"]

    def test_plain_fields(self):
        assert parse_csv_line("x,y,z") == ["x", "y", "z"]

    def test_empty_line_is_one_empty_field(self):
        assert parse_csv_line("") == [""]

    def test_trailing_comma_gives_empty_last_field(self):
        assert parse_csv_line("a,b,") == ["a", "b", ""]

    def test_quoted_money_value(self):
        assert parse_csv_line('slug,"$1,234.50"') == ["slug", "$1,234.50"]


# ---------------------------------------------------------------------------
# read_csv_records
# ---------------------------------------------------------------------------

class TestReadCsvRecords:

    def test_reads_rows_keyed_by_header(self, tmp_path):
        p = tmp_path / "report.csv"
        p.write_text("state,revenue,clicks\nCA,10.5,3\n\nNY,2,1\n", encoding="utf-8")
        rows = read_csv_records(p)
        assert rows == [
            {"state": "CA", "revenue": "10.5", "clicks": "3"},
            {"state": "NY", "revenue": "2", "clicks": "1"},
        ]

    def test_short_rows_are_padded(self, tmp_path):
        p = tmp_path / "report.csv"
        p.write_text("a,b,c\n1\n", encoding="utf-8")
        assert read_csv_records(p) == [{"a": "1", "b": "", "c": ""}]

    def test_bom_is_stripped_from_first_header(self, tmp_path):
        p = tmp_path / "report.csv"
        p.write_bytes("\ufeffkeyword\nwalk in tubs\n".encode("utf-8"))
        assert read_csv_records(p) == [{"keyword": "walk in tubs"}]

    def test_empty_file_returns_no_rows(self, tmp_path):
        p = tmp_path / "empty.csv"
        p.write_text("", encoding="utf-8")
        assert read_csv_records(p) == []

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_csv_records(tmp_path / "nope.csv")


# ---------------------------------------------------------------------------
# to_number
# ---------------------------------------------------------------------------

class TestToNumber:

    @pytest.mark.parametrize("raw,expected", [
        ("$1,234.50", 1234.5),
        (" 12 ", 12.0),
        ("", 0.0),
        ("n/a", 0.0),
        (None, 0.0),
        (7, 7.0),
        (float("nan"), 0.0),
        ("-3.5", -3.5),
    ])
    def test_coercion(self, raw, expected):
        assert to_number(raw) == pytest.approx(expected)


# ---------------------------------------------------------------------------
# latest_csv / slug_variants
# ---------------------------------------------------------------------------

class TestLatestCsv:

    def test_picks_greatest_filename(self, tmp_path):
        for name in ("s1_2025-11-06.csv", "s1_2025-11-08.csv", "s1_2025-11-07.csv", "notes.txt"):
            (tmp_path / name).write_text("x\n")
        assert latest_csv(tmp_path).name == "s1_2025-11-08.csv"

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            latest_csv(tmp_path / "missing")

    def test_directory_without_csv_raises(self, tmp_path):
        (tmp_path / "readme.txt").write_text("x")
        with pytest.raises(FileNotFoundError):
            latest_csv(tmp_path)


class TestSlugVariants:

    def test_without_trailing_slash(self):
        assert slug_variants("health/tubs") == ["health/tubs", "health/tubs/"]

    def test_with_trailing_slash(self):
        assert slug_variants("health/tubs/") == ["health/tubs/", "health/tubs"]

    def test_surrounding_whitespace_trimmed(self):
        assert slug_variants("  a/b ") == ["a/b", "a/b/"]


# ---------------------------------------------------------------------------
# Package imports
# ---------------------------------------------------------------------------

PACKAGE_MODULES = sorted(m.name for m in pkgutil.iter_modules(campaign_analytics.__path__))


class TestPackageImports:

    @pytest.mark.parametrize("name", PACKAGE_MODULES)
    def test_module_imports(self, name):
        module = importlib.import_module(f"campaign_analytics.{name}")
        assert module.__doc__

    def test_parser_docstring_intact(self):
        assert parse_csv_line.__doc__.strip().startswith("Split one CSV line into fields.")
        assert "literal quote" in parse_csv_line.__doc__
