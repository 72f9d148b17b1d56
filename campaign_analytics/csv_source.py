"""
csv_source.py — CSV discovery and light-weight parsing.

System1 drops its SERP exports into an incoming directory with a date in
the filename, so "the most recent export" is simply the greatest filename.
Small report files written by earlier runs (e.g. RPC-by-state tables) are
read here without the analytical engine.
"""

import logging
import math
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

Row = dict[str, str]


def parse_csv_line(line: str) -> list[str]:
    """Split one CSV line into fields.

    Commas inside double quotes do not split; a doubled quote inside a
    quoted field is a literal quote.
    """
    fields: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 2
                continue
            in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def read_csv_records(path: str | Path) -> list[Row]:
    """Read a small CSV file into a list of string-valued rows.

    Args:
        path: CSV file with a header row.

    Returns:
        One dict per non-blank data line. Short lines are padded with "".

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"CSV not found: {p}")

    with open(p, "r", encoding="utf-8-sig") as fh:
        lines = [ln.rstrip("\r\n") for ln in fh if ln.strip()]
    if not lines:
        return []

    headers = [h.strip() for h in parse_csv_line(lines[0])]
    records = []
    for line in lines[1:]:
        values = parse_csv_line(line)
        records.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)})
    logger.debug("Read %d records from %s", len(records), p)
    return records


def to_number(value: Any) -> float:
    """Coerce a loosely formatted value ("$1,234.50", " 12 ", "") to float.

    Blank and unparsable values become 0.0, as do NaN and infinities.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = str(value).strip().replace("$", "").replace(",", "")
        if not cleaned:
            return 0.0
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def latest_csv(directory: str | Path) -> Path:
    """Return the most recent CSV in a directory, by filename sort.

    Raises:
        FileNotFoundError: If the directory is missing or has no CSV files.
    """
    d = Path(directory)
    if not d.is_dir():
        raise FileNotFoundError(f"Source directory not found: {d}")
    candidates = sorted(p for p in d.iterdir() if p.is_file() and p.name.endswith(".csv"))
    if not candidates:
        raise FileNotFoundError(f"No CSV files found in {d}")
    chosen = candidates[-1]
    logger.info("Using source file: %s", chosen.name)
    return chosen


def slug_variants(slug: str) -> list[str]:
    """Return the slug with and without a trailing slash."""
    s = slug.strip()
    base = s.rstrip("/")
    variants = []
    for v in (s, base + "/", base):
        if v and v not in variants:
            variants.append(v)
    return variants
