"""
query_engine.py — Embedded analytical SQL engine over one CSV export.

Each report opens its own in-memory DuckDB connection, loads the export as
an all-text table named ``t`` and runs parameterized aggregation queries
against it. Column names are only ever taken from the loaded table itself
and are quoted with ``quote_ident``; user-supplied values (keywords, slugs,
thresholds) always travel as ``?`` parameters.
"""

import logging
from pathlib import Path
from typing import Any, Sequence

import duckdb
import pandas as pd

logger = logging.getLogger(__name__)

TABLE_NAME = "t"


class QueryError(RuntimeError):
    """Raised when the analytical engine rejects a statement."""


def quote_ident(name: str) -> str:
    """Quote a SQL identifier, doubling embedded double quotes."""
    return '"' + str(name).replace('"', '""') + '"'


def numeric(column: str) -> str:
    """SQL expression coercing a text column like "$1,234.50" to DOUBLE.

    Blank or unparsable values become NULL and drop out of SUM().
    """
    col = quote_ident(column)
    return (
        f"TRY_CAST(REPLACE(REPLACE(COALESCE({col}, ''), ',', ''), '$', '') AS DOUBLE)"
    )


def trimmed(column: str) -> str:
    """SQL expression for TRIM(column)."""
    return f"TRIM({quote_ident(column)})"


def load_frame(csv_path: str | Path) -> pd.DataFrame:
    """Read a CSV with every column as text.

    Malformed lines are skipped rather than aborting the load.

    Raises:
        FileNotFoundError: If the CSV does not exist.
    """
    p = Path(csv_path)
    if not p.exists():
        raise FileNotFoundError(f"CSV not found: {p}")
    frame = pd.read_csv(
        p,
        dtype=str,
        keep_default_na=False,
        on_bad_lines="skip",
        encoding="utf-8-sig",
    )
    frame.columns = [str(c).strip() for c in frame.columns]
    logger.debug("Loaded %s: %d rows x %d columns", p.name, len(frame), len(frame.columns))
    return frame


class SerpTable:
    """In-memory analytical table over a single CSV file.

    Usage:
        with SerpTable(path) as table:
            df = table.query("SELECT COUNT(*) AS n FROM t")
    """

    def __init__(self, csv_path: str | Path):
        self.path = Path(csv_path)
        self._frame = load_frame(self.path)
        self._conn = duckdb.connect(database=":memory:")
        self._conn.register(TABLE_NAME, self._frame)
        logger.info("Loaded %s into analytical table (%d rows)", self.path.name, len(self._frame))

    def __enter__(self) -> "SerpTable":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @property
    def columns(self) -> list[str]:
        return list(self._frame.columns)

    @property
    def row_count(self) -> int:
        return len(self._frame)

    def register(self, name: str, frame: pd.DataFrame) -> None:
        """Expose an auxiliary DataFrame (e.g. a keyword list) to SQL."""
        self._conn.register(name, frame)

    def query(self, sql: str, params: Sequence[Any] = ()) -> pd.DataFrame:
        """Run a parameterized query and return the result as a DataFrame.

        Args:
            sql: Statement using ``?`` placeholders.
            params: Positional parameter values.

        Raises:
            QueryError: If DuckDB rejects the statement.
        """
        if self._conn is None:
            raise QueryError(f"Table for {self.path.name} is closed")
        try:
            return self._conn.execute(sql, list(params)).fetch_df()
        except duckdb.Error as exc:
            logger.debug("Failed statement:\n%s\nparams=%r", sql, list(params))
            raise QueryError(f"Query against {self.path.name} failed: {exc}") from exc
