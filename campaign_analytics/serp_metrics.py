"""
serp_metrics.py — System1 SERP aggregation engine.

Runs the recurring revenue aggregations over a System1 export (loaded
into a ``SerpTable``) and derives the two monetization ratios used by
every report:

    RPC  revenue per click   = revenue / sellside network clicks
    RPS  revenue per search  = revenue / sellside searches

A zero denominator yields a ratio of 0.

Aggregations:
    By state     — for one keyword, one content slug, or a slug cluster
    By slug      — all slugs, a cluster of slugs, or slugs above a revenue threshold
    By keyword   — partial/exact lookup, "gap" keywords outside a Pareto set,
                   keywords on a slug, slug × keyword pairs
    Post-process — totals, Pareto 80/20 cut, RPS leaders, state-exclusion recommendations
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from campaign_analytics.csv_source import slug_variants, to_number
from campaign_analytics.query_engine import SerpTable, numeric, quote_ident, trimmed

logger = logging.getLogger(__name__)

INVALID_STATES = frozenset({"TA"})


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class ColumnMap:
    """Physical column names detected in a System1 export."""
    state: str = "REGION_CODE"
    keyword: str = "SERP_KEYWORD"
    slug: str = "CONTENT_SLUG"
    revenue: str = "EST_NET_REVENUE"
    clicks: str = "SELLSIDE_CLICKS_NETWORK"
    searches: Optional[str] = None   # None → row count is used as searches


@dataclass
class SerpAggregate:
    """Revenue, volume and derived ratios for one grouping key."""
    key: str
    revenue: float
    clicks: float
    searches: float
    rpc: float = 0.0
    rps: float = 0.0
    extra: dict = field(default_factory=dict)


@dataclass
class Totals:
    """Totals across a list of aggregates, with blended ratios."""
    count: int
    revenue: float
    clicks: float
    searches: float
    avg_rpc: float
    avg_rps: float


@dataclass
class ParetoSummary:
    """Shortest revenue-ranked prefix reaching a revenue share."""
    total_items: int
    total_revenue: float
    share: float
    target_revenue: float
    head: list = field(default_factory=list)
    head_revenue: float = 0.0
    top_share_count: int = 0
    top_share_revenue: float = 0.0


@dataclass
class StateRecommendation:
    """States to keep to lift blended RPC by ``uplift``."""
    uplift: float
    target_rpc: float
    achievable: bool
    included: list = field(default_factory=list)
    excluded: list = field(default_factory=list)
    achieved_rpc: float = 0.0
    revenue: float = 0.0
    clicks: float = 0.0
    revenue_retention: float = 0.0
    clicks_retention: float = 0.0


@dataclass
class RevenueBand:
    """Number of slugs whose total revenue falls in a band."""
    label: str
    lower: float
    slug_count: int
    share_of_slugs: float


REVENUE_BANDS = [
    (10_000, "≥ $10,000"),
    (5_000, "$5,000 - $9,999"),
    (1_500, "$1,500 - $4,999"),
    (500, "$500 - $1,499"),
    (100, "$100 - $499"),
    (0, "< $100"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def safe_ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0 when the denominator is not positive."""
    return numerator / denominator if denominator > 0 else 0.0


def make_aggregate(key: Any, revenue: Any, clicks: Any, searches: Any, **extra: Any) -> SerpAggregate:
    """Build a SerpAggregate from raw (possibly NULL/NaN) values."""
    rev = to_number(revenue)
    clk = to_number(clicks)
    srch = to_number(searches)
    return SerpAggregate(
        key=str(key if key is not None else "").strip(),
        revenue=rev,
        clicks=clk,
        searches=srch,
        rpc=safe_ratio(rev, clk),
        rps=safe_ratio(rev, srch),
        extra=extra,
    )


def detect_columns(columns: Iterable[str]) -> ColumnMap:
    """Guess System1 column names by substring matching.

    First matching column wins; unmatched roles keep their defaults,
    except searches, which falls back to counting rows.
    """
    cols = list(columns)
    lowered = [(c, c.lower()) for c in cols]

    def _find(pred, default):
        for original, low in lowered:
            if pred(low):
                return original
        return default

    cmap = ColumnMap(
        state=_find(lambda c: "region" in c or "state" in c, "REGION_CODE"),
        keyword=_find(lambda c: "keyword" in c or "serp" in c, "SERP_KEYWORD"),
        slug=_find(lambda c: "slug" in c, "CONTENT_SLUG"),
        revenue=_find(lambda c: "revenue" in c, "EST_NET_REVENUE"),
        clicks=_find(lambda c: "click" in c and "network" in c, "SELLSIDE_CLICKS_NETWORK"),
        searches=_find(lambda c: "search" in c and "sellside" in c, None),
    )
    logger.debug("Detected columns: %s", cmap)
    return cmap


def _searches_expr(cols: ColumnMap) -> str:
    if cols.searches:
        return f"SUM({numeric(cols.searches)})"
    return "CAST(COUNT(*) AS INTEGER)"


def _frame_to_aggregates(df: pd.DataFrame, key_col: str, extra_cols: Sequence[str] = ()) -> list[SerpAggregate]:
    out = []
    for rec in df.to_dict("records"):
        extra = {c: rec.get(c) for c in extra_cols}
        out.append(make_aggregate(rec.get(key_col), rec.get("revenue"), rec.get("clicks"),
                                  rec.get("searches"), **extra))
    return out


def _require_text(value: str, what: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValueError(f"{what} must not be empty")
    return text


def _pattern_filter(
    table: SerpTable,
    name: str,
    column_expr: str,
    patterns: Iterable[str],
) -> str:
    """Register a pattern list and return a NOT EXISTS substring filter.

    Returns "" when there are no patterns.
    """
    cleaned = sorted({p.strip().lower() for p in patterns if p and p.strip()})
    if not cleaned:
        return ""
    table.register(name, pd.DataFrame({"pattern": cleaned}))
    return (
        f"AND NOT EXISTS (SELECT 1 FROM {name} x "
        f"WHERE strpos(LOWER({column_expr}), x.pattern) > 0)"
    )


def _slug_filter(table: SerpTable, cols: ColumnMap, slugs: Iterable[str]) -> Optional[str]:
    """Register a slug list and return an IN filter on the slug column.

    Each slug matches with or without a trailing slash, case-insensitively.
    Returns None when no usable slug is given.
    """
    variants = sorted({v.lower() for s in slugs if s and s.strip() for v in slug_variants(s)})
    if not variants:
        return None
    table.register("slug_filter", pd.DataFrame({"slug": variants}))
    return f"LOWER({trimmed(cols.slug)}) IN (SELECT slug FROM slug_filter)"


# ---------------------------------------------------------------------------
# State-level aggregations
# ---------------------------------------------------------------------------

def _states_where(table: SerpTable, cols: ColumnMap, match_sql: str, params: list) -> list[SerpAggregate]:
    state = quote_ident(cols.state)
    sql = f"""
        SELECT
            {trimmed(cols.state)} AS state,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches
        FROM t
        WHERE {match_sql}
          AND {state} IS NOT NULL
          AND TRIM({state}) != 'None'
          AND LENGTH(TRIM({state})) = 2
          AND {numeric(cols.revenue)} > 0
        GROUP BY 1
        HAVING SUM({numeric(cols.clicks)}) > 0
        ORDER BY revenue DESC
    """
    states = _frame_to_aggregates(table.query(sql, params), "state")
    states.sort(key=lambda s: s.rpc, reverse=True)
    return states


def states_for_keyword(table: SerpTable, cols: ColumnMap, keyword: str) -> list[SerpAggregate]:
    """Revenue/RPC by 2-letter state for keywords containing ``keyword``.

    Returns:
        States sorted by RPC descending.
    """
    kw = _require_text(keyword, "keyword")
    match = f"strpos(LOWER({trimmed(cols.keyword)}), LOWER(?)) > 0"
    states = _states_where(table, cols, match, [kw])
    logger.info("Keyword %r: %d states with revenue", kw, len(states))
    return states


def states_for_slug(table: SerpTable, cols: ColumnMap, slug: str) -> list[SerpAggregate]:
    """Revenue/RPC by 2-letter state for one content slug (with or without trailing slash)."""
    return states_for_slugs(table, cols, [_require_text(slug, "slug")])


def states_for_slugs(table: SerpTable, cols: ColumnMap, slugs: Iterable[str]) -> list[SerpAggregate]:
    """Revenue/RPC by 2-letter state across a cluster of content slugs.

    Rows from every member slug are pooled before the ratios are taken.

    Raises:
        ValueError: If no slug is given.
    """
    members = [s.strip() for s in slugs if s and s.strip()]
    match = _slug_filter(table, cols, members)
    if match is None:
        raise ValueError("at least one slug is required")
    states = _states_where(table, cols, match, [])
    if len(members) == 1:
        logger.info("Slug %r: %d states with revenue", members[0], len(states))
    else:
        logger.info("Cluster of %d slugs: %d states with revenue", len(members), len(states))
    return states


def keyword_variants(table: SerpTable, cols: ColumnMap, keyword: str, limit: int = 10) -> list[str]:
    """Distinct keywords containing ``keyword`` (case-insensitive)."""
    kw = _require_text(keyword, "keyword")
    sql = f"""
        SELECT DISTINCT {trimmed(cols.keyword)} AS keyword
        FROM t
        WHERE strpos(LOWER({trimmed(cols.keyword)}), LOWER(?)) > 0
        ORDER BY 1
        LIMIT ?
    """
    df = table.query(sql, [kw, int(limit)])
    return [str(v) for v in df["keyword"].tolist()]


# ---------------------------------------------------------------------------
# Keyword-level aggregations
# ---------------------------------------------------------------------------

def lookup_keyword(table: SerpTable, cols: ColumnMap, keyword: str) -> tuple[list[SerpAggregate], str]:
    """Slug × keyword combinations for a keyword.

    Tries a case-insensitive partial match first, then an exact match.

    Returns:
        (aggregates keyed by slug with ``extra["keyword"]``, match type)
        where match type is "partial", "exact" or "none".
    """
    kw = _require_text(keyword, "keyword")

    def _run(match_sql: str) -> list[SerpAggregate]:
        sql = f"""
            SELECT
                {trimmed(cols.slug)} AS slug,
                {trimmed(cols.keyword)} AS keyword,
                SUM({numeric(cols.revenue)}) AS revenue,
                SUM({numeric(cols.clicks)}) AS clicks,
                {_searches_expr(cols)} AS searches
            FROM t
            WHERE {match_sql}
              AND {trimmed(cols.slug)} != ''
              AND {numeric(cols.revenue)} > 0
            GROUP BY 1, 2
            ORDER BY revenue DESC
        """
        return _frame_to_aggregates(table.query(sql, [kw]), "slug", ("keyword",))

    rows = _run(f"strpos(LOWER({trimmed(cols.keyword)}), LOWER(?)) > 0")
    if rows:
        return rows, "partial"
    logger.info("No partial match for %r, trying exact match", kw)
    rows = _run(f"{trimmed(cols.keyword)} = ?")
    return rows, ("exact" if rows else "none")


def gap_keywords(
    table: SerpTable,
    cols: ColumnMap,
    pareto_keywords: Iterable[str],
    excluded_slug_patterns: Iterable[str] = (),
) -> list[SerpAggregate]:
    """Keywords with revenue that contain none of the Pareto keywords.

    Lead-gen slugs matching any excluded pattern are dropped first.

    Returns:
        Aggregates keyed by keyword (``extra["slug_count"]``), revenue descending.
    """
    pareto_filter = _pattern_filter(table, "pareto_keywords", trimmed(cols.keyword), pareto_keywords)
    slug_filter = _pattern_filter(table, "excluded_slugs", trimmed(cols.slug), excluded_slug_patterns)
    sql = f"""
        SELECT
            {trimmed(cols.keyword)} AS keyword,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches,
            COUNT(DISTINCT {trimmed(cols.slug)}) AS slug_count
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {trimmed(cols.keyword)} != ''
          AND {numeric(cols.revenue)} > 0
          {slug_filter}
          {pareto_filter}
        GROUP BY 1
        ORDER BY revenue DESC
    """
    rows = _frame_to_aggregates(table.query(sql), "keyword", ("slug_count",))
    for r in rows:
        r.extra["slug_count"] = int(to_number(r.extra.get("slug_count")))
    logger.info("Gap keywords: %d", len(rows))
    return rows


def keywords_for_slug(table: SerpTable, cols: ColumnMap, slugs: Iterable[str]) -> list[SerpAggregate]:
    """Per-keyword revenue on one slug or a cluster of slugs.

    Feed the result to ``pareto_cut`` to find the keywords that produce
    most of a slug's revenue.

    Returns:
        Aggregates keyed by keyword (``extra["slug_count"]``), revenue descending.
        Empty when no slug is given.
    """
    match = _slug_filter(table, cols, slugs)
    if match is None:
        return []
    sql = f"""
        SELECT
            {trimmed(cols.keyword)} AS keyword,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches,
            COUNT(DISTINCT {trimmed(cols.slug)}) AS slug_count
        FROM t
        WHERE {match}
          AND {trimmed(cols.keyword)} != ''
          AND {numeric(cols.revenue)} > 0
        GROUP BY 1
        ORDER BY revenue DESC
    """
    rows = _frame_to_aggregates(table.query(sql), "keyword", ("slug_count",))
    for r in rows:
        r.extra["slug_count"] = int(to_number(r.extra.get("slug_count")))
    logger.info("Slug keywords: %d with revenue", len(rows))
    return rows


def slug_keyword_pairs(
    table: SerpTable,
    cols: ColumnMap,
    min_revenue: float = 100,
    excluded_slug_patterns: Iterable[str] = (),
) -> list[SerpAggregate]:
    """Slug × keyword combinations earning at least ``min_revenue``.

    Returns:
        Aggregates keyed by slug with ``extra["keyword"]``, revenue descending.
    """
    slug_filter = _pattern_filter(table, "excluded_slugs", trimmed(cols.slug), excluded_slug_patterns)
    sql = f"""
        SELECT
            {trimmed(cols.slug)} AS slug,
            {trimmed(cols.keyword)} AS keyword,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {trimmed(cols.keyword)} != ''
          AND {numeric(cols.revenue)} > 0
          {slug_filter}
        GROUP BY 1, 2
        HAVING SUM({numeric(cols.revenue)}) >= ?
        ORDER BY revenue DESC
    """
    rows = _frame_to_aggregates(table.query(sql, [float(min_revenue)]), "slug", ("keyword",))
    logger.info("Slug/keyword pairs with revenue >= %.2f: %d", min_revenue, len(rows))
    return rows


# ---------------------------------------------------------------------------
# Slug-level aggregations
# ---------------------------------------------------------------------------

def slug_metrics(
    table: SerpTable,
    cols: ColumnMap,
    slugs: Optional[Iterable[str]] = None,
) -> list[SerpAggregate]:
    """Per-slug revenue, clicks and searches for slugs with clicks.

    Args:
        slugs: Optional slug filter; each slug matches with or without a
            trailing slash, case-insensitively.

    Returns:
        Aggregates keyed by slug, revenue descending.
    """
    slug_filter = ""
    if slugs is not None:
        match = _slug_filter(table, cols, slugs)
        if match is None:
            return []
        slug_filter = f"AND {match}"

    sql = f"""
        SELECT
            {trimmed(cols.slug)} AS slug,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {numeric(cols.revenue)} > 0
          {slug_filter}
        GROUP BY 1
        HAVING SUM({numeric(cols.clicks)}) > 0
        ORDER BY revenue DESC
    """
    return _frame_to_aggregates(table.query(sql), "slug")


def top_revenue_slugs(table: SerpTable, cols: ColumnMap, limit: int = 100) -> list[SerpAggregate]:
    """Highest-revenue slugs with their distinct keyword counts."""
    sql = f"""
        SELECT
            {trimmed(cols.slug)} AS slug,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches,
            COUNT(DISTINCT {trimmed(cols.keyword)}) AS keyword_count
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {numeric(cols.revenue)} > 0
        GROUP BY 1
        ORDER BY revenue DESC
        LIMIT ?
    """
    rows = _frame_to_aggregates(table.query(sql, [int(limit)]), "slug", ("keyword_count",))
    for r in rows:
        r.extra["keyword_count"] = int(to_number(r.extra.get("keyword_count")))
    return rows


def gap_slugs(
    table: SerpTable,
    cols: ColumnMap,
    pareto_keywords: Iterable[str],
    excluded_slug_patterns: Iterable[str] = (),
) -> list[SerpAggregate]:
    """Slugs earning on keywords outside the Pareto set, lead-gen slugs excluded."""
    pareto_filter = _pattern_filter(table, "pareto_keywords", trimmed(cols.keyword), pareto_keywords)
    slug_filter = _pattern_filter(table, "excluded_slugs", trimmed(cols.slug), excluded_slug_patterns)
    sql = f"""
        SELECT
            {trimmed(cols.slug)} AS slug,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches,
            COUNT(DISTINCT {trimmed(cols.keyword)}) AS keyword_count
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {trimmed(cols.keyword)} != ''
          AND {numeric(cols.revenue)} > 0
          {slug_filter}
          {pareto_filter}
        GROUP BY 1
        ORDER BY revenue DESC
    """
    rows = _frame_to_aggregates(table.query(sql), "slug", ("keyword_count",))
    for r in rows:
        r.extra["keyword_count"] = int(to_number(r.extra.get("keyword_count")))
    logger.info("Gap slugs: %d", len(rows))
    return rows


def slug_revenue(table: SerpTable, cols: ColumnMap) -> list[SerpAggregate]:
    """Every slug with positive revenue, revenue descending."""
    sql = f"""
        SELECT
            {trimmed(cols.slug)} AS slug,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {numeric(cols.revenue)} > 0
        GROUP BY 1
        ORDER BY revenue DESC
    """
    return _frame_to_aggregates(table.query(sql), "slug")


def slugs_above_threshold(table: SerpTable, cols: ColumnMap, threshold: float) -> list[SerpAggregate]:
    """Slugs whose total revenue is at least ``threshold``."""
    sql = f"""
        SELECT
            {trimmed(cols.slug)} AS slug,
            SUM({numeric(cols.revenue)}) AS revenue,
            SUM({numeric(cols.clicks)}) AS clicks,
            {_searches_expr(cols)} AS searches
        FROM t
        WHERE {trimmed(cols.slug)} != ''
          AND {numeric(cols.revenue)} > 0
        GROUP BY 1
        HAVING SUM({numeric(cols.revenue)}) >= ?
        ORDER BY revenue DESC
    """
    return _frame_to_aggregates(table.query(sql, [float(threshold)]), "slug")


def revenue_distribution(slugs: Sequence[SerpAggregate]) -> list[RevenueBand]:
    """Bucket slugs into the fixed revenue bands (highest band first)."""
    counts = {label: 0 for _, label in REVENUE_BANDS}
    for s in slugs:
        for lower, label in REVENUE_BANDS:
            if s.revenue >= lower:
                counts[label] += 1
                break
    total = len(slugs)
    return [
        RevenueBand(label, float(lower), counts[label], safe_ratio(counts[label], total))
        for lower, label in REVENUE_BANDS
    ]


# ---------------------------------------------------------------------------
# Post-processing
# ---------------------------------------------------------------------------

def summarize(items: Sequence[SerpAggregate]) -> Totals:
    """Totals and blended RPC/RPS across aggregates."""
    revenue = sum(i.revenue for i in items)
    clicks = sum(i.clicks for i in items)
    searches = sum(i.searches for i in items)
    return Totals(
        count=len(items),
        revenue=revenue,
        clicks=clicks,
        searches=searches,
        avg_rpc=safe_ratio(revenue, clicks),
        avg_rps=safe_ratio(revenue, searches),
    )


def pareto_cut(
    items: Sequence[SerpAggregate],
    share: float = 0.8,
    head_share: float = 0.2,
) -> ParetoSummary:
    """Find the fewest top-revenue items that produce ``share`` of revenue.

    Also reports how much revenue the top ``head_share`` of items
    (rounded up) produce.
    """
    ranked = sorted(items, key=lambda i: i.revenue, reverse=True)
    total = sum(i.revenue for i in ranked)
    target = total * share

    head: list[SerpAggregate] = []
    cumulative = 0.0
    if total > 0:
        for item in ranked:
            cumulative += item.revenue
            head.append(item)
            if cumulative >= target:
                break

    top_count = math.ceil(len(ranked) * head_share)
    top_revenue = sum(i.revenue for i in ranked[:top_count])

    return ParetoSummary(
        total_items=len(ranked),
        total_revenue=total,
        share=share,
        target_revenue=target,
        head=head,
        head_revenue=cumulative,
        top_share_count=top_count,
        top_share_revenue=top_revenue,
    )


def top_by_rps(
    items: Sequence[SerpAggregate],
    min_revenue: float = 100,
    limit: int = 30,
    min_rps: float = 0,
) -> list[SerpAggregate]:
    """Most efficient items by RPS among those with at least ``min_revenue``.

    Items below ``min_rps`` are dropped as well.
    """
    eligible = [i for i in items if i.revenue >= min_revenue and i.rps >= min_rps]
    return sorted(eligible, key=lambda i: i.rps, reverse=True)[:limit]


def top_performers(items: Sequence[SerpAggregate], limit: int = 10) -> list[SerpAggregate]:
    """Items at or above the blended average on both RPC and RPS."""
    totals = summarize(items)
    strong = [i for i in items if i.rpc >= totals.avg_rpc and i.rps >= totals.avg_rps]
    return sorted(strong, key=lambda i: i.rpc + i.rps, reverse=True)[:limit]


def aggregates_from_records(records: Iterable[dict], key_field: str = "state") -> list[SerpAggregate]:
    """Rebuild aggregates from a previously exported report CSV."""
    return [
        make_aggregate(r.get(key_field, ""), r.get("revenue"), r.get("clicks"), r.get("searches"))
        for r in records
    ]


def recommend_states(
    states: Sequence[SerpAggregate],
    uplifts: Sequence[float] = (0.10, 0.20, 0.30),
) -> list[StateRecommendation]:
    """Recommend which states to keep to raise blended RPC.

    For each uplift target, states are added in RPC order while the
    cumulative RPC stays at or above ``current_rpc * (1 + uplift)``;
    the first state that would drop it below the target stops the walk.

    Only 2-letter codes count as states, and a few known placeholder
    codes are ignored.
    """
    valid = [s for s in states if len(s.key) == 2 and s.key not in INVALID_STATES]
    total_revenue = sum(s.revenue for s in valid)
    total_clicks = sum(s.clicks for s in valid)
    current_rpc = safe_ratio(total_revenue, total_clicks)
    ranked = sorted(valid, key=lambda s: s.rpc, reverse=True)

    results = []
    for uplift in uplifts:
        target = current_rpc * (1 + uplift)
        included: list[SerpAggregate] = []
        revenue = 0.0
        clicks = 0.0
        for state in ranked:
            test_revenue = revenue + state.revenue
            test_clicks = clicks + state.clicks
            if safe_ratio(test_revenue, test_clicks) >= target:
                revenue, clicks = test_revenue, test_clicks
                included.append(state)
            else:
                break

        if not included or clicks == 0:
            logger.info("RPC uplift of %.0f%% is not achievable", uplift * 100)
            results.append(StateRecommendation(uplift=uplift, target_rpc=target, achievable=False,
                                               excluded=list(ranked)))
            continue

        kept = {s.key for s in included}
        results.append(StateRecommendation(
            uplift=uplift,
            target_rpc=target,
            achievable=True,
            included=included,
            excluded=[s for s in ranked if s.key not in kept],
            achieved_rpc=safe_ratio(revenue, clicks),
            revenue=revenue,
            clicks=clicks,
            revenue_retention=safe_ratio(revenue, total_revenue),
            clicks_retention=safe_ratio(clicks, total_clicks),
        ))
    return results
