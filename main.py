"""
main.py — Campaign Analytics — CLI Entry Point.

Each sub-command is an independent batch report: it loads the most recent
System1 export (or the file given with --csv) into an in-memory analytical
table, aggregates, prints fixed-width tables and optionally writes
CSV/JSON/HTML/XLSX files under runs/system1/<date>/.

Usage:
    python main.py generate-data --rows 5000
    python main.py rpc-by-state --keyword "dental implants" --format csv html
    python main.py state-recommendations --slug health/best-dental-implants-for-seniors/
    python main.py pareto-gap --pareto-file reports/pareto.csv --by slug --xlsx
    python main.py slug-keywords --slugs-file clusters/dental.csv --export
    python main.py detect-ai article.txt
    python main.py slack-digest "#s1-reports" --window 6h

Exit code is 0 on success and 1 on any error.
"""

import argparse
import json
import logging
import logging.handlers
import os
import sys
from dataclasses import asdict
from datetime import date, datetime
from pathlib import Path
from typing import Any, Sequence

from campaign_analytics.config import load_config, load_env


def _configure_logging(log_dir: str = "logs", level: str = "INFO") -> None:
    """Configure rotating file handler + stream handler.

    Args:
        log_dir: Directory for log files.
        level: Log level string.
    """
    effective_level = os.environ.get("LOG_LEVEL", level).upper()
    numeric = getattr(logging, effective_level, logging.INFO)

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    log_file = Path(log_dir) / f"analytics_{datetime.today().strftime('%Y%m%d')}.log"

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)-35s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    fh = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=10 * 1024 * 1024, backupCount=7, encoding="utf-8"
    )
    fh.setFormatter(fmt)
    # Reports print their tables to stdout; keep log lines on stderr.
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(numeric)
    root.addHandler(fh)
    root.addHandler(sh)
    for noisy in ("urllib3", "httpx", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="campaign-analytics",
        description="System1 SERP reports, content checks and Slack/Gemini helpers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py generate-data
  python main.py lookup-keyword "walk in tub"
  python main.py rpc-by-state --slug home/walk-in-tub-cost/ --format html
  python main.py top-slugs --top 25 --export
  python main.py revenue-threshold --threshold 2500
  python main.py pareto-gap --pareto-file pareto.csv --xlsx
  python main.py slug-keywords --slug health/walk-in-tubs/ --share 0.8
  python main.py rpc-by-state --slugs-file clusters/walk_in_tubs.csv
  python main.py top-rps-keywords --min-revenue 250 --min-rps 2
  python main.py slack-summary --report runs/system1/2025-11-07/x_rpc_by_state.csv
        """,
    )
    parser.add_argument("--config", default="config.yaml",
                        help="Path to config.yaml (default: config.yaml)")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    def _with_csv(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--csv", help="System1 export (default: latest CSV in paths.source_dir)")
        return p

    p = sub.add_parser("generate-data", help="Write a synthetic System1 export")
    p.add_argument("--rows", type=int, default=2000)
    p.add_argument("--seed", type=int, default=42)
    p.add_argument("--out", help="Output CSV (default: <source_dir>/system1_<today>.csv)")

    p = _with_csv(sub.add_parser("lookup-keyword", help="Slug x keyword revenue for a keyword"))
    p.add_argument("keyword")
    p.add_argument("--export", action="store_true", help="Write the table as CSV")

    p = _with_csv(sub.add_parser("rpc-by-state", help="Revenue and RPC by state"))
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--keyword")
    target.add_argument("--slug")
    target.add_argument("--slugs-file", help="CSV with a 'slug' column listing a slug cluster")
    p.add_argument("--format", nargs="*", default=[], choices=["csv", "json", "html"],
                   help="Files to write alongside the printed table")

    p = _with_csv(sub.add_parser("slug-rpc-rps", help="RPC and RPS leaders across slugs"))
    p.add_argument("--slug", action="append", dest="slugs", help="Restrict to a slug (repeatable)")
    p.add_argument("--slugs-file", help="CSV with a 'slug' column listing a slug cluster")
    p.add_argument("--top", type=int, help="Rows per table (default: system1.top_n)")
    p.add_argument("--export", action="store_true")

    p = _with_csv(sub.add_parser("top-slugs", help="Highest-revenue slugs"))
    p.add_argument("--top", type=int, default=50)
    p.add_argument("--export", action="store_true")

    p = _with_csv(sub.add_parser("revenue-threshold", help="Slugs above a revenue threshold"))
    p.add_argument("--threshold", type=float, help="Default: system1.revenue_threshold")
    p.add_argument("--export", action="store_true")

    p = _with_csv(sub.add_parser("pareto-gap", help="Gap keywords/slugs outside a Pareto keyword set"))
    p.add_argument("--pareto-file", required=True, help="CSV with a 'keyword' column")
    p.add_argument("--by", choices=["keyword", "slug"], default="keyword")
    p.add_argument("--top", type=int, default=50)
    p.add_argument("--xlsx", action="store_true", help="Also write an Excel workbook")

    p = _with_csv(sub.add_parser("slug-keywords", help="Keywords producing most of a slug's revenue"))
    p.add_argument("--slug", action="append", dest="slugs", help="Slug to analyse (repeatable)")
    p.add_argument("--slugs-file", help="CSV with a 'slug' column listing a slug cluster")
    p.add_argument("--share", type=float, help="Revenue share to cover (default: system1.pareto_share)")
    p.add_argument("--top", type=int, default=10, help="Rows in the RPS table")
    p.add_argument("--export", action="store_true")

    p = _with_csv(sub.add_parser("top-rps-keywords", help="Slug x keyword pairs ranked by RPS"))
    p.add_argument("--min-revenue", type=float, help="Default: system1.min_rps_revenue")
    p.add_argument("--min-rps", type=float, default=5.0)
    p.add_argument("--top", type=int, default=100)
    p.add_argument("--export", action="store_true")

    p = _with_csv(sub.add_parser("state-recommendations", help="States to keep for an RPC uplift"))
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("--report", help="A previously exported rpc-by-state CSV")
    source.add_argument("--keyword")
    source.add_argument("--slug")
    source.add_argument("--slugs-file", help="CSV with a 'slug' column listing a slug cluster")
    p.add_argument("--export", action="store_true", help="Write recommendations as JSON")

    p = sub.add_parser("detect-ai", help="Heuristic AI-content signals for a text file")
    p.add_argument("file", help="Text file, or '-' for stdin")
    p.add_argument("--word-count", type=int, help="Override the word count used for abuse scoring")
    p.add_argument("--json", action="store_true", help="Print JSON instead of text")

    p = sub.add_parser("generate-image", help="Generate an image with Gemini")
    p.add_argument("--prompt", required=True)
    p.add_argument("--source-image")
    p.add_argument("--brand-image")
    p.add_argument("--aspect-ratio", help='e.g. "1:1" or "16:9"')
    p.add_argument("--out", required=True, help="Output image path")

    p = sub.add_parser("slack-digest", help="Summarize a Slack channel's recent messages")
    p.add_argument("channel", help="Channel ID or #name")
    p.add_argument("--window", default="2d", help="Look-back window: 2d, 6h, 30m")
    p.add_argument("--query", default="", help="Only messages (or threads) containing this text")

    p = sub.add_parser("slack-summary", help="Post an exported report's top rows to Slack")
    p.add_argument("--report", required=True, help="Exported report CSV")
    p.add_argument("--key", default="state", help="Key column in the report (default: state)")
    p.add_argument("--title", help="Message title (default: report filename)")
    p.add_argument("--top", type=int, default=10)

    return parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def _source_csv(args: argparse.Namespace, cfg: dict[str, Any]) -> Path:
    from campaign_analytics.csv_source import latest_csv

    if getattr(args, "csv", None):
        return Path(args.csv)
    return latest_csv(cfg["paths"]["source_dir"])


def _open_table(args: argparse.Namespace, cfg: dict[str, Any]):
    from campaign_analytics.query_engine import SerpTable
    from campaign_analytics.serp_metrics import detect_columns

    csv_path = _source_csv(args, cfg)
    print(f"Using source file: {csv_path.name}\n")
    table = SerpTable(csv_path)
    return table, detect_columns(table.columns)


def _out_path(cfg: dict[str, Any], stem: str, suffix: str) -> Path:
    from campaign_analytics.report_writer import run_dir, safe_filename, timestamp

    name = f"{safe_filename(stem, 80)}_{timestamp()}.{suffix}"
    return run_dir(cfg["paths"]["runs_dir"]) / name


def _print_totals(items, label: str) -> None:
    from campaign_analytics.report_writer import money
    from campaign_analytics.serp_metrics import summarize

    t = summarize(items)
    print(f"\nTotal {label}: {t.count}")
    print(f"Total Revenue: {money(t.revenue)}")
    print(f"Total Clicks: {t.clicks:.0f}")
    print(f"Total Searches: {t.searches:.0f}")
    print(f"Average RPC: {money(t.avg_rpc, 4)}")
    print(f"Average RPS: {money(t.avg_rps, 4)}")


def _cluster_slugs(path: str) -> list[str]:
    from campaign_analytics.csv_source import read_csv_records

    return [s for s in (r.get("slug", "").strip() for r in read_csv_records(path)) if s]


def _load_slugs(args: argparse.Namespace) -> list[str] | None:
    slugs = [s.strip() for s in (args.slugs or []) if s and s.strip()]
    if args.slugs_file:
        slugs += _cluster_slugs(args.slugs_file)
    return slugs or None


def _load_pareto_keywords(path: str) -> list[str]:
    from campaign_analytics.csv_source import read_csv_records

    keywords = {r.get("keyword", "").strip() for r in read_csv_records(path)}
    return sorted(k for k in keywords if k)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_generate_data(args, cfg, env) -> int:
    from campaign_analytics.data_simulator import generate_serp_export

    out = args.out or Path(cfg["paths"]["source_dir"]) / f"system1_{date.today().isoformat()}.csv"
    path = generate_serp_export(out, rows=args.rows, seed=args.seed)
    print(f"Wrote {args.rows} rows to {path}")
    return 0


def cmd_lookup_keyword(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (Column, aggregate_columns, aggregates_to_frame,
                                                  format_table, ranked, write_csv)
    from campaign_analytics.serp_metrics import lookup_keyword

    print(f'\n=== Keyword Lookup ===\n\nKeyword: "{args.keyword}"\n')
    table, cols = _open_table(args, cfg)
    with table:
        rows, match = lookup_keyword(table, cols, args.keyword)

    if not rows:
        print(f'No rows found for "{args.keyword}".')
        return 0

    print(f"Match type: {match} ({len(rows)} slug/keyword combinations)\n")
    columns = aggregate_columns("Slug", 50)
    columns.insert(2, Column("Keyword", 35, lambda r: r[1].extra.get("keyword", ""), align="left"))
    print(format_table(columns, ranked(rows)))
    _print_totals(rows, "Combinations")

    if args.export:
        write_csv(_out_path(cfg, f"{args.keyword}_lookup", "csv"), aggregates_to_frame(rows, "slug"))
    return 0


def _state_subject(args: argparse.Namespace) -> tuple[str, str]:
    """(label, subject) for a keyword, slug or slug-cluster state report."""
    if args.keyword:
        return "Keyword", args.keyword
    if args.slug:
        return "Slug", args.slug
    return "Cluster", Path(args.slugs_file).stem


def _states_for(args, cfg):
    from campaign_analytics.serp_metrics import (keyword_variants, states_for_keyword, states_for_slug,
                                                 states_for_slugs)

    members = []
    if args.slugs_file:
        members = _cluster_slugs(args.slugs_file)
        print(f"Cluster members: {len(members)} slugs\n")
    table, cols = _open_table(args, cfg)
    with table:
        variants = []
        if args.keyword:
            states = states_for_keyword(table, cols, args.keyword)
            variants = [] if states else keyword_variants(table, cols, args.keyword)
        elif args.slug:
            states = states_for_slug(table, cols, args.slug)
        else:
            states = states_for_slugs(table, cols, members)
    return states, variants


def cmd_rpc_by_state(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (aggregate_columns, aggregates_to_frame, format_table,
                                                  ranked, write_csv, write_json)
    from campaign_analytics.state_chart import write_state_chart

    label, subject = _state_subject(args)
    print(f"\n=== RPC by State ===\n\n{label}: {subject}\n")
    states, variants = _states_for(args, cfg)

    if not states:
        print(f"No state data found for {subject}.")
        if variants:
            print("\nSimilar keywords:")
            for v in variants:
                print(f"  - {v}")
        return 0

    print(format_table(aggregate_columns("State", 5), ranked(states)))
    _print_totals(states, "States")

    stem = f"{subject}_rpc_by_state"
    frame = aggregates_to_frame(states, "state").drop(columns=["rank"])
    if "csv" in args.format:
        write_csv(_out_path(cfg, stem, "csv"), frame)
    if "json" in args.format:
        write_json(_out_path(cfg, stem, "json"), {"subject": subject, "states": [asdict(s) for s in states]})
    if "html" in args.format:
        write_state_chart(states, _out_path(cfg, stem, "html"), subject)
    return 0


def cmd_slug_rpc_rps(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (aggregate_columns, aggregates_to_frame, format_table,
                                                  money, ranked, write_csv)
    from campaign_analytics.serp_metrics import slug_metrics, top_performers

    top_n = args.top or int(cfg["system1"]["top_n"])
    slugs = _load_slugs(args)
    print("\n=== Slug RPC & RPS Analysis ===\n")
    if slugs:
        print(f"Cluster: {len(slugs)} slugs\n")

    table, cols = _open_table(args, cfg)
    with table:
        metrics = slug_metrics(table, cols, slugs)
    print(f"Found {len(metrics)} slugs with revenue\n")
    if not metrics:
        return 0

    by_rpc = sorted(metrics, key=lambda s: s.rpc, reverse=True)[:top_n]
    by_rps = sorted(metrics, key=lambda s: s.rps, reverse=True)[:top_n]
    print(f"TOP {top_n} SLUGS BY RPC (Revenue Per Click):\n")
    print(format_table(aggregate_columns("Slug"), ranked(by_rpc)))
    print(f"\n\nTOP {top_n} SLUGS BY RPS (Revenue Per Search):\n")
    print(format_table(aggregate_columns("Slug"), ranked(by_rps)))
    _print_totals(metrics, "Slugs")

    print("\n\nTOP PERFORMERS (High RPC AND High RPS):\n")
    for idx, s in enumerate(top_performers(metrics), start=1):
        print(f"{idx:>2}. {s.key}")
        print(f"    RPC: {money(s.rpc, 4)} | RPS: {money(s.rps, 4)} | Revenue: {money(s.revenue)}")

    if args.export:
        write_csv(_out_path(cfg, "slug_rpc_rps", "csv"), aggregates_to_frame(metrics, "slug"))
    return 0


def cmd_top_slugs(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (Column, aggregate_columns, aggregates_to_frame,
                                                  format_table, money, pct, ranked, write_csv)
    from campaign_analytics.serp_metrics import safe_ratio, slug_revenue, summarize, top_revenue_slugs

    print("\n=== Top Revenue Slugs (All Data) ===\n")
    table, cols = _open_table(args, cfg)
    with table:
        top = top_revenue_slugs(table, cols, args.top)
        everything = slug_revenue(table, cols)

    all_totals = summarize(everything)
    extra = [
        Column("% Total", 7, lambda r: pct(safe_ratio(r[1].revenue, all_totals.revenue))),
        Column("Keywords", 8, lambda r: str(r[1].extra.get("keyword_count", 0))),
    ]
    print(f"TOP {args.top} SLUGS BY REVENUE:\n")
    print(format_table(aggregate_columns("Slug", 60, extra=extra), ranked(top)))
    _print_totals(top, f"Slugs (Top {args.top})")

    top_revenue = summarize(top).revenue
    print("\nVS ALL SLUGS:\n")
    print(f"Total Slugs in Dataset: {all_totals.count}")
    print(f"Total Revenue in Dataset: {money(all_totals.revenue)}")
    print(f"Top {args.top} represent: {pct(safe_ratio(top_revenue, all_totals.revenue))} of total revenue")

    if args.export:
        write_csv(_out_path(cfg, f"top_{args.top}_slugs", "csv"),
                  aggregates_to_frame(top, "slug", all_totals.revenue))
    return 0


def cmd_revenue_threshold(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (Column, aggregate_columns, aggregates_to_frame,
                                                  format_table, money, pct, ranked, write_csv)
    from campaign_analytics.serp_metrics import (revenue_distribution, safe_ratio, slug_revenue,
                                                 slugs_above_threshold, summarize)

    threshold = args.threshold if args.threshold is not None else float(cfg["system1"]["revenue_threshold"])
    print(f"\n=== Slugs by Revenue Threshold ===\n\nThreshold: {money(threshold)}\n")
    table, cols = _open_table(args, cfg)
    with table:
        above = slugs_above_threshold(table, cols, threshold)
        everything = slug_revenue(table, cols)

    total = summarize(everything)
    above_revenue = summarize(above).revenue
    print("RESULTS:\n")
    print(f"Slugs with revenue >= {money(threshold)}: {len(above)}")
    print(f"Total slugs in dataset: {total.count}")
    print(f"Percentage: {pct(safe_ratio(len(above), total.count), 1)}\n")
    print("REVENUE BREAKDOWN:\n")
    print(f"Revenue from slugs >= {money(threshold)}: {money(above_revenue)}")
    print(f"Total revenue: {money(total.revenue)}")
    print(f"Percentage of total revenue: {pct(safe_ratio(above_revenue, total.revenue), 1)}\n")

    if above:
        print("TOP 20 SLUGS ABOVE THRESHOLD:\n")
        print(format_table(aggregate_columns("Slug", 60), ranked(above[:20])))

    print("\n\nREVENUE DISTRIBUTION:\n")
    bands = [
        Column("Revenue Range", 16, lambda b: b.label, align="left"),
        Column("Slugs", 6, lambda b: str(b.slug_count)),
        Column("Share", 7, lambda b: pct(b.share_of_slugs, 1)),
    ]
    print(format_table(bands, revenue_distribution(everything)))

    if args.export:
        write_csv(_out_path(cfg, f"slugs_above_{threshold:.0f}", "csv"),
                  aggregates_to_frame(above, "slug", total.revenue))
    return 0


def cmd_pareto_gap(args, cfg, env) -> int:
    from campaign_analytics.excel_pack import write_gap_workbook
    from campaign_analytics.report_writer import (aggregate_columns, aggregates_to_frame, format_table,
                                                  money, pct, ranked, write_csv)
    from campaign_analytics.serp_metrics import gap_keywords, gap_slugs, pareto_cut, safe_ratio, top_by_rps

    s1 = cfg["system1"]
    print(f"\n=== Top Gap {args.by.title()}s Analysis (Pareto 80/20) ===\n")
    pareto_keywords = _load_pareto_keywords(args.pareto_file)
    print(f"Loaded {len(pareto_keywords)} keywords from Pareto file\n")

    table, cols = _open_table(args, cfg)
    finder = gap_keywords if args.by == "keyword" else gap_slugs
    with table:
        items = finder(table, cols, pareto_keywords, s1["excluded_slug_patterns"])
    if not items:
        print("No gap items with revenue found.")
        return 0

    summary = pareto_cut(items, float(s1["pareto_share"]), float(s1["pareto_head_share"]))
    leaders = top_by_rps(items, float(s1["min_rps_revenue"]))
    total = summary.total_revenue

    print(f"Total gap {args.by}s: {summary.total_items}")
    print(f"Total gap revenue: {money(total)}")
    print(f"{args.by.title()}s producing {pct(summary.share, 0)} of revenue: {len(summary.head)} "
          f"({pct(safe_ratio(len(summary.head), summary.total_items), 1)})")
    print(f"Top {summary.top_share_count} {args.by}s produce "
          f"{pct(safe_ratio(summary.top_share_revenue, total), 1)} of revenue\n")

    print(f"TOP {args.top} GAP {args.by.upper()}S BY REVENUE:\n")
    print(format_table(aggregate_columns(args.by.title(), 50), ranked(items[:args.top])))
    print(f"\n\nTOP GAP {args.by.upper()}S BY RPS (revenue >= {money(float(s1['min_rps_revenue']))}):\n")
    print(format_table(aggregate_columns(args.by.title(), 50), ranked(leaders)))

    write_csv(_out_path(cfg, f"gap_{args.by}s_top80pct", "csv"), aggregates_to_frame(summary.head, args.by, total))
    write_csv(_out_path(cfg, f"gap_{args.by}s_top{args.top}", "csv"),
              aggregates_to_frame(items[:args.top], args.by, total))
    if args.xlsx:
        write_gap_workbook(_out_path(cfg, f"gap_{args.by}s_pareto", "xlsx"), summary, items, leaders,
                           key_name=args.by, title=f"Gap {args.by.title()}s — Pareto Analysis")
    return 0


def cmd_slug_keywords(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (Column, aggregate_columns, aggregates_to_frame,
                                                  format_table, money, pct, ranked, write_csv)
    from campaign_analytics.serp_metrics import keywords_for_slug, pareto_cut, safe_ratio, top_by_rps

    slugs = _load_slugs(args)
    if not slugs:
        raise ValueError("slug-keywords needs --slug or --slugs-file")
    share = args.share if args.share is not None else float(cfg["system1"]["pareto_share"])
    if not 0 < share <= 1:
        raise ValueError(f"--share must be in (0, 1], got {share}")

    print(f"\n=== Keyword Analysis for Slug ({pct(share, 0)} Revenue) ===\n")
    print(f"Slug: {slugs[0]}" if len(slugs) == 1 else f"Cluster: {len(slugs)} slugs")
    table, cols = _open_table(args, cfg)
    with table:
        keywords = keywords_for_slug(table, cols, slugs)
    print(f"Found {len(keywords)} keywords with revenue\n")
    if not keywords:
        return 0

    summary = pareto_cut(keywords, share, float(cfg["system1"]["pareto_head_share"]))
    total = summary.total_revenue
    print(f"Total Revenue: {money(total)}")
    print(f"{pct(share, 0)} Target: {money(summary.target_revenue)}\n")
    print(f"Keywords producing {pct(share, 0)} of revenue: {len(summary.head)} "
          f"(out of {summary.total_items})\n")

    extra = [Column("% Total", 7, lambda r: pct(safe_ratio(r[1].revenue, total)))]
    print(format_table(aggregate_columns("Keyword", 45, extra=extra), ranked(summary.head)))
    _print_totals(summary.head, "Keywords")

    leaders = top_by_rps(keywords, float(cfg["system1"]["min_rps_revenue"]), args.top)
    if leaders:
        print(f"\n\nTOP {len(leaders)} KEYWORDS BY RPS "
              f"(revenue >= {money(float(cfg['system1']['min_rps_revenue']))}):\n")
        print(format_table(aggregate_columns("Keyword", 45), ranked(leaders)))

    if args.export:
        stem = slugs[0] if len(slugs) == 1 else f"cluster_{len(slugs)}_slugs"
        write_csv(_out_path(cfg, f"{stem}_keywords_top{share * 100:.0f}pct", "csv"),
                  aggregates_to_frame(summary.head, "keyword", total))
    return 0


def cmd_top_rps_keywords(args, cfg, env) -> int:
    from campaign_analytics.report_writer import (Column, aggregate_columns, aggregates_to_frame,
                                                  format_table, money, ranked, write_csv)
    from campaign_analytics.serp_metrics import slug_keyword_pairs, top_by_rps

    s1 = cfg["system1"]
    min_revenue = args.min_revenue if args.min_revenue is not None else float(s1["min_rps_revenue"])
    print("\n=== Top RPS Keywords by Slug ===\n")
    print(f"Minimum revenue: {money(min_revenue)} | Minimum RPS: {money(args.min_rps, 4)}\n")

    table, cols = _open_table(args, cfg)
    with table:
        pairs = slug_keyword_pairs(table, cols, min_revenue, s1["excluded_slug_patterns"])
    leaders = top_by_rps(pairs, min_revenue, args.top, args.min_rps)
    print(f"Found {len(pairs)} slug/keyword pairs, {len(leaders)} at or above the RPS floor\n")
    if not leaders:
        return 0

    columns = aggregate_columns("Slug", 45)
    columns.insert(2, Column("Keyword", 35, lambda r: r[1].extra.get("keyword", ""), align="left"))
    print(format_table(columns, ranked(leaders)))
    _print_totals(leaders, "Pairs")

    if args.export:
        write_csv(_out_path(cfg, f"top_rps_keywords_by_slug_min{min_revenue:.0f}", "csv"),
                  aggregates_to_frame(leaders, "slug"))
    return 0


def cmd_state_recommendations(args, cfg, env) -> int:
    from campaign_analytics.csv_source import read_csv_records
    from campaign_analytics.report_writer import money, pct, write_json
    from campaign_analytics.serp_metrics import aggregates_from_records, recommend_states, summarize

    print("\n=== State Recommendations for RPC Improvement ===\n")
    if args.report:
        states = aggregates_from_records(read_csv_records(args.report), "state")
        subject = Path(args.report).stem
    else:
        states, _ = _states_for(args, cfg)
        _, subject = _state_subject(args)
    print(f"Subject: {subject}\n")

    recs = recommend_states(states, [float(u) for u in cfg["system1"]["rpc_uplift_targets"]])
    current = summarize([s for s in states if len(s.key) == 2 and s.key != "TA"])
    print("CURRENT METRICS:\n")
    print(f"Total States: {current.count}")
    print(f"Total Revenue: {money(current.revenue)}")
    print(f"Total Clicks: {current.clicks:.0f}")
    print(f"Average RPC: {money(current.avg_rpc, 4)}\n")

    print("STATE RECOMMENDATIONS BY TARGET:\n")
    for rec in recs:
        print(f"--- +{rec.uplift * 100:.0f}% RPC (target {money(rec.target_rpc, 4)}) ---")
        if not rec.achievable:
            print("  Not achievable with the current state mix.\n")
            continue
        print(f"  Include {len(rec.included)} states: {', '.join(s.key for s in rec.included)}")
        print(f"  Exclude {len(rec.excluded)} states: {', '.join(s.key for s in rec.excluded) or '-'}")
        print(f"  Achieved RPC: {money(rec.achieved_rpc, 4)}")
        print(f"  Revenue retained: {money(rec.revenue)} ({pct(rec.revenue_retention, 1)})")
        print(f"  Clicks retained: {rec.clicks:.0f} ({pct(rec.clicks_retention, 1)})\n")

    if args.export:
        payload = {
            "subject": subject,
            "current_rpc": current.avg_rpc,
            "recommendations": [
                {**asdict(r),
                 "included": [s.key for s in r.included],
                 "excluded": [s.key for s in r.excluded]}
                for r in recs
            ],
        }
        write_json(_out_path(cfg, f"{subject}_state_recommendations", "json"), payload)
    return 0


def cmd_detect_ai(args, cfg, env) -> int:
    from campaign_analytics.content_signals import detect_ai_content_signals, detect_scaled_content_abuse

    if args.file == "-":
        text = sys.stdin.read()
    else:
        path = Path(args.file)
        if not path.exists():
            raise FileNotFoundError(f"Text file not found: {path}")
        text = path.read_text(encoding="utf-8")

    word_count = args.word_count if args.word_count is not None else len(text.split())
    signals = detect_ai_content_signals(text)
    verdict = detect_scaled_content_abuse(text, word_count)

    if args.json:
        print(json.dumps({"signals": signals.to_dict(), "scaled_content": verdict.to_dict(),
                          "word_count": word_count}, indent=2))
        return 0

    print(f"\n=== AI Content Signals ===\n\nWords: {word_count}")
    print(f"AI likelihood: {signals.ai_likelihood * 100:.0f}%\n")
    for name, fired in asdict(signals.signals).items():
        print(f"  [{'x' if fired else ' '}] {name.replace('_', ' ')}")
    if signals.evidence:
        print("\nEvidence:")
        for line in signals.evidence:
            print(f"  - {line}")
    print(f"\nScaled content abuse: {'YES' if verdict.is_abuse else 'no'} "
          f"(confidence {verdict.confidence * 100:.0f}%)")
    for reason in verdict.reasons:
        print(f"  - {reason}")
    return 0


def cmd_generate_image(args, cfg, env) -> int:
    from campaign_analytics.image_generation import generate_image

    img_cfg = cfg["image_generation"]
    image = generate_image(
        args.prompt,
        source_image=args.source_image,
        brand_image=args.brand_image,
        aspect_ratio=args.aspect_ratio,
        api_key=env.get("GEMINI_API_KEY"),
        model=img_cfg["model"],
        max_attempts=int(img_cfg["max_attempts"]),
        timeout=float(img_cfg["timeout_seconds"]),
    )
    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(image)
    print(f"Saved {len(image)} bytes to {out}")
    return 0


def cmd_slack_digest(args, cfg, env) -> int:
    from openai import OpenAI

    from campaign_analytics.distributor import SlackClient, summarize_channel

    token = env.get("SLACK_BOT_TOKEN")
    api_key = env.get("OPENAI_API_KEY")
    if not token:
        raise RuntimeError("Missing SLACK_BOT_TOKEN in environment.")
    if not api_key:
        raise RuntimeError("Missing OPENAI_API_KEY in environment.")

    digest = summarize_channel(
        SlackClient(token),
        OpenAI(api_key=api_key),
        args.channel,
        window=args.window,
        query=args.query,
        model=cfg["distribution"]["digest_model"],
    )
    suffix = f' matching "{args.query}"' if args.query else ""
    if not digest.message_count:
        print(f"No messages found for #{digest.channel_name} in the last {args.window}{suffix}.")
        return 0
    filt = f", filter: {args.query}" if args.query else ""
    print(f"\n=== Digest: #{digest.channel_name} ({args.window}{filt}) ===\n")
    print(digest.summary)
    return 0


def cmd_slack_summary(args, cfg, env) -> int:
    from campaign_analytics.csv_source import read_csv_records
    from campaign_analytics.distributor import send_slack_summary
    from campaign_analytics.report_writer import money
    from campaign_analytics.serp_metrics import aggregates_from_records, summarize

    items = aggregates_from_records(read_csv_records(args.report), args.key)
    if not items:
        raise ValueError(f"No rows in report {args.report}")
    items.sort(key=lambda i: i.revenue, reverse=True)
    totals = summarize(items)

    lines = [
        f"*Revenue:* {money(totals.revenue)} | *Clicks:* {totals.clicks:,.0f} | "
        f"*RPC:* {money(totals.avg_rpc, 4)} | *RPS:* {money(totals.avg_rps, 4)}",
        "",
        f"*Top {min(args.top, len(items))} by revenue:*",
    ]
    for rank, item in enumerate(items[:args.top], start=1):
        lines.append(f"{rank}. `{item.key}` {money(item.revenue)} (RPC {money(item.rpc, 4)})")

    title = args.title or Path(args.report).stem
    return 0 if send_slack_summary(title, lines, cfg, env) else 1


COMMANDS = {
    "generate-data": cmd_generate_data,
    "lookup-keyword": cmd_lookup_keyword,
    "rpc-by-state": cmd_rpc_by_state,
    "slug-rpc-rps": cmd_slug_rpc_rps,
    "top-slugs": cmd_top_slugs,
    "revenue-threshold": cmd_revenue_threshold,
    "pareto-gap": cmd_pareto_gap,
    "slug-keywords": cmd_slug_keywords,
    "top-rps-keywords": cmd_top_rps_keywords,
    "state-recommendations": cmd_state_recommendations,
    "detect-ai": cmd_detect_ai,
    "generate-image": cmd_generate_image,
    "slack-digest": cmd_slack_digest,
    "slack-summary": cmd_slack_summary,
}


def run_command(args: argparse.Namespace, cfg: dict[str, Any], env: dict[str, str],
                logger: logging.Logger) -> int:
    """Run one sub-command.

    Returns:
        0 on success, 1 on error.
    """
    try:
        return COMMANDS[args.command](args, cfg, env)
    except FileNotFoundError as exc:
        logger.error("Input missing. Run generate-data or pass --csv.\n%s", exc)
        return 1
    except Exception as exc:
        logger.error("%s failed: %s", args.command, exc, exc_info=True)
        return 1


def main(argv: Sequence[str] | None = None) -> None:
    """Parse args, configure logging, and run the command."""
    args = _parse_args(argv)

    try:
        cfg = load_config(args.config)
    except Exception as exc:
        print(f"Invalid config {args.config}: {exc}", file=sys.stderr)
        sys.exit(1)

    _configure_logging(log_dir=cfg["paths"].get("log_dir", "logs"), level=args.log_level)
    logger = logging.getLogger(__name__)

    if not args.command:
        _parse_args(["--help"])

    logger.info("Campaign Analytics | %s | %s", args.command, datetime.today().strftime("%Y-%m-%d %H:%M:%S"))
    sys.exit(run_command(args, cfg, load_env(), logger))


if __name__ == "__main__":
    main()
