"""
data_simulator.py — Synthetic System1 SERP export generator.

Generates a CSV shaped like the daily System1 SERP export, for demos and
tests:

    CONTENT_SLUG, SERP_KEYWORD, REGION_CODE,
    EST_NET_REVENUE, SELLSIDE_CLICKS_NETWORK, SELLSIDE_SEARCHES

The data carries the quirks the reports must survive:
    - Revenue on some rows formatted as "$1,234.56"
    - Rows with zero revenue or zero clicks
    - Placeholder region codes ("None", "TA", blanks)
    - Lead-gen slugs that the gap reports exclude
    - State-level RPC differences, so exclusion recommendations are non-trivial
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

COLUMNS = [
    "CONTENT_SLUG",
    "SERP_KEYWORD",
    "REGION_CODE",
    "EST_NET_REVENUE",
    "SELLSIDE_CLICKS_NETWORK",
    "SELLSIDE_SEARCHES",
]

# slug → keywords served on it
CATALOGUE = {
    "health/best-dental-implants-for-seniors/": [
        "dental implants for seniors", "cheap dental implants", "dental implants cost",
    ],
    "finance/high-yield-savings-accounts/": [
        "high yield savings", "best savings account rates", "online savings account",
    ],
    "auto/cheap-car-insurance-quotes/": [
        "cheap car insurance", "car insurance quotes", "auto insurance for seniors",
    ],
    "home/walk-in-tub-cost/": [
        "walk in tubs", "walk in tub cost", "walk in shower for elderly",
    ],
    "tech/best-vpn-deals/": [
        "vpn deals", "best vpn", "cheap vpn service",
    ],
    "health/hearing-aids-for-seniors": [
        "hearing aids", "otc hearing aids", "hearing aids cost",
    ],
    "finance/instant-loan-options/": [
        "instant loan", "personal loans bad credit", "fast cash loan",
    ],
    "finance/payday-loan-alternatives/": [
        "payday loans", "cash advance apps",
    ],
    "travel/cheap-cruise-deals/": [
        "cruise deals", "last minute cruises",
    ],
    "home/solar-panel-installation/": [
        "solar panels cost", "solar panel installation", "free solar panels",
    ],
}

# state → RPC multiplier
STATES = {
    "CA": 1.35, "NY": 1.30, "TX": 1.10, "FL": 1.05, "WA": 1.25,
    "IL": 1.00, "PA": 0.95, "OH": 0.85, "GA": 0.90, "NC": 0.88,
    "MI": 0.80, "AZ": 0.92, "MS": 0.60, "WV": 0.55, "AR": 0.58,
}
PLACEHOLDER_REGIONS = ["None", "TA", ""]


def _money(value: float, rng: np.random.Generator) -> str:
    if rng.random() < 0.15:
        return f"${value:,.2f}"
    return f"{value:.2f}"


def generate_serp_frame(rows: int = 2000, seed: int = 42) -> pd.DataFrame:
    """Build a synthetic export as an all-text DataFrame.

    Args:
        rows: Number of data rows.
        seed: Seed for the NumPy generator (same seed, same data).
    """
    rng = np.random.default_rng(seed)
    slugs = list(CATALOGUE)
    slug_weights = rng.dirichlet(np.ones(len(slugs)) * 0.8)
    states = list(STATES)

    # Base RPC per keyword
    base_rpc = {kw: float(rng.uniform(0.15, 1.8)) for kws in CATALOGUE.values() for kw in kws}

    records = []
    for _ in range(rows):
        slug = slugs[int(rng.choice(len(slugs), p=slug_weights))]
        keyword = CATALOGUE[slug][int(rng.integers(len(CATALOGUE[slug])))]
        if rng.random() < 0.03:
            region = PLACEHOLDER_REGIONS[int(rng.integers(len(PLACEHOLDER_REGIONS)))]
        else:
            region = states[int(rng.integers(len(states)))]

        searches = int(rng.integers(1, 60))
        clicks = int(rng.binomial(searches, 0.35))
        multiplier = STATES.get(region, 1.0)
        revenue = clicks * base_rpc[keyword] * multiplier * float(rng.lognormal(0, 0.25))
        if rng.random() < 0.05:
            revenue = 0.0

        records.append({
            "CONTENT_SLUG": slug,
            "SERP_KEYWORD": keyword,
            "REGION_CODE": region,
            "EST_NET_REVENUE": _money(revenue, rng),
            "SELLSIDE_CLICKS_NETWORK": str(clicks),
            "SELLSIDE_SEARCHES": str(searches),
        })

    return pd.DataFrame.from_records(records, columns=COLUMNS)


def generate_serp_export(path: str | Path, rows: int = 2000, seed: int = 42) -> Path:
    """Write a synthetic System1 export to ``path``.

    Returns:
        Path to the written CSV.
    """
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    frame = generate_serp_frame(rows, seed)
    frame.to_csv(output_path, index=False)
    logger.info("Written synthetic System1 export: %d rows -> %s", len(frame), output_path)
    return output_path
