"""
config.py — Configuration and environment loading.

Non-secret settings live in config.yaml; credentials (Slack, OpenAI,
Thesys, Gemini) are read exclusively from the environment or a local
.env file. A missing config.yaml is not fatal: every report runs on the
built-in defaults below.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: dict[str, Any] = {
    "paths": {
        "source_dir": "data/system1/incoming",
        "runs_dir": "runs/system1",
        "log_dir": "logs",
    },
    "system1": {
        "excluded_slug_patterns": [
            "emergency-fund", "instant-loan", "instant-cash-loan", "direct-deposit",
            "emergency-cash", "quick-loan", "fast-loan", "cash-advance",
            "payday-loan", "short-term-loan", "emergency-funds", "fast-cash-loan",
            "quick-personal-loan", "loan-options-for-bad", "loan-solutions-for-bad",
            "guaranteed-approval", "no-credit-check", "instant-approval", "cash-loan",
            "urgent-financial", "immediate-financial", "all-credit-situations",
            "unexpected-expenses", "credit-cards-with-no-credit",
            "finding-the-right-personal-loan", "quick-approval",
        ],
        "revenue_threshold": 1500,
        "pareto_share": 0.8,
        "pareto_head_share": 0.2,
        "min_rps_revenue": 100,
        "top_n": 20,
        "rpc_uplift_targets": [0.10, 0.20, 0.30],
    },
    "chat": {
        "backend_url": "http://localhost:3001",
        "gateway_url": "https://api.thesys.dev/v1/embed/",
        "model": "c1/openai/gpt-5/v-20250915",
        "history_messages": 10,
        "intent_timeout_seconds": 30,
    },
    "image_generation": {
        "model": "gemini-2.5-flash-image",
        "max_attempts": 5,
        "timeout_seconds": 120,
    },
    "distribution": {
        "slack_username": "Campaign Analytics",
        "slack_icon_emoji": ":bar_chart:",
        "slack_channel": "#s1-reports",
        "digest_model": "gpt-4o-mini",
    },
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = "config.yaml") -> dict[str, Any]:
    """Load config.yaml on top of the built-in defaults.

    Args:
        config_path: Path to configuration YAML.

    Returns:
        Configuration dict with every section present.
    """
    path = Path(config_path)
    if not path.exists():
        logger.debug("Config %s not found, using defaults", path)
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(path, "r") as fh:
        loaded = yaml.safe_load(fh) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"{path} must contain a YAML mapping")
    return _merge(DEFAULT_CONFIG, loaded)


def load_env(env_file: str = ".env") -> dict[str, str]:
    """Load environment variables, falling back to .env file parsing.

    Process environment wins over the file.

    Returns:
        Dict of environment variable name → value.
    """
    env = dict(os.environ)

    env_path = Path(env_file)
    if env_path.exists():
        with open(env_path, "r") as fh:
            for line in fh:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, val = line.split("=", 1)
                    key = key.strip()
                    val = val.strip().strip('"').strip("'")
                    if key not in env and val:
                        env[key] = val
    return env
