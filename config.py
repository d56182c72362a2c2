"""
config.py
==========
Central configuration for the flash-loan liquidator.
All token amounts are integers in the token's smallest unit.
All rates are integer basis points (100 bps = 1%).
"""

from __future__ import annotations
import logging
import os
from typing import Dict, Any


# ─────────────────────────────────────────────────────────────────────────────
# PATHS
# ─────────────────────────────────────────────────────────────────────────────

DATA_DIR: str = os.environ.get("DATA_DIR", os.path.join(os.path.dirname(__file__), "data"))
SETTLEMENTS_FILE: str = os.path.join(DATA_DIR, "settlements.json")
JOBS_FILE: str = os.environ.get("JOBS_FILE", os.path.join(DATA_DIR, "jobs.json"))
LOG_FILE: str = os.path.join(DATA_DIR, "liquidator.log")

# ─────────────────────────────────────────────────────────────────────────────
# LIQUIDATION POLICY
# ─────────────────────────────────────────────────────────────────────────────

LIQUIDATION: Dict[str, Any] = {
    # "strict": a router failure aborts the unit immediately.
    # "soft":   a router failure is logged and the unit continues to settlement.
    "swap_failure_policy": os.environ.get("SWAP_FAILURE_POLICY", "strict"),

    # "non_negative": profit >= 0 settles.  "positive": profit must be > 0.
    "profit_policy": os.environ.get("PROFIT_POLICY", "non_negative"),

    # Swap deadline = now + deadline_window (seconds)
    "deadline_window": 3,

    # Aave V2/V3 flash loan premium (0.09%)
    "flash_premium_bps": 9,

    "referral_code": 0,

    # Share of a borrower's debt a single liquidation may repay (50%)
    "close_factor_bps": 5000,

    # Label the owner address is derived from in the sandbox
    "owner_label": "owner",
}

# ─────────────────────────────────────────────────────────────────────────────
# RUNNER
# ─────────────────────────────────────────────────────────────────────────────

RUNNER: Dict[str, Any] = {
    "min_cycle_gap": 60,       # seconds between cycle starts
    "max_jobs_per_cycle": 10,
}

# ─────────────────────────────────────────────────────────────────────────────
# JOB FEED (external decision process)
# ─────────────────────────────────────────────────────────────────────────────

API: Dict[str, str] = {
    # Empty URL -> jobs are read from JOBS_FILE instead
    "job_feed": os.environ.get("LIQUIDATION_FEED_URL", ""),
}

# ─────────────────────────────────────────────────────────────────────────────
# HTTP / RETRY SETTINGS
# ─────────────────────────────────────────────────────────────────────────────

HTTP: Dict[str, Any] = {
    "timeout":           10,
    "max_retries":       3,
    "retry_delay":       1.5,
    "rate_limit_delay":  15,
    "user_agent":        "FlashLiquidator/1.0 (simulation)",
}

# ─────────────────────────────────────────────────────────────────────────────
# SANDBOX MARKET
# ─────────────────────────────────────────────────────────────────────────────
# Prices are in oracle base units (8 decimals) per whole token.

SANDBOX: Dict[str, Any] = {
    "start_time": 1_700_000_000,
    "tokens": {
        "USDC": {"decimals": 6,  "price": 100_000_000},
        "DAI":  {"decimals": 18, "price": 100_000_000},
        "WETH": {"decimals": 18, "price": 300_000_000_000},
        "WBTC": {"decimals": 8,  "price": 6_000_000_000_000},
    },
    "reserves": {
        "USDC": {"liquidation_threshold_bps": 8500, "liquidation_bonus_bps": 10500},
        "DAI":  {"liquidation_threshold_bps": 8000, "liquidation_bonus_bps": 10500},
        "WETH": {"liquidation_threshold_bps": 8250, "liquidation_bonus_bps": 10500},
        "WBTC": {"liquidation_threshold_bps": 7500, "liquidation_bonus_bps": 11000},
    },
    # Raw liquidity seeded into the lending pool (whole tokens)
    "pool_liquidity": {
        "USDC": 50_000_000,
        "DAI":  50_000_000,
        "WETH": 20_000,
        "WBTC": 1_000,
    },
    # Constant-product pairs (whole tokens). "a<SYM>" is the wrapped token.
    "pairs": [
        {"tokens": ["WETH", "USDC"], "fee_bps": 30, "reserves": [5_000, 15_000_000]},
        {"tokens": ["WETH", "DAI"],  "fee_bps": 30, "reserves": [5_000, 15_000_000]},
        {"tokens": ["WBTC", "WETH"], "fee_bps": 30, "reserves": [200, 4_000]},
        {"tokens": ["DAI", "USDC"],  "fee_bps": 5,  "reserves": [10_000_000, 10_000_000]},
        {"tokens": ["aWETH", "WETH"], "fee_bps": 1, "reserves": [2_000, 2_000]},
    ],
    # Borrower positions opened before the price shock, with the route the
    # demo jobs use to turn the seized collateral back into the debt asset
    "positions": [
        {"borrower": "alice", "supply": {"WETH": 10}, "borrow": {"USDC": 24_000},
         "route": ["aWETH", "WETH", "USDC"]},
        {"borrower": "bob",   "supply": {"WBTC": 1},  "borrow": {"DAI": 44_000},
         "route": ["WBTC", "WETH", "DAI"]},
    ],
    # Oracle moves applied after positions are opened
    "price_shocks": {
        "WETH": 270_000_000_000,
        "WBTC": 5_500_000_000_000,
    },
}

# ─────────────────────────────────────────────────────────────────────────────
# LOGGING CONFIGURATION
# ─────────────────────────────────────────────────────────────────────────────

import os as _os
_os.makedirs(DATA_DIR, exist_ok=True)

LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "detailed": {
            "format": "%(asctime)s [%(levelname)-8s] %(name)s | %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "brief": {
            "format": "[%(levelname)s] %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "brief",
            "level": "WARNING",
        },
        "file": {
            "class": "logging.FileHandler",
            "filename": LOG_FILE,
            "formatter": "detailed",
            "level": "DEBUG",
        },
    },
    "root": {
        "handlers": ["console", "file"],
        "level": "DEBUG",
    },
}


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for a given module name."""
    import logging.config
    logging.config.dictConfig(LOGGING_CONFIG)
    return logging.getLogger(name)
