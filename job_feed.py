"""
job_feed.py
============
Liquidation jobs from the external decision process.

Which positions to liquidate and which route to take is decided elsewhere;
this module only fetches those decisions and turns them into
``LiquidationJob`` objects. Sources:

  - an HTTP endpoint (``API["job_feed"]``) returning ``{"jobs": [...]}`` or a
    bare list;
  - a local JSON file (``JOBS_FILE``) with the same shape.

Job shape::

    {
      "id": "job-1",
      "debt_asset": "USDC",
      "amount": 12000000000,
      "collateral_asset": "WETH",
      "borrower": "alice",
      "swap_path": ["aWETH", "WETH", "USDC"],
      "swap_pairs": ["aWETH/WETH", "WETH/USDC"],
      "swap_extras": ["0x", "0x"]
    }

Names are turned into addresses by the ``resolve`` callable the caller
supplies; plain addresses pass through unchanged.
"""

from __future__ import annotations

import json
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from config import API, HTTP, JOBS_FILE, get_logger
from models import LiquidationInstruction

logger = get_logger(__name__)

Resolver = Callable[[str], str]


def _identity(name: str) -> str:
    return name


def _hex_to_bytes(value: str) -> bytes:
    value = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(value)


@dataclass
class LiquidationJob:
    """One liquidation decided by the external process."""
    job_id: str
    debt_asset: str
    amount: int
    instruction: LiquidationInstruction
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, d: Dict[str, Any], resolve: Resolver = _identity) -> "LiquidationJob":
        amount = int(d["amount"])
        if amount <= 0:
            raise ValueError(f"job amount must be positive, got {amount}")
        instruction = LiquidationInstruction(
            collateral_asset=resolve(d["collateral_asset"]),
            borrower=resolve(d["borrower"]),
            swap_path=tuple(resolve(t) for t in d.get("swap_path", [])),
            swap_pairs=tuple(resolve(p) for p in d.get("swap_pairs", [])),
            swap_extras=tuple(_hex_to_bytes(e) for e in d.get("swap_extras", [])),
        )
        known = {"id", "debt_asset", "amount", "collateral_asset", "borrower",
                 "swap_path", "swap_pairs", "swap_extras"}
        return cls(
            job_id=str(d.get("id") or uuid.uuid4()),
            debt_asset=resolve(d["debt_asset"]),
            amount=amount,
            instruction=instruction,
            metadata={k: v for k, v in d.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        ins = self.instruction
        return {
            "id": self.job_id,
            "debt_asset": self.debt_asset,
            "amount": self.amount,
            "collateral_asset": ins.collateral_asset,
            "borrower": ins.borrower,
            "swap_path": list(ins.swap_path),
            "swap_pairs": list(ins.swap_pairs),
            "swap_extras": ["0x" + e.hex() for e in ins.swap_extras],
            **self.metadata,
        }


def parse_jobs(data: Any, resolve: Resolver = _identity) -> List[LiquidationJob]:
    """Parse a feed document; malformed entries are logged and skipped."""
    items = data.get("jobs", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        logger.warning("Job feed returned %s, expected a list", type(items).__name__)
        return []
    jobs: List[LiquidationJob] = []
    for item in items:
        try:
            jobs.append(LiquidationJob.from_dict(item, resolve))
        except (KeyError, ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping malformed job %r: %s", item, exc)
    return jobs


# ─────────────────────────────────────────────────────────────────────────────
# HTTP HELPERS
# ─────────────────────────────────────────────────────────────────────────────


def _get(
    url: str,
    params: Optional[Dict] = None,
    retries: int = HTTP["max_retries"],
) -> Tuple[Any, float]:
    """GET with retry + latency. Returns (data, latency_ms)."""
    headers = {"User-Agent": HTTP["user_agent"]}
    for attempt in range(1, retries + 1):
        try:
            t0 = time.perf_counter()
            resp = requests.get(
                url, params=params, headers=headers, timeout=HTTP["timeout"]
            )
            latency_ms = (time.perf_counter() - t0) * 1000
            resp.raise_for_status()
            return resp.json(), latency_ms
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else 0
            if status == 429:
                logger.warning("Rate limited on %s — sleeping %ss", url, HTTP["rate_limit_delay"])
                time.sleep(HTTP["rate_limit_delay"])
            else:
                logger.warning("[%d/%d] HTTP %d on %s", attempt, retries, status, url)
                if attempt == retries:
                    raise
                time.sleep(HTTP["retry_delay"] * attempt)
        except requests.exceptions.RequestException as exc:
            logger.warning("[%d/%d] Request error: %s", attempt, retries, exc)
            if attempt == retries:
                raise
            time.sleep(HTTP["retry_delay"] * attempt)
    raise RuntimeError(f"All retries exhausted for {url}")


# ─────────────────────────────────────────────────────────────────────────────
# SOURCES
# ─────────────────────────────────────────────────────────────────────────────


def fetch_jobs(url: str = API["job_feed"], resolve: Resolver = _identity) -> List[LiquidationJob]:
    """Fetch jobs from the decision service over HTTP."""
    data, latency = _get(url)
    jobs = parse_jobs(data, resolve)
    logger.info("Fetched %d job(s) from %s in %.0fms", len(jobs), url, latency)
    return jobs


def load_jobs(path: str = JOBS_FILE, resolve: Resolver = _identity) -> List[LiquidationJob]:
    """Read jobs from a JSON file; a missing file means no jobs."""
    if not os.path.exists(path):
        return []
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return parse_jobs(data, resolve)


def save_jobs(jobs: List[LiquidationJob], path: str = JOBS_FILE) -> None:
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump({"jobs": [j.to_dict() for j in jobs]}, f, indent=2)
    os.replace(tmp, path)


def next_jobs(resolve: Resolver = _identity, url: Optional[str] = None, path: str = JOBS_FILE) -> List[LiquidationJob]:
    """Jobs from the HTTP feed when one is configured, else from the file."""
    url = API["job_feed"] if url is None else url
    if url:
        return fetch_jobs(url, resolve)
    return load_jobs(path, resolve)
