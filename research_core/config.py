from __future__ import annotations

import os
from typing import Dict, List, Literal, Optional

from loguru import logger
from pydantic import BaseModel, Field


# ---------------------------
# Env parsing
# ---------------------------

def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    """
    Read an integer override from the environment, clamped to ``[lo, hi]``.
    Invalid values fall back to ``default`` with a warning.
    """
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        val = int(raw)
    except ValueError:
        logger.warning("Config: invalid integer {}={!r}, using default {}", name, raw, default)
        return default
    if val < lo:
        logger.warning("Config: {}={} below minimum {}, clamping", name, val, lo)
        return lo
    if val > hi:
        logger.warning("Config: {}={} above maximum {}, clamping", name, val, hi)
        return hi
    return val


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        val = float(raw)
    except ValueError:
        logger.warning("Config: invalid number {}={!r}, using default {}", name, raw, default)
        return default
    return min(max(val, lo), hi)


# ---------------------------
# Batch size policy
# ---------------------------

MIN_UNITS = 1
MAX_UNITS = 100


# ---------------------------
# Concurrency ceilings (per tool)
# ---------------------------

SEARCH_MAX_CONCURRENT = _env_int("RESEARCH_CORE_SEARCH_CONCURRENCY", 6, 1, 50)
SCRAPER_MAX_CONCURRENT = _env_int("RESEARCH_CORE_SCRAPER_CONCURRENCY", 30, 1, 100)
REDDIT_MAX_CONCURRENT = _env_int("RESEARCH_CORE_REDDIT_CONCURRENCY", 10, 1, 50)
RESEARCH_MAX_CONCURRENT = _env_int("RESEARCH_CORE_RESEARCH_CONCURRENCY", 3, 1, 10)
LLM_MAX_CONCURRENT = _env_int("RESEARCH_CORE_LLM_CONCURRENCY", 3, 1, 10)

DEFAULT_CONCURRENCY = 6


# ---------------------------
# Budgets
# ---------------------------

TOKEN_BUDGET_RESEARCH = _env_int("RESEARCH_CORE_RESEARCH_TOKENS", 32_000, 1_000, 1_000_000)
TOKEN_BUDGET_SCRAPER = _env_int("RESEARCH_CORE_SCRAPER_TOKENS", 32_000, 1_000, 1_000_000)

REDDIT_COMMENT_BUDGET = _env_int("RESEARCH_CORE_COMMENT_BUDGET", 1_000, 10, 100_000)
REDDIT_MAX_COMMENTS_PER_POST = _env_int("RESEARCH_CORE_COMMENTS_PER_POST", 200, 1, 10_000)


# ---------------------------
# Retry profiles: (base seconds, cap seconds, max retries)
# ---------------------------

# Fast, cheap calls retry quickly with few attempts; slow generation calls
# back off longer and try more often.
SEARCH_RETRY = (1.0, 8.0, 2)
SCRAPER_RETRY = (2.0, 8.0, 3)
REDDIT_RETRY = (2.0, 32.0, 5)
LLM_RETRY = (2.0, 30.0, 3)
RESEARCH_RETRY = (5.0, 60.0, 3)

JITTER_RATIO = 0.3


# ---------------------------
# Consensus ranking
# ---------------------------

# Click-through-rate style weights for result positions 1..10. Empirical
# values: keep them as they are.
CTR_WEIGHTS: Dict[int, float] = {
    1: 100.00,
    2: 60.00,
    3: 48.89,
    4: 33.33,
    5: 28.89,
    6: 26.44,
    7: 24.44,
    8: 17.78,
    9: 13.33,
    10: 12.56,
}

# positions beyond 10: max(0, TAIL_WEIGHT_START - (p - 10) * TAIL_WEIGHT_STEP)
TAIL_WEIGHT_START = 10.0
TAIL_WEIGHT_STEP = 0.5

# (start threshold, minimum accepted item count)
WEB_CONSENSUS = (3, 5)
REDDIT_CONSENSUS = (2, 3)

DEFAULT_HOST_PREFIX = "www."


# ---------------------------
# Credentials
# ---------------------------

CREDENTIAL_EXPIRY_MARGIN_S = _env_float("RESEARCH_CORE_CREDENTIAL_MARGIN", 60.0, 0.0, 3600.0)


# ---------------------------
# HTTP (provider helpers)
# ---------------------------

HTTP_CONNECT_TIMEOUT = 5.0
HTTP_READ_TIMEOUT = _env_float("RESEARCH_CORE_HTTP_TIMEOUT", 30.0, 1.0, 600.0)
HTTP_MAX_REDIRECTS = 3

HTTP_USER_AGENT = "research-core/0.3 (+https://example.com; contact=research@placeholder.com)"


# ---------------------------
# Pydantic models shared around the app
# ---------------------------

class CandidateIn(BaseModel):
    """
    One provider result as posted to ``/aggregate``. Position is implied by
    list order.
    """

    identifier: str = Field(..., min_length=1)
    title: str = ""
    snippet: str = ""
    date: Optional[str] = None


class AggregateRequest(BaseModel):
    searches: Dict[str, List[CandidateIn]]
    profile: Literal["web", "reddit"] = "web"


class AggregatedItemOut(BaseModel):
    identifier: str
    title: str
    snippet: str
    date: Optional[str] = None
    rank: int
    score: float
    frequency: int
    positions: List[int]
    queries: List[str]
    best_position: int
    consensus: bool


class AggregateResponse(BaseModel):
    items: List[AggregatedItemOut]
    total_unique_items: int
    total_queries: int
    threshold_used: int
    note: Optional[str] = None


class AllocateRequest(BaseModel):
    """
    Request body for POST /allocate. A negative total is accepted and yields
    an all-zero plan.
    """

    total: int
    units: int = Field(ge=0, le=MAX_UNITS)
    cap: Optional[int] = Field(default=None, ge=0)


class AllocateResponse(BaseModel):
    total: int
    unit_count: int
    cap: Optional[int] = None
    per_unit: int
    allocations: List[int]
    allocated: int
    unallocated: int


class HealthResponse(BaseModel):
    status: str
