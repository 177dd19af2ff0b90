"""
Batch orchestration: pool + retry + aggregation / allocation.

Tool handlers own the provider clients; they hand this module plain async
callables and get back index-aligned :class:`Result` lists plus either a
consensus ranking (search-style tools) or the allocation plan that
parameterised the calls (quota-style tools).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from loguru import logger

from . import config
from .aggregator import WEB_SEARCH, ConsensusProfile, aggregate_and_rank, candidates_from_results
from .budget import allocate, second_pass
from .concurrency import bounded_map_settled
from .pipeline_types import AggregationResult, AllocationPlan, CandidateItem, Result, WorkUnit, make_work_units
from .retry import (
    LLM_POLICY,
    REDDIT_POLICY,
    RESEARCH_POLICY,
    SCRAPER_POLICY,
    SEARCH_POLICY,
    RetryPolicy,
    SleepFn,
    with_retry,
)

T = TypeVar("T")
R = TypeVar("R")


async def fan_out(
    payloads: Sequence[T],
    call: Callable[[T], Awaitable[R]],
    *,
    policy: RetryPolicy,
    concurrency: int = config.DEFAULT_CONCURRENCY,
    label: str = "call",
    cancel: Optional[asyncio.Event] = None,
    sleep: SleepFn = asyncio.sleep,
) -> List[Result[R]]:
    """
    Run ``call`` over every payload under the worker pool, each call wrapped
    by :func:`with_retry`. Never raises for per-item failures; the returned
    list is aligned with ``payloads``.
    """
    units = make_work_units(payloads)
    if not units:
        return []

    async def run(unit: WorkUnit[T], index: int) -> Result[R]:
        return await with_retry(
            lambda: call(unit.payload),
            policy,
            label=f"{label}[{unit.index}]",
            sleep=sleep,
            cancel=cancel,
        )

    logger.info("{}: {} units, concurrency {}", label, len(units), concurrency)
    settled = await bounded_map_settled(units, run, concurrency, cancel=cancel)
    # unwrap the pool's Result around with_retry's Result
    results: List[Result[R]] = [s.value if s.ok else s for s in settled]
    failed = sum(1 for r in results if not r.ok)
    logger.info("{}: {}/{} succeeded", label, len(results) - failed, len(results))
    return results


# =============================================================================
# Search-style tools
# =============================================================================

@dataclass
class SearchOutcome:
    aggregation: AggregationResult
    per_query: Dict[str, List[CandidateItem]]
    results: List[Result[Any]]


async def search_and_rank(
    queries: Sequence[str],
    search: Callable[[str], Awaitable[Sequence[Any]]],
    *,
    profile: ConsensusProfile = WEB_SEARCH,
    policy: RetryPolicy = SEARCH_POLICY,
    concurrency: int = config.SEARCH_MAX_CONCURRENT,
    cancel: Optional[asyncio.Event] = None,
    sleep: SleepFn = asyncio.sleep,
) -> SearchOutcome:
    """
    Fan out one search per query and rank the merged results by consensus.
    Failed queries contribute an empty list and stay visible in ``results``.
    """
    # duplicate queries would double-count their results
    unique = list(dict.fromkeys(q for q in queries if q and q.strip()))
    results = await fan_out(
        unique, search, policy=policy, concurrency=concurrency,
        label=f"search:{profile.name}", cancel=cancel, sleep=sleep,
    )
    per_query: Dict[str, List[CandidateItem]] = {}
    for query, res in zip(unique, results):
        if not res.ok:
            logger.warning("Search for {!r} failed: {}", query, res.error.message)
        per_query[query] = candidates_from_results(query, res.value or []) if res.ok else []

    return SearchOutcome(
        aggregation=aggregate_and_rank(per_query, profile),
        per_query=per_query,
        results=results,
    )


# =============================================================================
# Quota-style tools
# =============================================================================

@dataclass
class QuotaOutcome:
    plan: AllocationPlan
    limits: List[int]
    results: List[Result[Any]]


async def fetch_with_quota(
    units: Sequence[T],
    fetch: Callable[[T, int], Awaitable[R]],
    *,
    total: int,
    cap: Optional[int],
    policy: RetryPolicy,
    concurrency: int,
    available: Optional[Callable[[R], int]] = None,
    label: str = "fetch",
    cancel: Optional[asyncio.Event] = None,
    sleep: SleepFn = asyncio.sleep,
) -> QuotaOutcome:
    """
    Allocate ``total`` across ``units`` and fetch each with its share.

    When ``available`` is given it reads, from a round-one result, how much
    content the unit really has; units holding more than their share are
    fetched again with the round-two limit from :func:`second_pass`.
    """
    plan = allocate(total, len(units), cap)
    indexed = list(zip(units, plan.allocations))

    results = await fan_out(
        indexed, lambda pair: fetch(pair[0], pair[1]), policy=policy,
        concurrency=concurrency, label=label, cancel=cancel, sleep=sleep,
    )
    limits = list(plan.allocations)
    if available is None or not units:
        return QuotaOutcome(plan=plan, limits=limits, results=results)

    # failed units report no content so their share feeds the surplus
    have = [available(r.value) if r.ok else 0 for r in results]
    final = second_pass(plan, have)
    redo = [i for i, (old, new) in enumerate(zip(limits, final)) if new > old]
    if redo:
        logger.info("{}: round two for {} units", label, len(redo))
        again = await fan_out(
            [(units[i], final[i]) for i in redo], lambda pair: fetch(pair[0], pair[1]),
            policy=policy, concurrency=concurrency, label=f"{label}:round2",
            cancel=cancel, sleep=sleep,
        )
        for i, res in zip(redo, again):
            # keep round one when the top-up fails
            if res.ok:
                results[i] = res
                limits[i] = final[i]
    return QuotaOutcome(plan=plan, limits=limits, results=results)


# =============================================================================
# Per-tool presets
# =============================================================================

@dataclass(frozen=True)
class QuotaTool:
    """Budget, cap, retry profile and concurrency ceiling of one quota-style tool."""

    name: str
    total: int
    cap: Optional[int]
    policy: RetryPolicy
    concurrency: int


SCRAPE_TOOL = QuotaTool(
    "scrape", config.TOKEN_BUDGET_SCRAPER, None, SCRAPER_POLICY, config.SCRAPER_MAX_CONCURRENT
)
REDDIT_COMMENTS_TOOL = QuotaTool(
    "reddit_comments", config.REDDIT_COMMENT_BUDGET, config.REDDIT_MAX_COMMENTS_PER_POST,
    REDDIT_POLICY, config.REDDIT_MAX_CONCURRENT,
)
RESEARCH_TOOL = QuotaTool(
    "research", config.TOKEN_BUDGET_RESEARCH, None, RESEARCH_POLICY, config.RESEARCH_MAX_CONCURRENT
)
LLM_EXTRACT_TOOL = QuotaTool(
    "llm_extract", config.TOKEN_BUDGET_RESEARCH, None, LLM_POLICY, config.LLM_MAX_CONCURRENT
)


async def run_quota_tool(
    tool: QuotaTool,
    units: Sequence[T],
    fetch: Callable[[T, int], Awaitable[R]],
    *,
    available: Optional[Callable[[R], int]] = None,
    cancel: Optional[asyncio.Event] = None,
    sleep: SleepFn = asyncio.sleep,
) -> QuotaOutcome:
    """:func:`fetch_with_quota` with ``tool``'s settings; rejects batches outside the size limits."""
    if not config.MIN_UNITS <= len(units) <= config.MAX_UNITS:
        raise ValueError(
            f"{tool.name}: batch of {len(units)} outside "
            f"[{config.MIN_UNITS}, {config.MAX_UNITS}]"
        )
    return await fetch_with_quota(
        units, fetch, total=tool.total, cap=tool.cap, policy=tool.policy,
        concurrency=tool.concurrency, available=available, label=tool.name,
        cancel=cancel, sleep=sleep,
    )
