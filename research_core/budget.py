"""
Fair-share allocation of a fixed budget across a variable-size batch.

Two shapes:

* uncapped (token budgets): every unit gets ``floor(total / n)``;
* capped (per-item quotas such as comment counts): every unit gets
  ``min(floor(total / n), cap)``; leftover is spread over the capped units
  but never beyond ``cap``. Whatever cannot be placed is reported as
  ``unallocated`` on the plan instead of being handed to uncapped units.

:func:`second_pass` models the real two-round fetch: round one requests the
plan's allocation per unit; round two asks for more only for units whose
upstream content exceeds their round-one share, and only while the global
surplus lasts.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from loguru import logger

from .pipeline_types import AllocationPlan


def token_allocation(units: int, budget: int) -> int:
    """Per-unit share of a token budget: ``floor(budget / max(units, 1))``."""
    if budget <= 0:
        return 0
    return int(budget) // max(int(units), 1)


def _spread(
    amounts: List[int],
    eligible: Sequence[int],
    surplus: int,
    limit: Callable[[int], int],
) -> int:
    """
    Hand ``surplus`` out evenly to the ``eligible`` indices of ``amounts``
    (mutated in place), never raising a unit past ``limit(i)``. Returns what
    could not be placed.
    """
    while surplus > 0:
        open_units = [i for i in eligible if amounts[i] < limit(i)]
        if not open_units:
            break
        share = surplus // len(open_units)
        if share == 0:
            # fewer units left than surplus: one each, in batch order
            for i in open_units[:surplus]:
                amounts[i] += 1
                surplus -= 1
            continue
        for i in open_units:
            grant = min(share, limit(i) - amounts[i], surplus)
            amounts[i] += grant
            surplus -= grant
    return surplus


def allocate(total: int, units: int, cap: Optional[int] = None) -> AllocationPlan:
    """
    Split ``total`` across ``units`` with an optional per-unit ``cap``.

    total: budget to distribute (negative is treated as 0)
    units: batch size; ``<= 0`` yields an empty plan (per-unit share computed as n=1)
    cap: per-unit maximum, or None for the uncapped token-budget shape
    """
    budget = max(int(total), 0)
    n = int(units)
    naive = budget // max(n, 1)

    if n <= 0:
        return AllocationPlan(
            total=budget, unit_count=0, cap=cap, per_unit=naive,
            allocations=[], unallocated=budget,
        )

    if cap is None:
        allocations = [naive] * n
        return AllocationPlan(
            total=budget, unit_count=n, cap=None, per_unit=naive,
            allocations=allocations, unallocated=budget - naive * n,
        )

    cap = max(int(cap), 0)
    per_unit = min(naive, cap)
    allocations = [per_unit] * n
    capped_units = [i for i in range(n) if naive > cap]
    leftover = budget - sum(allocations)

    if leftover > 0 and capped_units:
        leftover = _spread(allocations, capped_units, leftover, lambda i: cap)
        if leftover > 0:
            logger.warning(
                "Allocation cap {} reached on {}/{} units; {} of {} left unallocated",
                cap, len(capped_units), n, leftover, budget,
            )

    return AllocationPlan(
        total=budget,
        unit_count=n,
        cap=cap,
        per_unit=per_unit,
        allocations=allocations,
        capped_units=capped_units,
        unallocated=leftover,
    )


def second_pass(plan: AllocationPlan, available: Sequence[int]) -> List[int]:
    """
    Final per-unit amounts after a round-two top-up.

    available[i]: how much content unit ``i`` actually has upstream.

    Round one consumes ``min(allocation, available)`` per unit. The surplus
    ``total - consumed`` goes evenly to units with more content than their
    allocation, bounded by their availability and the plan's cap.
    """
    have = [max(int(a), 0) for a in available[: len(plan.allocations)]]
    if len(have) < len(plan.allocations):
        logger.warning(
            "Second pass: availability known for {}/{} units; the rest keep round one",
            len(have), len(plan.allocations),
        )
        have += plan.allocations[len(have):]
    amounts = [min(alloc, av) for alloc, av in zip(plan.allocations, have)]
    surplus = plan.total - sum(amounts)
    wanting = [i for i, (alloc, av) in enumerate(zip(plan.allocations, have)) if av > alloc]

    if surplus <= 0 or not wanting:
        return amounts

    def limit(i: int) -> int:
        return have[i] if plan.cap is None else min(have[i], plan.cap)

    left = _spread(amounts, wanting, surplus, limit)
    logger.debug(
        "Second pass: {} units topped up, surplus {} -> {}", len(wanting), surplus, left
    )
    return amounts
