"""
Bounded-concurrency execution for async work.

Both entry points start exactly ``C`` pull-loops (``C`` clamped to
``[1, len(items)]``) that share one cursor. Each loop claims the next
unclaimed index, awaits ``fn(item, index)`` and repeats until the cursor is
exhausted, so at most ``C`` units are in flight no matter how long any single
unit takes.

* :func:`bounded_map` (collect) returns plain values in input order. The
  first unrecovered exception stops further claims; in-flight siblings are
  awaited before it is re-raised.
* :func:`bounded_map_settled` (settle) returns one :class:`Result` per item in
  input order and never lets an item's failure abort the batch.

An optional ``cancel`` event stops the batch: in-flight units are cancelled,
nothing new is claimed, settle mode keeps the results that had already
resolved and marks the rest as cancelled, collect mode raises
:class:`CancelledByCaller`.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from loguru import logger

from .config import DEFAULT_CONCURRENCY
from .errors import CancelledByCaller, cancelled_error
from .pipeline_types import Result

T = TypeVar("T")
R = TypeVar("R")

_UNSET: Any = object()


def clamp_concurrency(concurrency: int, n_items: int) -> int:
    return max(1, min(int(concurrency), n_items))


async def _run_pool(
    items: Sequence[T],
    fn: Callable[[T, int], Awaitable[R]],
    concurrency: int,
    settle: bool,
    cancel: Optional[asyncio.Event],
) -> List[Any]:
    n = len(items)
    if n == 0:
        return []

    limit = clamp_concurrency(concurrency, n)
    results: List[Any] = [_UNSET] * n
    cursor = itertools.count()
    failures: List[BaseException] = []

    async def pull_loop() -> None:
        while not failures:
            index = next(cursor)
            if index >= n:
                return
            try:
                value = await fn(items[index], index)
            except Exception as exc:
                if settle:
                    logger.debug("Pool item {} failed: {}", index, exc)
                    results[index] = Result.failure(exc)
                    continue
                failures.append(exc)
                return
            results[index] = Result(value=value) if settle else value

    loops = [asyncio.ensure_future(pull_loop()) for _ in range(limit)]
    stopper = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
    try:
        pending = set(loops)
        while pending:
            watch = pending | {stopper} if stopper is not None else pending
            done, _ = await asyncio.wait(watch, return_when=asyncio.FIRST_COMPLETED)
            pending -= done
            if stopper is not None and stopper in done:
                break
    finally:
        for task in loops:
            if not task.done():
                task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)
        if stopper is not None and not stopper.done():
            stopper.cancel()

    if failures:
        raise failures[0]

    resolved = sum(1 for r in results if r is not _UNSET)
    if resolved < n:
        # cancel signal, or a unit cancelled from inside
        logger.info("Pool stopped with {}/{} items resolved", resolved, n)
        if not settle:
            raise CancelledByCaller(f"Batch cancelled after {resolved}/{n} items")
        return [r if r is not _UNSET else Result(error=cancelled_error()) for r in results]

    return results


async def bounded_map(
    items: Sequence[T],
    fn: Callable[[T, int], Awaitable[R]],
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel: Optional[asyncio.Event] = None,
) -> List[R]:
    """Run ``fn`` over ``items`` with at most ``concurrency`` in flight; results in input order."""
    return await _run_pool(items, fn, concurrency, settle=False, cancel=cancel)


async def bounded_map_settled(
    items: Sequence[T],
    fn: Callable[[T, int], Awaitable[R]],
    concurrency: int = DEFAULT_CONCURRENCY,
    cancel: Optional[asyncio.Event] = None,
) -> List[Result[R]]:
    """Like :func:`bounded_map` but every item settles into a :class:`Result`."""
    return await _run_pool(items, fn, concurrency, settle=True, cancel=cancel)
