from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

from loguru import logger

from . import config
from .errors import StructuredError, cancelled_error, classify_error
from .pipeline_types import Result

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with jitter.

    ``backoff(attempt) = min(base * 2**attempt + U(0, 0.3 * base * 2**attempt), max_delay)``
    """

    base_delay: float
    max_delay: float
    max_retries: int
    jitter_ratio: float = config.JITTER_RATIO

    @classmethod
    def from_profile(cls, profile: Tuple[float, float, int]) -> "RetryPolicy":
        base, cap, retries = profile
        return cls(base_delay=base, max_delay=cap, max_retries=retries)

    def exponential_delay(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)

    def backoff(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        rng = rng or random
        exp = self.exponential_delay(attempt)
        jitter = rng.uniform(0.0, self.jitter_ratio * exp)
        return min(exp + jitter, self.max_delay)


SEARCH_POLICY = RetryPolicy.from_profile(config.SEARCH_RETRY)
SCRAPER_POLICY = RetryPolicy.from_profile(config.SCRAPER_RETRY)
REDDIT_POLICY = RetryPolicy.from_profile(config.REDDIT_RETRY)
LLM_POLICY = RetryPolicy.from_profile(config.LLM_RETRY)
RESEARCH_POLICY = RetryPolicy.from_profile(config.RESEARCH_RETRY)


async def _pause(delay: float, sleep: SleepFn, cancel: Optional[asyncio.Event]) -> bool:
    """Sleep for ``delay``; return True if the cancel signal fired first."""
    if cancel is None:
        await sleep(delay)
        return False
    if cancel.is_set():
        return True
    sleeper = asyncio.ensure_future(sleep(delay))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        sleeper.cancel()
        waiter.cancel()
    return cancel.is_set()


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "operation",
    sleep: SleepFn = asyncio.sleep,
    rng: Optional[random.Random] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Result[T]:
    """
    Run ``operation`` for attempts ``0..policy.max_retries``.

    Retryable failures (see :func:`classify_error`) are retried after
    ``policy.backoff(attempt)``; a non-retryable failure or the last attempt
    ends the loop. Failures come back as ``Result(error=...)`` instead of
    being raised.
    """
    last_error: Optional[StructuredError] = None
    last_exc: Optional[BaseException] = None

    for attempt in range(policy.max_retries + 1):
        if cancel is not None and cancel.is_set():
            return Result(error=cancelled_error(), exception=last_exc)
        try:
            value = await operation()
        except Exception as exc:
            last_exc = exc
            last_error = classify_error(exc)
            if last_error.retryable and attempt < policy.max_retries:
                delay = policy.backoff(attempt, rng)
                logger.warning(
                    "{} failed ({}: {}); retry {}/{} in {:.2f}s",
                    label, last_error.kind.value, last_error.message,
                    attempt + 1, policy.max_retries, delay,
                )
                if await _pause(delay, sleep, cancel):
                    logger.info("{} cancelled during backoff", label)
                    return Result(error=cancelled_error(), exception=exc)
                continue
            logger.error(
                "{} failed after {} attempt(s) ({}: {})",
                label, attempt + 1, last_error.kind.value, last_error.message,
            )
            break
        else:
            if attempt:
                logger.info("{} succeeded after {} retries", label, attempt)
            return Result(value=value)

    return Result(error=last_error or classify_error(None), exception=last_exc)
