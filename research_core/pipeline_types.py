"""Typed containers shared across pipeline modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Iterable, List, Optional, TypeVar

from .errors import StructuredError, classify_error

T = TypeVar("T")


@dataclass(frozen=True)
class WorkUnit(Generic[T]):
    """One caller-supplied input (query, URL, reference) with its batch index."""

    index: int
    payload: T


def make_work_units(payloads: Iterable[T]) -> List[WorkUnit[T]]:
    return [WorkUnit(index=i, payload=p) for i, p in enumerate(payloads)]


@dataclass
class Result(Generic[T]):
    """Success value or structured failure, aligned to submission order."""

    value: Optional[T] = None
    error: Optional[StructuredError] = None
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failure(cls, exc: BaseException) -> "Result[T]":
        return cls(error=classify_error(exc), exception=exc)


@dataclass
class CandidateItem:
    """One entry returned for one query."""

    identifier: str
    title: str
    snippet: str
    position: int
    query: str
    date: Optional[str] = None


@dataclass
class AggregatedItem:
    key: str
    identifier: str
    title: str
    snippet: str
    best_position: int
    date: Optional[str] = None
    frequency: int = 0
    positions: List[int] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    cumulative_score: float = 0.0
    rank: int = 0
    score: float = 0.0
    consensus: bool = False


@dataclass
class AggregationResult:
    items: List[AggregatedItem]
    total_unique_items: int
    total_queries: int
    threshold_used: int
    note: Optional[str] = None


@dataclass
class AllocationPlan:
    total: int
    unit_count: int
    cap: Optional[int]
    per_unit: int
    allocations: List[int]
    capped_units: List[int] = field(default_factory=list)
    unallocated: int = 0

    @property
    def allocated(self) -> int:
        return sum(self.allocations)
