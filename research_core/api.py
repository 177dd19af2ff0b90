"""
FastAPI façade over the aggregation and allocation core.

- POST /aggregate: per-query ordered results -> consensus ranking
- POST /allocate: total / units / cap -> allocation plan
- GET /health

Both POST handlers are pure; no provider calls happen here.
"""

from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from .aggregator import PROFILES, aggregate_and_rank, candidates_from_results
from .budget import allocate
from .config import (
    AggregateRequest,
    AggregateResponse,
    AggregatedItemOut,
    AllocateRequest,
    AllocateResponse,
    HealthResponse,
    MAX_UNITS,
)


app = FastAPI(title="research-core")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse(status="healthy")


@app.post("/aggregate", response_model=AggregateResponse)
def aggregate(req: AggregateRequest) -> AggregateResponse:
    if len(req.searches) > MAX_UNITS:
        raise HTTPException(status_code=422, detail=f"At most {MAX_UNITS} queries per request")

    profile = PROFILES[req.profile]
    searches = {
        query: candidates_from_results(query, [c.model_dump() for c in results])
        for query, results in req.searches.items()
    }
    result = aggregate_and_rank(searches, profile)
    logger.info(
        "Aggregated {} queries -> {} items (threshold {})",
        result.total_queries, len(result.items), result.threshold_used,
    )
    return AggregateResponse(
        items=[
            AggregatedItemOut(
                identifier=it.identifier,
                title=it.title,
                snippet=it.snippet,
                date=it.date,
                rank=it.rank,
                score=round(it.score, 2),
                frequency=it.frequency,
                positions=it.positions,
                queries=it.queries,
                best_position=it.best_position,
                consensus=it.consensus,
            )
            for it in result.items
        ],
        total_unique_items=result.total_unique_items,
        total_queries=result.total_queries,
        threshold_used=result.threshold_used,
        note=result.note,
    )


@app.post("/allocate", response_model=AllocateResponse)
def allocate_budget(req: AllocateRequest) -> AllocateResponse:
    plan = allocate(req.total, req.units, req.cap)
    return AllocateResponse(
        total=plan.total,
        unit_count=plan.unit_count,
        cap=plan.cap,
        per_unit=plan.per_unit,
        allocations=plan.allocations,
        allocated=plan.allocated,
        unallocated=plan.unallocated,
    )
