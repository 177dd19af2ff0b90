"""
Cross-query consensus ranking.

Several queries about the same topic each return an ordered result list.
Items that keep showing up across queries, and near the top, are the most
relevant. This module:

- normalises identifiers so that trivially different URLs merge
- weights every occurrence by its position (CTR-style lookup table)
- accumulates frequency, positions, source queries and a cumulative score
- keeps the title/snippet of the best-ranked occurrence seen so far
- normalises scores to 0..100 and assigns ranks
- picks the highest frequency threshold that still yields enough items

The same algorithm serves broad web search and narrower corpora (e.g. Reddit);
only the :class:`ConsensusProfile` differs.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np
from loguru import logger

from . import config
from .pipeline_types import AggregatedItem, AggregationResult, CandidateItem
from .utils.urls import normalize_identifier


# =============================================================================
# Profiles
# =============================================================================

@dataclass(frozen=True)
class ConsensusProfile:
    name: str
    start_threshold: int
    min_accept_count: int


WEB_SEARCH = ConsensusProfile("web", *config.WEB_CONSENSUS)
REDDIT_SEARCH = ConsensusProfile("reddit", *config.REDDIT_CONSENSUS)

PROFILES: Dict[str, ConsensusProfile] = {
    WEB_SEARCH.name: WEB_SEARCH,
    REDDIT_SEARCH.name: REDDIT_SEARCH,
}


# =============================================================================
# Position weights
# =============================================================================

def position_weight(position: int) -> float:
    """
    Weight of one occurrence at a 1-based result ``position``.

    Positions 1..10 use the fixed ``CTR_WEIGHTS`` table; beyond that the
    weight decays linearly by 0.5 per position and bottoms out at 0.
    """
    if position < 1:
        return 0.0
    if position <= 10:
        return config.CTR_WEIGHTS.get(position, 0.0)
    return max(0.0, config.TAIL_WEIGHT_START - (position - 10) * config.TAIL_WEIGHT_STEP)


# =============================================================================
# Input helpers
# =============================================================================

def _field(raw: Any, *names: str) -> Any:
    """First non-empty value among ``names``; an empty string falls through to the next name."""
    for name in names:
        val = raw.get(name) if isinstance(raw, Mapping) else getattr(raw, name, None)
        if val is not None and val != "":
            return val
    return None


def candidates_from_results(query: str, results: Iterable[Any]) -> List[CandidateItem]:
    """
    Turn one query's ordered provider results into :class:`CandidateItem`s.

    Results may be mappings or objects exposing ``identifier``/``url``/``link``,
    ``title``, ``snippet`` and optionally ``date``. Position is the 1-based
    index in ``results``; entries without an identifier are skipped but still
    consume their position.
    """
    out: List[CandidateItem] = []
    for idx, raw in enumerate(results):
        ident = _field(raw, "identifier", "url", "link")
        if not ident:
            continue
        out.append(
            CandidateItem(
                identifier=str(ident),
                title=str(_field(raw, "title") or ""),
                snippet=str(_field(raw, "snippet", "description") or ""),
                position=idx + 1,
                query=query,
                date=_field(raw, "date"),
            )
        )
    return out


# =============================================================================
# Merge
# =============================================================================

def _new_item(key: str, c: CandidateItem) -> AggregatedItem:
    return AggregatedItem(
        key=key,
        identifier=c.identifier,
        title=c.title,
        snippet=c.snippet,
        date=c.date,
        best_position=c.position,
        frequency=1,
        positions=[c.position],
        queries=[c.query],
        cumulative_score=position_weight(c.position),
    )


def merge_candidates(searches: Mapping[str, Sequence[CandidateItem]]) -> Dict[str, AggregatedItem]:
    """
    Merge per-query candidate lists into one item per normalised identifier.

    Insertion order follows query order, then position within each query.
    Title/snippet/date always belong to the lowest position recorded so far.
    """
    merged: Dict[str, AggregatedItem] = {}
    for query, candidates in searches.items():
        for c in candidates or []:
            key = normalize_identifier(c.identifier)
            if not key:
                continue
            # keep the label the caller grouped by
            if c.query != query:
                c = replace(c, query=query)

            item = merged.get(key)
            if item is None:
                merged[key] = _new_item(key, c)
                continue

            item.frequency += 1
            item.positions.append(c.position)
            item.queries.append(c.query)
            item.cumulative_score += position_weight(c.position)
            # compare against the running best, not the first occurrence
            if c.position < item.best_position:
                item.best_position = c.position
                item.title = c.title
                item.snippet = c.snippet
                item.date = c.date
    return merged


# =============================================================================
# Scoring / ranking
# =============================================================================

def filter_by_frequency(items: Iterable[AggregatedItem], min_frequency: int) -> List[AggregatedItem]:
    return [it for it in items if it.frequency >= min_frequency]


def normalize_scores(raw: Sequence[float]) -> np.ndarray:
    """Scale scores so the maximum becomes 100; all-zero input stays zero."""
    arr = np.asarray(raw, dtype="float64")
    if arr.size == 0:
        return arr
    top = float(arr.max())
    if top <= 0:
        return np.zeros_like(arr)
    return arr / top * 100.0


def rank_items(items: Sequence[AggregatedItem], threshold: int = 1) -> List[AggregatedItem]:
    """
    Sort by cumulative score (descending, stable) and assign normalised score,
    rank and consensus flag. Returns copies; the inputs are left untouched.
    """
    if not items:
        return []
    ordered = sorted(items, key=lambda it: it.cumulative_score, reverse=True)
    scores = normalize_scores([it.cumulative_score for it in ordered])
    return [
        replace(
            it,
            positions=list(it.positions),
            queries=list(it.queries),
            rank=i + 1,
            score=float(scores[i]),
            consensus=it.frequency >= threshold,
        )
        for i, it in enumerate(ordered)
    ]


def threshold_note(threshold: int, profile: ConsensusProfile) -> Optional[str]:
    if threshold >= profile.start_threshold:
        return None
    return (
        f"Note: Frequency filter lowered to >={threshold} "
        f"(default >={profile.start_threshold}) due to result diversity across queries."
    )


def select_threshold(
    merged: Sequence[AggregatedItem],
    profile: ConsensusProfile,
) -> int:
    """
    Highest threshold from ``profile.start_threshold`` down to 1 that keeps at
    least ``profile.min_accept_count`` items; 1 if none does.

    The floor of 1 is reported as is, even when every surviving item was seen
    by more queries than that.
    """
    for threshold in range(max(profile.start_threshold, 1), 0, -1):
        count = sum(1 for it in merged if it.frequency >= threshold)
        if count >= profile.min_accept_count:
            return threshold
    return 1


def aggregate_and_rank(
    searches: Mapping[str, Sequence[CandidateItem]],
    profile: ConsensusProfile = WEB_SEARCH,
) -> AggregationResult:
    """
    Full pipeline: merge, choose the frequency threshold, rank the survivors.

    Parameters
    ----------
    searches :
        ``query -> ordered CandidateItem list``.
    profile :
        Start threshold and minimum accepted item count.

    Returns
    -------
    AggregationResult
        Ranked items plus ``total_unique_items``, ``total_queries``, the
        threshold used and an advisory note when it was lowered.
    """
    merged = merge_candidates(searches)
    total_queries = len(searches)

    if not merged:
        return AggregationResult(
            items=[],
            total_unique_items=0,
            total_queries=total_queries,
            threshold_used=profile.start_threshold,
            note=None,
        )

    threshold = select_threshold(list(merged.values()), profile)
    ranked = rank_items(filter_by_frequency(merged.values(), threshold), threshold)
    note = threshold_note(threshold, profile)
    if note:
        logger.info(
            "Consensus ({}): threshold lowered {} -> {} ({} unique items, {} queries)",
            profile.name, profile.start_threshold, threshold, len(merged), total_queries,
        )
    else:
        logger.debug(
            "Consensus ({}): {} items at threshold {}", profile.name, len(ranked), threshold
        )

    return AggregationResult(
        items=ranked,
        total_unique_items=len(merged),
        total_queries=total_queries,
        threshold_used=threshold,
        note=note,
    )


# =============================================================================
# Lookup
# =============================================================================

def build_lookup(items: Iterable[AggregatedItem]) -> Dict[str, AggregatedItem]:
    """Index ranked items by normalised key and by lower-cased raw identifier."""
    lookup: Dict[str, AggregatedItem] = {}
    for it in items:
        lookup[it.key] = it
        lookup[it.identifier.lower()] = it
    return lookup


def lookup_item(identifier: str, lookup: Mapping[str, AggregatedItem]) -> Optional[AggregatedItem]:
    return lookup.get(normalize_identifier(identifier)) or lookup.get((identifier or "").lower())
