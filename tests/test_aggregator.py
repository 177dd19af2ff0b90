import pytest

from research_core.aggregator import (
    REDDIT_SEARCH,
    WEB_SEARCH,
    ConsensusProfile,
    aggregate_and_rank,
    build_lookup,
    candidates_from_results,
    lookup_item,
    merge_candidates,
    position_weight,
    rank_items,
    select_threshold,
)
from research_core.config import CTR_WEIGHTS


def _results(*urls):
    return [{"url": u, "title": f"title of {u}", "snippet": f"snippet of {u}"} for u in urls]


def _searches(mapping):
    return {q: candidates_from_results(q, rows) for q, rows in mapping.items()}


def test_position_weight_table_and_tail():
    assert position_weight(1) == 100.0
    assert position_weight(3) == 48.89
    assert position_weight(10) == 12.56
    assert position_weight(11) == 9.5
    assert position_weight(12) == 9.0
    assert position_weight(30) == 0.0
    assert position_weight(0) == 0.0
    weights = [position_weight(p) for p in range(1, 40)]
    assert weights == sorted(weights, reverse=True)
    assert [CTR_WEIGHTS[p] for p in range(1, 11)] == weights[:10]


def test_candidates_from_results_assigns_one_based_positions():
    rows = [{"link": "https://a.com"}, {"title": "no id"}, {"url": "https://b.com", "date": "2024-01-01"}]
    cands = candidates_from_results("q", rows)
    assert [c.identifier for c in cands] == ["https://a.com", "https://b.com"]
    # the skipped row still consumes position 2
    assert [c.position for c in cands] == [1, 3]
    assert cands[1].date == "2024-01-01"
    assert all(c.query == "q" for c in cands)


def test_variants_of_same_url_merge():
    searches = _searches(
        {
            "q1": _results("https://www.Example.com/page/"),
            "q2": _results("http://example.com/page"),
        }
    )
    merged = merge_candidates(searches)
    assert list(merged) == ["example.com/page"]
    item = merged["example.com/page"]
    assert item.frequency == 2
    assert item.queries == ["q1", "q2"]


def test_later_better_position_replaces_title_and_snippet():
    filler = [f"https://filler{i}.com" for i in range(4)]
    searches = {
        "q1": candidates_from_results("q1", _results("https://x.com")),
        "q2": candidates_from_results("q2", _results("https://x.com")),
        "q3": candidates_from_results(
            "q3",
            [{"url": u} for u in filler] + [{"url": "https://x.com", "title": "worse", "snippet": "worse"}],
        ),
    }
    merged = merge_candidates(searches)
    item = merged["x.com/"]
    assert item.frequency == 3
    assert item.positions == [1, 1, 5]
    assert item.best_position == 1
    assert item.title == "title of https://x.com"
    assert item.snippet == "snippet of https://x.com"


def test_running_best_not_first_seen_drives_metadata():
    searches = {
        "q1": candidates_from_results("q1", _pad(4) + [{"url": "https://x.com", "title": "p5"}]),
        "q2": candidates_from_results("q2", _pad(2) + [{"url": "https://x.com", "title": "p3"}]),
        "q3": candidates_from_results("q3", [{"url": "https://x.com", "title": "p1"}]),
        "q4": candidates_from_results("q4", _pad(1) + [{"url": "https://x.com", "title": "p2"}]),
    }
    item = merge_candidates(searches)["x.com/"]
    assert item.positions == [5, 3, 1, 2]
    assert item.best_position == 1
    assert item.title == "p1"


def _pad(n, prefix="pad"):
    return [{"url": f"https://{prefix}{i}.com"} for i in range(n)]


def test_frequency_matches_positions_and_queries():
    searches = _searches(
        {
            "a": _results("https://1.com", "https://2.com", "https://3.com"),
            "b": _results("https://2.com", "https://3.com"),
            "c": _results("https://3.com"),
        }
    )
    for item in merge_candidates(searches).values():
        assert item.frequency == len(item.positions) == len(item.queries)


def test_top_item_scores_100_and_ranks_are_dense():
    searches = _searches(
        {
            "a": _results("https://1.com", "https://2.com", "https://3.com"),
            "b": _results("https://1.com", "https://3.com", "https://2.com"),
            "c": _results("https://3.com", "https://1.com", "https://2.com"),
        }
    )
    result = aggregate_and_rank(searches, ConsensusProfile("t", 3, 1))
    assert result.items[0].score == 100.0
    assert result.items[0].identifier == "https://1.com"
    assert [it.rank for it in result.items] == [1, 2, 3]
    scores = [it.score for it in result.items]
    assert scores == sorted(scores, reverse=True)
    assert all(0.0 <= s <= 100.0 for s in scores)


def test_equal_scores_keep_merge_order():
    searches = _searches({"a": _results("https://first.com"), "b": _results("https://second.com")})
    result = aggregate_and_rank(searches, WEB_SEARCH)
    assert [it.identifier for it in result.items] == ["https://first.com", "https://second.com"]
    assert [it.score for it in result.items] == [100.0, 100.0]


def test_empty_input_is_empty_without_note():
    result = aggregate_and_rank({}, WEB_SEARCH)
    assert result.items == []
    assert result.total_unique_items == 0
    assert result.threshold_used == WEB_SEARCH.start_threshold
    assert result.note is None
    assert rank_items([]) == []


def test_queries_with_no_results_are_empty_without_note():
    result = aggregate_and_rank({"a": [], "b": []}, WEB_SEARCH)
    assert result.items == []
    assert result.total_queries == 2
    assert result.note is None


def test_disjoint_results_fall_through_to_threshold_one_with_note():
    searches = _searches(
        {
            "a": _results("https://a1.com", "https://a2.com"),
            "b": _results("https://b1.com", "https://b2.com"),
            "c": _results("https://c1.com"),
        }
    )
    result = aggregate_and_rank(searches, WEB_SEARCH)
    assert result.threshold_used == 1
    assert result.note is not None
    assert all(it.frequency == 1 for it in result.items)
    assert all(it.consensus for it in result.items)
    assert result.total_unique_items == 5


def test_threshold_falls_back_from_three_to_two():
    # five items in two queries, one item in all three
    common = [f"https://common{i}.com" for i in range(5)]
    searches = _searches(
        {
            "a": _results(*common, "https://only-a.com"),
            "b": _results(*common),
            "c": _results("https://common0.com", "https://only-c.com"),
        }
    )
    result = aggregate_and_rank(searches, WEB_SEARCH)
    assert result.threshold_used == 2
    assert "2" in result.note
    assert min(it.frequency for it in result.items) == result.threshold_used
    assert {it.identifier for it in result.items} == set(common)


def test_default_threshold_kept_without_note():
    urls = [f"https://u{i}.com" for i in range(5)]
    searches = _searches({q: _results(*urls) for q in ("a", "b", "c")})
    result = aggregate_and_rank(searches, WEB_SEARCH)
    assert result.threshold_used == 3
    assert result.note is None
    assert all(it.consensus and it.frequency == 3 for it in result.items)


def test_reddit_profile_starts_at_two():
    urls = [f"https://reddit.com/r/x/{i}" for i in range(3)]
    searches = _searches({"a": _results(*urls), "b": _results(*urls)})
    result = aggregate_and_rank(searches, REDDIT_SEARCH)
    assert result.threshold_used == 2
    assert result.note is None


@pytest.mark.parametrize("min_accept,expected", [(1, 3), (2, 2), (4, 1)])
def test_select_threshold(min_accept, expected):
    searches = _searches(
        {
            "a": _results("https://x.com", "https://y.com", "https://z.com"),
            "b": _results("https://x.com", "https://y.com"),
            "c": _results("https://x.com"),
        }
    )
    merged = list(merge_candidates(searches).values())
    assert select_threshold(merged, ConsensusProfile("t", 3, min_accept)) == expected


def test_lookup_by_raw_or_normalized_identifier():
    searches = _searches({"a": _results("https://www.Site.com/Page/"), "b": _results("https://other.com")})
    result = aggregate_and_rank(searches, WEB_SEARCH)
    lookup = build_lookup(result.items)
    assert lookup_item("http://site.com/page", lookup).identifier == "https://www.Site.com/Page/"
    assert lookup_item("HTTPS://OTHER.COM", lookup) is not None
    assert lookup_item("https://missing.com", lookup) is None


def test_malformed_url_does_not_abort_batch():
    searches = _searches(
        {
            "q1": [{"url": "http://[::1/broken"}, {"url": "https://ok.com"}],
            "q2": [{"url": "https://ok.com"}],
        }
    )
    result = aggregate_and_rank(searches, WEB_SEARCH)
    assert result.total_unique_items == 2
    assert result.items[0].identifier == "https://ok.com"
    assert "http://[::1/broken" in [it.identifier for it in result.items]


def test_empty_identifier_falls_through_to_url():
    rows = [{"identifier": "", "url": "https://a.com", "title": ""}, {"identifier": "", "link": "https://b.com"}]
    cands = candidates_from_results("q", rows)
    assert [c.identifier for c in cands] == ["https://a.com", "https://b.com"]
    assert cands[0].title == ""


def test_fallback_threshold_reported_even_when_items_agree_more():
    # too few items for any threshold: the floor of 1 is reported as lowered
    searches = _searches({q: _results("https://x.com", "https://y.com") for q in ("a", "b", "c")})
    result = aggregate_and_rank(searches, WEB_SEARCH)
    assert result.threshold_used == 1
    assert result.note is not None
    assert all(it.frequency == 3 for it in result.items)
    assert len(result.items) == 2
