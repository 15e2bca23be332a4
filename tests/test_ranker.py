import random

import pytest
from fakes import FakeAdvisor, make_ticket

from impactlens.analysis.ranker import RelevanceRanker, classify_relationship, rank_key, select_top
from impactlens.core.errors import UpstreamError, ValidationError
from impactlens.core.models import RelatedTicketCandidate


def _ranker(scores, **kwargs):
    return RelevanceRanker(FakeAdvisor(scores=scores, **kwargs), max_workers=4, timeout=5)


def test_threshold_keeps_only_qualifying_candidates():
    source = make_ticket("ABC-1", "Add login throttling")
    scores = {"ABC-2": 0.72, "ABC-3": 0.41, "ABC-4": 0.29, "ABC-5": 0.1, "ABC-6": 0.0, "ABC-7": 0.25}
    candidates = [make_ticket(k, f"Candidate {k}") for k in scores]
    out = _ranker(scores).rank(source, candidates, min_score=0.3, max_results=20)
    assert [c.key for c in out] == ["ABC-2", "ABC-3"]
    assert [c.relevance_score for c in out] == [0.72, 0.41]


def test_cap_one_picks_outright_winner():
    source = make_ticket("ABC-1")
    scores = {"B": 0.9, "C": 0.8, "A": 0.8, "D": 0.5, "E": 0.4}
    candidates = [make_ticket(k) for k in ["B", "C", "A", "D", "E"]]
    out = _ranker(scores).rank(source, candidates, min_score=0.3, max_results=1)
    assert [c.key for c in out] == ["B"]


def test_ties_broken_by_key_ascending():
    source = make_ticket("ABC-1")
    scores = {"B": 0.9, "C": 0.8, "A": 0.8, "D": 0.5, "E": 0.4}
    candidates = [make_ticket(k) for k in ["E", "D", "C", "B", "A"]]
    out = _ranker(scores).rank(source, candidates, min_score=0.3, max_results=3)
    assert [c.key for c in out] == ["B", "A", "C"]


def test_perfect_threshold_without_perfect_match_is_empty():
    source = make_ticket("ABC-1")
    scores = {"ABC-2": 0.99, "ABC-3": 0.5}
    out = _ranker(scores).rank(source, [make_ticket(k) for k in scores], min_score=1.0, max_results=5)
    assert out == []


def test_perfect_threshold_keeps_exact_match():
    source = make_ticket("ABC-1")
    scores = {"ABC-2": 1.0, "ABC-3": 0.999}
    out = _ranker(scores).rank(source, [make_ticket(k) for k in scores], min_score=1.0, max_results=5)
    assert [c.key for c in out] == ["ABC-2"]


def test_zero_max_results_skips_scoring():
    advisor = FakeAdvisor(scores={"ABC-2": 0.9})
    ranker = RelevanceRanker(advisor, timeout=5)
    assert ranker.rank(make_ticket("ABC-1"), [make_ticket("ABC-2")], min_score=0.0, max_results=0) == []
    assert advisor.score_calls == 0


def test_failed_and_invalid_scores_are_skipped():
    source = make_ticket("ABC-1")
    scores = {"ABC-2": 0.8, "ABC-3": 1.7, "ABC-4": float("nan"), "ABC-5": 0.6}
    candidates = [make_ticket(k) for k in [*scores, "ABC-6"]]
    out = _ranker(scores, failing_scores={"ABC-6"}).rank(source, candidates, min_score=0.0, max_results=10)
    assert [c.key for c in out] == ["ABC-2", "ABC-5"]


def test_all_scores_failing_raises_upstream_error():
    source = make_ticket("ABC-1")
    ranker = _ranker({}, failing_scores={"ABC-2", "ABC-3"})
    with pytest.raises(UpstreamError):
        ranker.rank(source, [make_ticket("ABC-2"), make_ticket("ABC-3")], min_score=0.3, max_results=5)


def test_invalid_bounds_rejected():
    ranker = _ranker({})
    with pytest.raises(ValidationError):
        ranker.rank(make_ticket("ABC-1"), [], min_score=1.5, max_results=5)
    with pytest.raises(ValidationError):
        ranker.rank(make_ticket("ABC-1"), [], min_score=0.5, max_results=-1)


def test_source_ticket_never_ranked():
    source = make_ticket("ABC-1")
    out = _ranker({"ABC-1": 1.0, "ABC-2": 0.5}).rank(
        source, [make_ticket("ABC-1"), make_ticket("ABC-2")], min_score=0.0, max_results=5
    )
    assert [c.key for c in out] == ["ABC-2"]


def test_select_top_matches_full_sort():
    rng = random.Random(7)
    for _ in range(50):
        pool = [
            RelatedTicketCandidate(ticket=make_ticket(f"K-{i}"), relevance_score=rng.choice([0.1, 0.3, 0.5, 0.5, 0.9]))
            for i in range(rng.randint(0, 30))
        ]
        rng.shuffle(pool)
        min_score = rng.choice([0.0, 0.3, 0.5, 1.0])
        max_results = rng.randint(0, 12)
        expected = sorted((c for c in pool if c.relevance_score >= min_score), key=rank_key)[:max_results]
        got = select_top(pool, min_score, max_results)
        assert got == expected
        assert len(got) <= max_results
        assert all(c.relevance_score >= min_score for c in got)


def test_dependency_relationship_detected_from_key_mention():
    source = make_ticket("ABC-1", "Add login throttling", "Blocked until ABC-12 ships the new session store")
    assert classify_relationship(source, make_ticket("ABC-12")) == "dependency"
    assert classify_relationship(source, make_ticket("ABC-123")) == "similar"
    back_ref = make_ticket("XYZ-4", "Follow-up", "Needs abc-1 first")
    assert classify_relationship(source, back_ref) == "dependency"
