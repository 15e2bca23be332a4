"""Relevance ranking: parallel scoring, thresholding and deterministic top-K."""

from __future__ import annotations

import heapq
import logging
import math
import re
from collections.abc import Iterable

from impactlens.core.concurrency import fan_out
from impactlens.core.config import EXTERNAL_CALL_TIMEOUT_SECONDS, SCORING_MAX_WORKERS
from impactlens.core.errors import UpstreamError, ValidationError
from impactlens.core.interfaces import InsightAdvisor
from impactlens.core.models import RelatedTicketCandidate, Ticket

logger = logging.getLogger(__name__)

IMPACT_DESCRIPTIONS = {
    "dependency": "Explicitly linked work; changes may need to be sequenced together",
    "similar": "Potential impact on similar functionality",
}


def references(ticket: Ticket, other_key: str) -> bool:
    pattern = rf"(?<![A-Z0-9_-]){re.escape(other_key)}(?!\d)"
    return re.search(pattern, ticket.text(), flags=re.IGNORECASE) is not None


def classify_relationship(source: Ticket, candidate: Ticket) -> str:
    """``dependency`` when either ticket mentions the other's key, else ``similar``."""
    if references(source, candidate.key) or references(candidate, source.key):
        return "dependency"
    return "similar"


def rank_key(candidate: RelatedTicketCandidate) -> tuple[float, str]:
    """Total order: score descending, then ticket key ascending."""
    return (-candidate.relevance_score, candidate.key)


def select_top(
    scored: Iterable[RelatedTicketCandidate], min_score: float, max_results: int
) -> list[RelatedTicketCandidate]:
    """Threshold then take the best ``max_results``.

    ``heapq.nsmallest`` keeps a bounded heap but is documented to equal
    ``sorted(iterable, key=key)[:n]``, so the result matches a full sort.
    """
    if max_results <= 0:
        return []
    survivors = [c for c in scored if c.relevance_score >= min_score]
    return heapq.nsmallest(max_results, survivors, key=rank_key)


def _valid_score(value) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    score = float(value)
    if math.isnan(score) or not 0.0 <= score <= 1.0:
        return None
    return score


class RelevanceRanker:
    def __init__(
        self,
        advisor: InsightAdvisor,
        *,
        max_workers: int = SCORING_MAX_WORKERS,
        timeout: float | None = EXTERNAL_CALL_TIMEOUT_SECONDS,
    ):
        self.advisor = advisor
        self.max_workers = max_workers
        self.timeout = timeout

    def score_all(self, source: Ticket, candidates: Iterable[Ticket]) -> list[RelatedTicketCandidate]:
        pool = [c for c in candidates if c.key != source.key]
        if not pool:
            return []
        outcomes = fan_out(
            lambda cand: self.advisor.score(source, cand),
            pool,
            max_workers=self.max_workers,
            timeout=self.timeout,
            label="score",
        )
        scored: list[RelatedTicketCandidate] = []
        for outcome in outcomes:
            cand = outcome.item
            if not outcome.ok:
                logger.warning("Scoring %s against %s failed: %s", cand.key, source.key, outcome.error)
                continue
            score = _valid_score(outcome.result)
            if score is None:
                logger.warning("Discarding invalid score %r for %s", outcome.result, cand.key)
                continue
            relationship = classify_relationship(source, cand)
            scored.append(
                RelatedTicketCandidate(
                    ticket=cand,
                    relevance_score=score,
                    relationship_type=relationship,
                    impact_description=IMPACT_DESCRIPTIONS[relationship],
                )
            )
        if not scored:
            raise UpstreamError(f"Relevance scoring failed for all {len(pool)} candidates of {source.key}")
        return scored

    def rank(
        self,
        source: Ticket,
        candidates: Iterable[Ticket],
        min_score: float,
        max_results: int,
    ) -> list[RelatedTicketCandidate]:
        if not 0.0 <= min_score <= 1.0:
            raise ValidationError(f"min_score must be within [0, 1]; got {min_score}")
        if max_results < 0:
            raise ValidationError(f"max_results must be >= 0; got {max_results}")
        pool = list(candidates)
        if max_results == 0 or not pool:
            return []
        selected = select_top(self.score_all(source, pool), min_score, max_results)
        logger.info(
            "Ranked %d candidates for %s; %d selected (min_score=%.2f, max=%d)",
            len(pool),
            source.key,
            len(selected),
            min_score,
            max_results,
        )
        return selected
