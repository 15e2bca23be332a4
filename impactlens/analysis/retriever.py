"""Keyword-driven candidate retrieval with per-search failure isolation."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from impactlens.core.concurrency import fan_out
from impactlens.core.config import EXTERNAL_CALL_TIMEOUT_SECONDS, RETRIEVAL_MAX_WORKERS
from impactlens.core.errors import RetrievalError
from impactlens.core.interfaces import TicketSearcher
from impactlens.core.models import Ticket

logger = logging.getLogger(__name__)


def clean_keywords(keywords: Iterable[str], limit: int | None = None) -> list[str]:
    """Strip, drop blanks, collapse case-insensitive duplicates (first spelling wins)."""
    seen: set[str] = set()
    out: list[str] = []
    for kw in keywords:
        text = " ".join(str(kw or "").split())
        if not text or text.casefold() in seen:
            continue
        seen.add(text.casefold())
        out.append(text)
    if limit is not None:
        out = out[:limit]
    return out


class CandidateRetriever:
    def __init__(
        self,
        backends: Sequence[TicketSearcher],
        *,
        max_workers: int = RETRIEVAL_MAX_WORKERS,
        timeout: float | None = EXTERNAL_CALL_TIMEOUT_SECONDS,
    ):
        if not backends:
            raise ValueError("CandidateRetriever needs at least one search backend")
        self.backends = list(backends)
        self.max_workers = max_workers
        self.timeout = timeout

    def retrieve_candidates(self, ticket: Ticket, keywords: Iterable[str]) -> dict[str, Ticket]:
        """Union keyword search results into ``{key: ticket}``, excluding ``ticket`` itself.

        Each (keyword, backend) search is one unit of work. Failed units are
        logged and skipped; ``RetrievalError`` is raised only when all fail.
        """
        terms = clean_keywords(keywords)
        if not terms:
            logger.info("No keywords for %s; candidate set is empty", ticket.key)
            return {}
        units = [(term, backend) for term in terms for backend in self.backends]
        logger.info("Searching related tickets for %s using %d keywords", ticket.key, len(terms))
        outcomes = fan_out(
            lambda unit: unit[1].search(unit[0]),
            units,
            max_workers=self.max_workers,
            timeout=self.timeout,
            label="search",
        )

        candidates: dict[str, Ticket] = {}
        failures = 0
        for outcome in outcomes:
            term, backend = outcome.item
            if not outcome.ok:
                failures += 1
                logger.warning(
                    "Search for %r on %s failed: %s", term, type(backend).__name__, outcome.error
                )
                continue
            for found in outcome.result or ():
                if not found.key or found.key == ticket.key:
                    continue
                candidates.setdefault(found.key, found)
        if failures == len(outcomes):
            raise RetrievalError(f"All {failures} keyword searches failed for {ticket.key}")
        logger.info("Retrieved %d candidates for %s", len(candidates), ticket.key)
        return candidates
