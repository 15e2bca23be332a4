"""AnalysisService: validates requests and runs the pipeline under the cache."""

from __future__ import annotations

import logging
import re
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import replace

from impactlens.core.concurrency import call_with_timeout
from impactlens.core.config import (
    ANALYSIS_HISTORY_MAX_ENTRIES,
    DEPTH_KEYWORD_LIMITS,
    TICKET_KEY_PATTERN,
    AppSettings,
)
from impactlens.core.errors import ImpactLensError, NotFoundError, UpstreamError, ValidationError
from impactlens.core.interfaces import InsightAdvisor, TicketSource, TicketStore
from impactlens.core.models import AnalysisOptions, AnalysisResult, Ticket
from impactlens.core.store import TicketTTLPolicy

from .assembler import ReportAssembler
from .cache import AnalysisCache, fingerprint
from .ranker import RelevanceRanker
from .resolver import TicketResolver
from .retriever import CandidateRetriever, clean_keywords
from .synthesizer import InsightSynthesizer

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int | None, int | None], None]

PIPELINE_STEPS = 5
_KEY_RE = re.compile(TICKET_KEY_PATTERN)


def normalize_ticket_key(ticket_key: str) -> str:
    key = str(ticket_key or "").strip().upper()
    if not _KEY_RE.match(key):
        raise ValidationError(f"Ticket key must look like PROJECT-123; got {ticket_key!r}")
    return key


def ticket_view(ticket: Ticket, options: AnalysisOptions) -> Ticket:
    """The slice of a ticket the advisor is allowed to see under ``options``."""
    changes = {}
    if not options.include_comments and ticket.comments:
        changes["comments"] = ()
    if not options.include_attachments and ticket.attachments:
        changes["attachments"] = ()
    return replace(ticket, **changes) if changes else ticket


class AnalysisService:
    def __init__(
        self,
        source: TicketSource,
        store: TicketStore,
        advisor: InsightAdvisor,
        *,
        settings: AppSettings | None = None,
        cache: AnalysisCache | None = None,
        resolver: TicketResolver | None = None,
        assembler: ReportAssembler | None = None,
        history_limit: int = ANALYSIS_HISTORY_MAX_ENTRIES,
    ):
        settings = settings or AppSettings()
        timeout = settings.call_timeout_seconds
        self.advisor = advisor
        self.timeout = timeout
        self.cache = cache or AnalysisCache(
            ttl_seconds=settings.cache_ttl_seconds, max_entries=settings.cache_max_entries
        )
        self.resolver = resolver or TicketResolver(
            source,
            store,
            ttl_policy=TicketTTLPolicy(
                open_seconds=settings.ticket_ttl_open_seconds,
                terminal_seconds=settings.ticket_ttl_terminal_seconds,
            ),
            stale_after_seconds=settings.ticket_stale_after_seconds,
            timeout=timeout,
        )
        backends = {"store": store, "source": source}
        unknown = [name for name in settings.search_backends if name not in backends]
        if unknown or not settings.search_backends:
            raise ValueError(f"search_backends must be drawn from {sorted(backends)}; got {settings.search_backends}")
        self.retriever = CandidateRetriever(
            [backends[name] for name in settings.search_backends],
            max_workers=settings.retrieval_max_workers,
            timeout=timeout,
        )
        self.ranker = RelevanceRanker(advisor, max_workers=settings.scoring_max_workers, timeout=timeout)
        self.synthesizer = InsightSynthesizer(advisor, timeout=timeout)
        self.assembler = assembler or ReportAssembler()
        self._history: OrderedDict[str, AnalysisResult] = OrderedDict()
        self._history_fingerprints: dict[str, str] = {}
        self._history_limit = history_limit
        self._history_lock = threading.Lock()

    # ------------------ Entry Point ------------------
    def analyze(
        self,
        ticket_key: str,
        options: AnalysisOptions | None = None,
        *,
        progress: ProgressCallback | None = None,
    ) -> AnalysisResult:
        key = normalize_ticket_key(ticket_key)
        opts = (options or AnalysisOptions()).validated()
        fp = fingerprint(key, opts)
        logger.info("Starting analysis for ticket: %s", key)
        result = self.cache.get_or_compute(fp, lambda: self._run_pipeline(key, opts, fp, progress))
        if result.metadata.cache_hit:
            logger.info("Analysis for %s served from cache", key)
        return result

    # ------------------ Status / History ------------------
    def get_status(self, analysis_id: str) -> AnalysisResult:
        with self._history_lock:
            result = self._history.get(analysis_id)
        if result is None:
            raise NotFoundError(f"Analysis {analysis_id} not found")
        return result

    def get_history(self, page: int = 0, size: int = 20) -> list[AnalysisResult]:
        """Completed analyses, newest first."""
        if page < 0 or size < 1:
            raise ValidationError(f"Invalid page ({page}) or size ({size})")
        with self._history_lock:
            newest_first = list(reversed(self._history.values()))
        start = page * size
        return newest_first[start : start + size]

    def delete_analysis(self, analysis_id: str) -> None:
        with self._history_lock:
            if self._history.pop(analysis_id, None) is None:
                raise NotFoundError(f"Analysis {analysis_id} not found")
            fp = self._history_fingerprints.pop(analysis_id, None)
        if fp is not None:
            self.cache.invalidate(fp)
        logger.info("Deleted analysis: %s", analysis_id)

    def purge_expired_tickets(self) -> int:
        return self.resolver.purge_expired()

    # ------------------ Pipeline ------------------
    def _run_pipeline(
        self,
        key: str,
        options: AnalysisOptions,
        fp: str,
        progress: ProgressCallback | None,
    ) -> AnalysisResult:
        started = time.perf_counter()

        def step(message: str, idx: int):
            if progress:
                progress(message, idx, PIPELINE_STEPS)

        try:
            step(f"Resolving {key}", 0)
            ticket = self.resolver.resolve(key)
            view = ticket_view(ticket, options)

            step("Extracting keywords", 1)
            keywords = self._extract_keywords(view, options)
            candidates = self.retriever.retrieve_candidates(view, keywords)

            step(f"Scoring {len(candidates)} candidate tickets", 2)
            related = self.ranker.rank(
                view,
                candidates.values(),
                options.min_relevance_score,
                options.max_related_tickets,
            )
            logger.info("Found %d related tickets", len(related))

            step("Synthesizing insights", 3)
            insights = self.synthesizer.synthesize(view, related)

            step("Assembling report", 4)
            elapsed_ms = (time.perf_counter() - started) * 1000.0
            result = self.assembler.assemble(
                key,
                ticket,
                related,
                insights.gap,
                insights.regression_areas,
                elapsed_ms,
                summary=insights.summary,
                model_used=getattr(self.advisor, "model_name", "unknown"),
                recommendations=insights.recommendations,
            )
        except ImpactLensError as exc:
            logger.error("Analysis failed for ticket %s: %s", key, exc)
            raise
        self._remember(result, fp)
        step("Done", PIPELINE_STEPS)
        logger.info("Analysis completed for ticket: %s in %.0fms", key, result.metadata.processing_time_ms)
        return result

    def _extract_keywords(self, ticket: Ticket, options: AnalysisOptions) -> list[str]:
        try:
            raw = call_with_timeout(self.advisor.extract_keywords, ticket, timeout=self.timeout, label="keywords")
        except ImpactLensError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Keyword extraction failed for {ticket.key}: {exc}") from exc
        if isinstance(raw, str):
            raw = [raw]
        limit = DEPTH_KEYWORD_LIMITS[options.analysis_depth]
        keywords = clean_keywords(raw or (), limit=limit)
        logger.debug("Keywords for %s: %s", ticket.key, keywords)
        return keywords

    def _remember(self, result: AnalysisResult, fp: str) -> None:
        with self._history_lock:
            self._history[result.analysis_id] = result
            self._history_fingerprints[result.analysis_id] = fp
            while len(self._history) > self._history_limit:
                old_id, _ = self._history.popitem(last=False)
                self._history_fingerprints.pop(old_id, None)
