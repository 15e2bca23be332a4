"""Report assembly and the fixed recommendation policy."""

from __future__ import annotations

import uuid
from collections.abc import Callable, Sequence
from datetime import datetime

import pytz

from impactlens.core.models import (
    AnalysisMetadata,
    AnalysisReport,
    AnalysisResult,
    GapFinding,
    RegressionArea,
    RelatedTicketCandidate,
    RiskLevel,
    Ticket,
)
from impactlens.core.status import is_terminal_status


def _keys(related: Sequence[RelatedTicketCandidate]) -> str:
    return ", ".join(r.key for r in related)


def build_recommendations(
    related: Sequence[RelatedTicketCandidate],
    gaps: Sequence[GapFinding],
    regression_areas: Sequence[RegressionArea],
) -> list[str]:
    """Deterministic recommendations derived from what the analysis found.

    Order is fixed: related-ticket review, open-ticket coordination,
    dependency sequencing, severe gaps, gap follow-ups, top regression area,
    the no-related fallback, and the documentation reminder last.
    """
    out: list[str] = []
    if related:
        noun = "ticket" if len(related) == 1 else "tickets"
        out.append(f"Review {len(related)} related {noun} for potential conflicts: {_keys(related)}")
        still_open = [r for r in related if not is_terminal_status(r.ticket.status)]
        if still_open:
            out.append(f"Coordinate with owners of open related tickets: {_keys(still_open)}")
        dependencies = [r for r in related if r.relationship_type == "dependency"]
        if dependencies:
            out.append(f"Sequence delivery against dependent tickets: {_keys(dependencies)}")
    for gap in gaps:
        if gap.severity >= RiskLevel.HIGH:
            out.append(f"Resolve {gap.severity.label} {gap.category} gap before implementation")
    for gap in gaps:
        out.extend(f"Gap follow-up: {s}" for s in gap.suggestions if s)
    if regression_areas:
        # max() keeps the first of equally risky areas
        top = max(regression_areas, key=lambda a: a.risk_level)
        out.append(f"Prioritize regression testing for {top.area} ({top.risk_level.label} risk)")
    if not related:
        out.append("No related tickets found; validate scope with stakeholders")
    out.append("Update documentation if needed")
    return out


class ReportAssembler:
    def __init__(
        self,
        *,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        clock: Callable[[], datetime] = lambda: datetime.now(tz=pytz.UTC),
    ):
        self.id_factory = id_factory
        self.clock = clock

    def assemble(
        self,
        source_key: str,
        ticket: Ticket,
        related: Sequence[RelatedTicketCandidate],
        gap: GapFinding,
        regression_areas: Sequence[RegressionArea],
        elapsed_ms: float,
        *,
        summary: str,
        model_used: str,
        recommendations: Sequence[str] | None = None,
    ) -> AnalysisResult:
        if recommendations is None:
            recommendations = build_recommendations(related, [gap], regression_areas)
        report = AnalysisReport(
            summary=summary,
            gaps_identified=(gap,),
            related_tickets=tuple(related),
            regression_areas=tuple(regression_areas),
            recommendations=tuple(recommendations),
        )
        metadata = AnalysisMetadata(
            processing_time_ms=float(elapsed_ms),
            tickets_analyzed=len(related) + 1,
            cache_hit=False,
            completed_at=self.clock(),
            model_used=model_used,
        )
        return AnalysisResult(
            analysis_id=self.id_factory(),
            ticket_key=source_key or ticket.key,
            status="completed",
            report=report,
            metadata=metadata,
        )
