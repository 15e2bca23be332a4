"""Insight synthesis: advisor orchestration plus shape validation."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from impactlens.core.concurrency import call_with_timeout
from impactlens.core.config import EXTERNAL_CALL_TIMEOUT_SECONDS
from impactlens.core.errors import ImpactLensError, SynthesisError, UpstreamError
from impactlens.core.interfaces import InsightAdvisor
from impactlens.core.models import GapFinding, RegressionArea, RelatedTicketCandidate, RiskLevel, Ticket

from .assembler import build_recommendations

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Insights:
    gap: GapFinding
    regression_areas: tuple[RegressionArea, ...]
    summary: str
    recommendations: tuple[str, ...]


def validate_gap(value) -> GapFinding:
    if isinstance(value, Mapping):
        try:
            value = GapFinding.from_dict(dict(value))
        except (KeyError, TypeError, ValueError) as exc:
            raise SynthesisError(f"Malformed gap analysis: {exc}") from exc
    if not isinstance(value, GapFinding):
        raise SynthesisError(f"Gap analysis has unexpected type {type(value).__name__}")
    if not isinstance(value.severity, RiskLevel):
        raise SynthesisError(f"Gap analysis has invalid severity {value.severity!r}")
    if not (value.category or "").strip() or not (value.description or "").strip():
        raise SynthesisError("Gap analysis is missing a category or description")
    return value


def validate_regression_areas(values) -> tuple[RegressionArea, ...]:
    if values is None or isinstance(values, (str, bytes, Mapping)):
        raise SynthesisError("Regression areas must be a sequence")
    areas: list[RegressionArea] = []
    for idx, value in enumerate(values):
        if isinstance(value, Mapping):
            try:
                value = RegressionArea.from_dict(dict(value))
            except (KeyError, TypeError, ValueError) as exc:
                raise SynthesisError(f"Malformed regression area #{idx}: {exc}") from exc
        if not isinstance(value, RegressionArea):
            raise SynthesisError(f"Regression area #{idx} has unexpected type {type(value).__name__}")
        if not isinstance(value.risk_level, RiskLevel):
            raise SynthesisError(f"Regression area {value.area!r} has invalid risk level {value.risk_level!r}")
        if not (value.area or "").strip():
            raise SynthesisError(f"Regression area #{idx} has no name")
        if not any((t or "").strip() for t in value.test_cases):
            raise SynthesisError(f"Regression area {value.area!r} has no test cases")
        areas.append(value)
    if not areas:
        raise SynthesisError("Advisor suggested no regression areas")
    return tuple(areas)


def validate_summary(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise SynthesisError("Advisor returned an empty summary")
    return value.strip()


class InsightSynthesizer:
    def __init__(self, advisor: InsightAdvisor, *, timeout: float | None = EXTERNAL_CALL_TIMEOUT_SECONDS):
        self.advisor = advisor
        self.timeout = timeout

    def _call(self, method, source: Ticket, related: Sequence[Ticket], label: str):
        try:
            return call_with_timeout(method, source, related, timeout=self.timeout, label=label)
        except ImpactLensError:
            raise
        except Exception as exc:
            raise UpstreamError(f"{label} failed for {source.key}: {exc}") from exc

    def synthesize(self, source: Ticket, related: Sequence[RelatedTicketCandidate]) -> Insights:
        tickets = [r.ticket for r in related]
        logger.info("Performing gap analysis for ticket: %s", source.key)
        gap = validate_gap(self._call(self.advisor.analyze_gaps, source, tickets, "gap analysis"))
        logger.info("Generating regression testing areas for ticket: %s", source.key)
        areas = validate_regression_areas(
            self._call(self.advisor.suggest_regression_areas, source, tickets, "regression areas")
        )
        summary = validate_summary(self._call(self.advisor.summarize, source, tickets, "summary"))
        recommendations = build_recommendations(related, [gap], areas)
        return Insights(gap=gap, regression_areas=areas, summary=summary, recommendations=tuple(recommendations))
