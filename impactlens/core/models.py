"""Domain data models for tickets, analysis options, and analysis results."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any

from .config import (
    ANALYSIS_DEPTHS,
    DEFAULT_ANALYSIS_DEPTH,
    DEFAULT_INCLUDE_ATTACHMENTS,
    DEFAULT_INCLUDE_COMMENTS,
    DEFAULT_MAX_RELATED_TICKETS,
    DEFAULT_MIN_RELEVANCE_SCORE,
)
from .errors import ValidationError


class RiskLevel(IntEnum):
    """Ordered severity scale shared by gap findings and regression areas."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: Any) -> RiskLevel:
        """Map a raw severity value to a level; raise ``ValueError`` when unknown.

        Accepts enum members, canonical names in any case, and the usual
        tracker vocabulary (``minor``, ``major``, ``blocker`` ...).
        """
        if isinstance(value, cls):
            return value
        if value is None or isinstance(value, bool):
            raise ValueError(f"Invalid risk level: {value!r}")
        text = str(value).strip().lower()
        if text in RISK_LEVEL_ALIASES:
            return RISK_LEVEL_ALIASES[text]
        raise ValueError(f"Invalid risk level: {value!r}")


RISK_LEVEL_ALIASES: dict[str, RiskLevel] = {
    "low": RiskLevel.LOW,
    "minor": RiskLevel.LOW,
    "trivial": RiskLevel.LOW,
    "medium": RiskLevel.MEDIUM,
    "moderate": RiskLevel.MEDIUM,
    "high": RiskLevel.HIGH,
    "major": RiskLevel.HIGH,
    "critical": RiskLevel.CRITICAL,
    "blocker": RiskLevel.CRITICAL,
}


@dataclass(slots=True, frozen=True)
class Ticket:
    key: str
    ticket_id: str | None = None
    summary: str | None = None
    description: str | None = None
    status: str | None = None
    priority: str | None = None
    assignee: str | None = None
    reporter: str | None = None
    labels: tuple[str, ...] = ()
    comments: tuple[str, ...] = ()
    attachments: tuple[str, ...] = ()
    created: datetime | None = None
    updated: datetime | None = None
    last_synced: datetime | None = None
    ttl_expires_at: datetime | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def is_expired(self, now: datetime) -> bool:
        return self.ttl_expires_at is not None and self.ttl_expires_at <= now

    def text(self) -> str:
        """Searchable/advisory text: summary, description and comment bodies."""
        parts = [self.summary or "", self.description or "", *self.comments]
        return "\n".join(p for p in parts if p)


@dataclass(slots=True, frozen=True)
class RelatedTicketCandidate:
    ticket: Ticket
    relevance_score: float
    relationship_type: str = "similar"
    impact_description: str = ""

    @property
    def key(self) -> str:
        return self.ticket.key

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticketKey": self.ticket.key,
            "summary": self.ticket.summary,
            "status": self.ticket.status,
            "priority": self.ticket.priority,
            "relevanceScore": self.relevance_score,
            "relationshipType": self.relationship_type,
            "impactDescription": self.impact_description,
        }


@dataclass(slots=True, frozen=True)
class GapFinding:
    category: str
    description: str
    severity: RiskLevel
    impact: str = ""
    suggestions: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GapFinding:
        return cls(
            category=str(data["category"]),
            description=str(data["description"]),
            severity=RiskLevel.parse(data["severity"]),
            impact=str(data.get("impact") or ""),
            suggestions=tuple(str(s) for s in data.get("suggestions") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["severity"] = self.severity.label
        out["suggestions"] = list(self.suggestions)
        return out


@dataclass(slots=True, frozen=True)
class RegressionArea:
    area: str
    description: str
    risk_level: RiskLevel
    test_cases: tuple[str, ...]
    rationale: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegressionArea:
        return cls(
            area=str(data["area"]),
            description=str(data.get("description") or ""),
            risk_level=RiskLevel.parse(data.get("risk_level", data.get("riskLevel"))),
            test_cases=tuple(str(t) for t in data.get("test_cases", data.get("testCases")) or ()),
            rationale=str(data.get("rationale") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "area": self.area,
            "description": self.description,
            "riskLevel": self.risk_level.label,
            "testCases": list(self.test_cases),
            "rationale": self.rationale,
        }


@dataclass(slots=True, frozen=True)
class AnalysisReport:
    summary: str
    gaps_identified: tuple[GapFinding, ...]
    related_tickets: tuple[RelatedTicketCandidate, ...]
    regression_areas: tuple[RegressionArea, ...]
    recommendations: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "gapsIdentified": [g.to_dict() for g in self.gaps_identified],
            "relatedTickets": [r.to_dict() for r in self.related_tickets],
            "regressionAreas": [a.to_dict() for a in self.regression_areas],
            "recommendations": list(self.recommendations),
        }


@dataclass(slots=True, frozen=True)
class AnalysisMetadata:
    processing_time_ms: float
    tickets_analyzed: int
    cache_hit: bool
    completed_at: datetime
    model_used: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "processingTime": self.processing_time_ms,
            "ticketsAnalyzed": self.tickets_analyzed,
            "cacheHit": self.cache_hit,
            "completedAt": self.completed_at.isoformat(),
            "modelUsed": self.model_used,
        }


ANALYSIS_STATUSES = ("pending", "completed", "failed")


@dataclass(slots=True, frozen=True)
class AnalysisResult:
    analysis_id: str
    ticket_key: str
    status: str
    report: AnalysisReport
    metadata: AnalysisMetadata

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysisId": self.analysis_id,
            "ticketKey": self.ticket_key,
            "status": self.status,
            "report": self.report.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


@dataclass(slots=True, frozen=True)
class AnalysisOptions:
    include_comments: bool = DEFAULT_INCLUDE_COMMENTS
    include_attachments: bool = DEFAULT_INCLUDE_ATTACHMENTS
    analysis_depth: str = DEFAULT_ANALYSIS_DEPTH
    max_related_tickets: int = DEFAULT_MAX_RELATED_TICKETS
    min_relevance_score: float = DEFAULT_MIN_RELEVANCE_SCORE

    def validated(self) -> AnalysisOptions:
        """Return a normalized copy, raising ``ValidationError`` on bad values."""
        depth = str(self.analysis_depth or "").strip().lower()
        if depth not in ANALYSIS_DEPTHS:
            raise ValidationError(
                f"analysis_depth must be one of {', '.join(ANALYSIS_DEPTHS)}; got {self.analysis_depth!r}"
            )
        max_related = self.max_related_tickets
        if isinstance(max_related, bool) or not isinstance(max_related, int):
            raise ValidationError(f"max_related_tickets must be an integer; got {max_related!r}")
        if max_related < 0:
            raise ValidationError(f"max_related_tickets must be >= 0; got {max_related}")
        score = self.min_relevance_score
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            raise ValidationError(f"min_relevance_score must be a number; got {score!r}")
        if math.isnan(score) or not 0.0 <= score <= 1.0:
            raise ValidationError(f"min_relevance_score must be within [0, 1]; got {score}")
        return AnalysisOptions(
            include_comments=bool(self.include_comments),
            include_attachments=bool(self.include_attachments),
            analysis_depth=depth,
            max_related_tickets=max_related,
            min_relevance_score=float(score),
        )

    def normalized(self) -> dict[str, Any]:
        """Stable mapping used for fingerprinting."""
        opts = self.validated()
        return {
            "include_comments": opts.include_comments,
            "include_attachments": opts.include_attachments,
            "analysis_depth": opts.analysis_depth,
            "max_related_tickets": opts.max_related_tickets,
            "min_relevance_score": opts.min_relevance_score,
        }
