"""Ticket impact analysis pipeline."""

from impactlens.analysis.assembler import ReportAssembler, build_recommendations
from impactlens.analysis.cache import AnalysisCache, fingerprint
from impactlens.analysis.ranker import RelevanceRanker, select_top
from impactlens.analysis.resolver import TicketResolver
from impactlens.analysis.retriever import CandidateRetriever
from impactlens.analysis.service import AnalysisService
from impactlens.analysis.synthesizer import InsightSynthesizer, Insights

__all__ = [
    "AnalysisCache",
    "AnalysisService",
    "CandidateRetriever",
    "InsightSynthesizer",
    "Insights",
    "RelevanceRanker",
    "ReportAssembler",
    "TicketResolver",
    "build_recommendations",
    "fingerprint",
    "select_top",
]
