"""Command-line entry point.

Usage:
  impactlens analyze ABC-123 [--max-related 20] [--min-score 0.3] [--json]

Credentials come from ``impactlens.yaml`` in the working directory or the
``JIRA_SERVER`` / ``JIRA_EMAIL`` / ``JIRA_API_TOKEN`` / ``OPENAI_API_KEY``
environment variables.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

import pandas as pd
import pytz

from impactlens.analysis.service import AnalysisService
from impactlens.core.config import (
    ANALYSIS_DEPTHS,
    DEFAULT_ANALYSIS_DEPTH,
    DEFAULT_MAX_RELATED_TICKETS,
    DEFAULT_MIN_RELEVANCE_SCORE,
    AppSettings,
    load_settings,
)
from impactlens.core.errors import (
    ImpactLensError,
    NotFoundError,
    RetrievalError,
    SynthesisError,
    UpstreamError,
    ValidationError,
)
from impactlens.core.jira_client import JiraAPI, JiraTicketSource
from impactlens.core.mappers import related_frame
from impactlens.core.models import AnalysisOptions, AnalysisResult
from impactlens.core.store import InMemoryTicketStore
from impactlens.insights.openai_advisor import OpenAIInsightAdvisor

logger = logging.getLogger(__name__)

EXIT_CODES: dict[type[ImpactLensError], int] = {
    ValidationError: 2,
    NotFoundError: 3,
    UpstreamError: 4,
    RetrievalError: 4,
    SynthesisError: 5,
}


def exit_code_for(exc: ImpactLensError) -> int:
    for cls, code in EXIT_CODES.items():
        if isinstance(exc, cls):
            return code
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="impactlens", description="Ticket impact analysis")
    parser.add_argument("--config", help="Path to impactlens.yaml")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    analyze = sub.add_parser("analyze", help="Analyze a ticket and print its impact report")
    analyze.add_argument("ticket_key", help="Ticket key, e.g. ABC-123")
    analyze.add_argument("--max-related", type=int, default=DEFAULT_MAX_RELATED_TICKETS)
    analyze.add_argument("--min-score", type=float, default=DEFAULT_MIN_RELEVANCE_SCORE)
    analyze.add_argument("--depth", choices=ANALYSIS_DEPTHS, default=DEFAULT_ANALYSIS_DEPTH)
    analyze.add_argument("--no-comments", action="store_true", help="Exclude comment bodies")
    analyze.add_argument("--attachments", action="store_true", help="Include attachment names")
    analyze.add_argument("--json", action="store_true", help="Print the full result as JSON")
    return parser


def build_service(settings: AppSettings) -> AnalysisService:
    if not (settings.jira_email and settings.jira_api_token):
        raise ValidationError("Jira credentials missing: set JIRA_EMAIL and JIRA_API_TOKEN")
    if not settings.openai_api_key:
        raise ValidationError("OpenAI credentials missing: set OPENAI_API_KEY")
    api = JiraAPI(
        settings.jira_server,
        settings.jira_email,
        settings.jira_api_token,
        timeout=settings.call_timeout_seconds,
    )
    source = JiraTicketSource(api, max_results=settings.search_max_results)
    store = InMemoryTicketStore(max_results=settings.search_max_results)
    advisor = OpenAIInsightAdvisor(
        settings.openai_api_key,
        model=settings.openai_model,
        timeout=settings.call_timeout_seconds,
    )
    return AnalysisService(source, store, advisor, settings=settings)


def render_text(result: AnalysisResult, timezone: str) -> str:
    report = result.report
    meta = result.metadata
    completed = meta.completed_at.astimezone(pytz.timezone(timezone))
    lines = [
        f"Impact analysis for {result.ticket_key} ({result.status})",
        f"Completed {completed:%Y-%m-%d %H:%M %Z} in {meta.processing_time_ms:.0f}ms "
        f"using {meta.model_used}{' [cached]' if meta.cache_hit else ''}",
        "",
        report.summary,
        "",
    ]
    frame = related_frame(result)
    if frame.empty:
        lines.append("Related tickets: none")
    else:
        with pd.option_context("display.max_colwidth", 60, "display.width", 160):
            lines.append(frame.to_string(index=False))
    lines.append("")
    for gap in report.gaps_identified:
        lines.append(f"Gap [{gap.severity.label}] {gap.category}: {gap.description}")
    for area in report.regression_areas:
        lines.append(f"Regression [{area.risk_level.label}] {area.area}")
        lines.extend(f"  - {case}" for case in area.test_cases)
    lines.append("")
    lines.append("Recommendations:")
    lines.extend(f"  * {rec}" for rec in report.recommendations)
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings(args.config)
    try:
        service = build_service(settings)
        options = AnalysisOptions(
            include_comments=not args.no_comments,
            include_attachments=args.attachments,
            analysis_depth=args.depth,
            max_related_tickets=args.max_related,
            min_relevance_score=args.min_score,
        )
        result = service.analyze(args.ticket_key, options)
    except ImpactLensError as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return exit_code_for(exc)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(render_text(result, settings.timezone))
    return 0


if __name__ == "__main__":
    sys.exit(main())
