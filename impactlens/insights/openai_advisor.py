"""InsightAdvisor backed by OpenAI chat completions in JSON mode."""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Sequence
from typing import Any

from openai import OpenAI, OpenAIError

from impactlens.core.config import (
    ADVISOR_TEXT_LIMIT,
    EXTERNAL_CALL_TIMEOUT_SECONDS,
    OPENAI_DEFAULT_MODEL,
    OPENAI_MAX_TOKENS,
    OPENAI_TEMPERATURE,
)
from impactlens.core.errors import SynthesisError, UpstreamError
from impactlens.core.models import GapFinding, RegressionArea, Ticket

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a senior QA and release engineer reviewing issue-tracker tickets. "
    "Answer only with a single JSON object matching the requested shape."
)

KEYWORDS_PROMPT = """Extract up to 10 short search keywords or phrases that would find tickets
touching the same functionality as this ticket. Prefer domain nouns and component names.

{ticket}

Respond as {{"keywords": ["..."]}}."""

SCORE_PROMPT = """Rate how strongly a change for the SOURCE ticket could affect, conflict with,
or depend on the CANDIDATE ticket, from 0.0 (unrelated) to 1.0 (same work).

SOURCE:
{source}

CANDIDATE:
{candidate}

Respond as {{"score": 0.0}}."""

GAPS_PROMPT = """Identify the most important requirements gap in the SOURCE ticket, taking the
RELATED tickets into account (missing acceptance criteria, error handling, security, data, UX).

SOURCE:
{source}

RELATED:
{related}

Respond as {{"category": "...", "description": "...", "severity": "Low|Medium|High|Critical",
"impact": "...", "suggestions": ["..."]}}."""

REGRESSION_PROMPT = """List the functional areas that need regression testing if the SOURCE ticket
is implemented, with concrete test cases for each.

SOURCE:
{source}

RELATED:
{related}

Respond as {{"areas": [{{"area": "...", "description": "...", "risk_level": "Low|Medium|High|Critical",
"test_cases": ["..."], "rationale": "..."}}]}}."""

SUMMARY_PROMPT = """Write a three to five sentence impact summary of the SOURCE ticket for a
release review, naming the related tickets that matter most.

SOURCE:
{source}

RELATED:
{related}

Respond as {{"summary": "..."}}."""


def _clip(text: str | None, limit: int = ADVISOR_TEXT_LIMIT) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit] + " ..."


def render_ticket(ticket: Ticket) -> str:
    lines = [
        f"Key: {ticket.key}",
        f"Summary: {ticket.summary or ''}",
        f"Status: {ticket.status or 'Unknown'} | Priority: {ticket.priority or 'None'}",
    ]
    if ticket.labels:
        lines.append(f"Labels: {', '.join(ticket.labels)}")
    if ticket.description:
        lines.append(f"Description:\n{_clip(ticket.description)}")
    if ticket.comments:
        lines.append(f"Comments:\n{_clip(chr(10).join(ticket.comments))}")
    if ticket.attachments:
        lines.append(f"Attachments: {', '.join(ticket.attachments)}")
    return "\n".join(lines)


def render_related(tickets: Sequence[Ticket]) -> str:
    if not tickets:
        return "(none)"
    return "\n".join(f"- {t.key} [{t.status or 'Unknown'}]: {t.summary or ''}" for t in tickets)


class OpenAIInsightAdvisor:
    def __init__(
        self,
        api_key: str = "",
        *,
        model: str = OPENAI_DEFAULT_MODEL,
        temperature: float = OPENAI_TEMPERATURE,
        max_tokens: int = OPENAI_MAX_TOKENS,
        timeout: float = EXTERNAL_CALL_TIMEOUT_SECONDS,
        client: Any = None,
    ):
        self.model_name = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        # max_retries=0: a failed call is reported, not silently retried
        self._client = client or OpenAI(api_key=api_key or None, timeout=timeout, max_retries=0)

    def _complete_json(self, prompt: str, error_cls: type[Exception] = UpstreamError) -> dict[str, Any]:
        start = time.time()
        try:
            response = self._client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={"type": "json_object"},
            )
        except OpenAIError as exc:
            logger.error("OpenAI API call failed: %s", exc)
            raise UpstreamError(f"OpenAI API call failed: {exc}") from exc
        content = response.choices[0].message.content or ""
        logger.debug("OpenAI call completed in %.0fms", (time.time() - start) * 1000)
        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            raise error_cls(f"Model returned invalid JSON: {content[:200]!r}") from exc
        if not isinstance(data, dict):
            raise error_cls(f"Model returned {type(data).__name__}, expected an object")
        return data

    def extract_keywords(self, ticket: Ticket) -> list[str]:
        data = self._complete_json(KEYWORDS_PROMPT.format(ticket=render_ticket(ticket)))
        keywords = data.get("keywords")
        if not isinstance(keywords, list):
            raise UpstreamError("Model response is missing a keyword list")
        return [str(k) for k in keywords if isinstance(k, (str, int, float)) and str(k).strip()]

    def score(self, source: Ticket, candidate: Ticket) -> float:
        data = self._complete_json(
            SCORE_PROMPT.format(source=render_ticket(source), candidate=render_ticket(candidate))
        )
        try:
            return float(data["score"])
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamError(f"Model response has no usable score: {data!r}") from exc

    def analyze_gaps(self, source: Ticket, related: Sequence[Ticket]) -> GapFinding:
        data = self._complete_json(
            GAPS_PROMPT.format(source=render_ticket(source), related=render_related(related)),
            SynthesisError,
        )
        try:
            return GapFinding.from_dict(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise SynthesisError(f"Malformed gap analysis from model: {exc}") from exc

    def suggest_regression_areas(self, source: Ticket, related: Sequence[Ticket]) -> list[RegressionArea]:
        data = self._complete_json(
            REGRESSION_PROMPT.format(source=render_ticket(source), related=render_related(related)),
            SynthesisError,
        )
        areas = data.get("areas")
        if not isinstance(areas, list):
            raise SynthesisError("Model response is missing the regression area list")
        try:
            return [RegressionArea.from_dict(a) for a in areas]
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise SynthesisError(f"Malformed regression area from model: {exc}") from exc

    def summarize(self, source: Ticket, related: Sequence[Ticket]) -> str:
        data = self._complete_json(
            SUMMARY_PROMPT.format(source=render_ticket(source), related=render_related(related)),
            SynthesisError,
        )
        return str(data.get("summary") or "")
