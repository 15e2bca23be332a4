"""Capability boundaries for the pipeline's external collaborators.

The analysis pipeline depends only on these protocols. Concrete adapters
(Jira, OpenAI, the in-memory store) and test doubles satisfy them
structurally; none of them needs to subclass anything here.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from .models import GapFinding, RegressionArea, Ticket


class TicketSearcher(Protocol):
    def search(self, query: str) -> Sequence[Ticket]: ...


class TicketSource(TicketSearcher, Protocol):
    """Live tracker. ``fetch`` raises NotFoundError or UpstreamError."""

    def fetch(self, ticket_key: str) -> Ticket: ...


class TicketStore(TicketSearcher, Protocol):
    """Local record of previously seen tickets."""

    def get(self, ticket_key: str) -> Ticket | None: ...

    def put(self, ticket: Ticket) -> None: ...

    def delete_expired(self, now: datetime) -> int: ...

    def needing_sync(self, before: datetime) -> Sequence[Ticket]: ...


class InsightAdvisor(Protocol):
    """Language-model backed analysis. Every call may raise UpstreamError."""

    model_name: str

    def extract_keywords(self, ticket: Ticket) -> Sequence[str]: ...

    def score(self, source: Ticket, candidate: Ticket) -> float: ...

    def analyze_gaps(self, source: Ticket, related: Sequence[Ticket]) -> GapFinding: ...

    def suggest_regression_areas(self, source: Ticket, related: Sequence[Ticket]) -> Sequence[RegressionArea]: ...

    def summarize(self, source: Ticket, related: Sequence[Ticket]) -> str: ...
