"""Error taxonomy shared by the analysis pipeline and its adapters."""

from __future__ import annotations


class ImpactLensError(Exception):
    """Base class for every error the analysis entry point can raise."""


class NotFoundError(ImpactLensError):
    """A ticket key (or analysis id) cannot be resolved anywhere."""


class UpstreamError(ImpactLensError):
    """TicketSource or InsightAdvisor was unreachable, timed out, or errored."""


class RetrievalError(ImpactLensError):
    """Every keyword search of a retrieval run failed."""


class SynthesisError(ImpactLensError):
    """The advisor returned empty or malformed insight data."""


class ValidationError(ImpactLensError):
    """Malformed request: bad ticket key or out-of-range options."""
