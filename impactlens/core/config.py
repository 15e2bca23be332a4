"""Central configuration, constants, tuning knobs, and settings loading."""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# =============================================================================
# Jira Connection Settings
# =============================================================================
JIRA_DEFAULT_SERVER = "https://your-domain.atlassian.net"
TIMEZONE = "UTC"

# Ticket keys look like ABC-123 (project prefix, dash, number)
TICKET_KEY_PATTERN = r"^[A-Z][A-Z0-9_]*-\d+$"

# Fields requested on single-issue fetches and text searches
JIRA_FETCH_FIELDS = [
    "summary",
    "description",
    "created",
    "updated",
    "assignee",
    "reporter",
    "priority",
    "status",
    "labels",
    "comment",
    "attachment",
]

# Upper bound on tickets returned by a single full-text search
SEARCH_MAX_RESULTS = 50

# =============================================================================
# Ticket Store / Freshness
# =============================================================================
# Open tickets change often; closed ones rarely do.
TICKET_TTL_OPEN_SECONDS = 60 * 60
TICKET_TTL_TERMINAL_SECONDS = 24 * 60 * 60
# Tickets without an expiry are refreshed once last-synced is older than this
TICKET_STALE_AFTER_SECONDS = 6 * 60 * 60

# =============================================================================
# Analysis Cache
# =============================================================================
ANALYSIS_CACHE_TTL_SECONDS = 15 * 60
ANALYSIS_CACHE_MAX_ENTRIES = 256
ANALYSIS_HISTORY_MAX_ENTRIES = 500

# =============================================================================
# Concurrency & Timeouts
# =============================================================================
# Threads, because jira and openai clients are synchronous and I/O bound.
# Keep worker counts moderate to stay under upstream rate limits.
RETRIEVAL_MAX_WORKERS = 4
SCORING_MAX_WORKERS = 8
EXTERNAL_CALL_TIMEOUT_SECONDS = 30.0

# =============================================================================
# Analysis Options
# =============================================================================
ANALYSIS_DEPTHS: Sequence[str] = ("quick", "standard", "detailed")

# Maximum number of keywords used for candidate retrieval per depth
DEPTH_KEYWORD_LIMITS: dict[str, int] = {
    "quick": 3,
    "standard": 6,
    "detailed": 10,
}

DEFAULT_INCLUDE_COMMENTS = True
DEFAULT_INCLUDE_ATTACHMENTS = False
DEFAULT_ANALYSIS_DEPTH = "detailed"
DEFAULT_MAX_RELATED_TICKETS = 20
DEFAULT_MIN_RELEVANCE_SCORE = 0.3

# Where candidates are searched: the local ticket store, the live source, or both
SEARCH_BACKENDS: Sequence[str] = ("store", "source")

# =============================================================================
# Insight Advisor (OpenAI)
# =============================================================================
OPENAI_DEFAULT_MODEL = "gpt-4o-mini"
OPENAI_TEMPERATURE = 0.0
OPENAI_MAX_TOKENS = 2048
# Characters of description/comment text sent per ticket
ADVISOR_TEXT_LIMIT = 4000

SETTINGS_FILENAME = "impactlens.yaml"


@dataclass(slots=True)
class AppSettings:
    jira_server: str = JIRA_DEFAULT_SERVER
    jira_email: str = ""
    jira_api_token: str = ""
    openai_api_key: str = ""
    openai_model: str = OPENAI_DEFAULT_MODEL
    timezone: str = TIMEZONE
    search_backends: list[str] = field(default_factory=lambda: list(SEARCH_BACKENDS))
    search_max_results: int = SEARCH_MAX_RESULTS
    retrieval_max_workers: int = RETRIEVAL_MAX_WORKERS
    scoring_max_workers: int = SCORING_MAX_WORKERS
    call_timeout_seconds: float = EXTERNAL_CALL_TIMEOUT_SECONDS
    cache_ttl_seconds: float = ANALYSIS_CACHE_TTL_SECONDS
    cache_max_entries: int = ANALYSIS_CACHE_MAX_ENTRIES
    ticket_ttl_open_seconds: float = TICKET_TTL_OPEN_SECONDS
    ticket_ttl_terminal_seconds: float = TICKET_TTL_TERMINAL_SECONDS
    ticket_stale_after_seconds: float = TICKET_STALE_AFTER_SECONDS


# Environment variables overlaid on top of the YAML file (secrets live here)
ENV_OVERRIDES: dict[str, str] = {
    "JIRA_SERVER": "jira_server",
    "JIRA_EMAIL": "jira_email",
    "JIRA_API_TOKEN": "jira_api_token",
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_MODEL": "openai_model",
}

_CACHE: AppSettings | None = None


def load_settings(path: str | Path | None = None, *, reload: bool = False) -> AppSettings:
    """Load settings from ``impactlens.yaml`` (if present) plus the environment.

    A missing or malformed file falls back to the module defaults. Unknown
    keys in the file are ignored. The result is memoized; pass ``reload=True``
    or call :func:`reset_settings` to force a re-read.
    """
    global _CACHE
    if _CACHE is not None and not reload and path is None:
        return _CACHE
    yaml_path = Path(path) if path else Path.cwd() / SETTINGS_FILENAME
    settings = AppSettings()
    if yaml_path.exists():
        try:
            data = yaml.safe_load(yaml_path.read_text()) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", yaml_path, exc)
            data = {}
        if isinstance(data, dict):
            known = {f.name for f in fields(AppSettings)}
            values = {k: v for k, v in data.items() if k in known and v is not None}
            settings = replace(settings, **values)
    env_values = {attr: os.environ[var] for var, attr in ENV_OVERRIDES.items() if os.environ.get(var)}
    if env_values:
        settings = replace(settings, **env_values)
    _CACHE = settings
    return settings


def reset_settings() -> None:
    """Drop memoized settings (used by tests)."""
    global _CACHE
    _CACHE = None
