"""Jira API client wrapper (REST v3 + enhanced search) and the Jira TicketSource."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any

import requests
from jira import JIRA, JIRAError

from .config import EXTERNAL_CALL_TIMEOUT_SECONDS, JIRA_FETCH_FIELDS, SEARCH_MAX_RESULTS
from .errors import NotFoundError, UpstreamError
from .mappers import map_ticket
from .models import Ticket

logger = logging.getLogger(__name__)


class JiraAPI:
    def __init__(
        self,
        server: str,
        email: str,
        token: str,
        *,
        timeout: float = EXTERNAL_CALL_TIMEOUT_SECONDS,
    ):
        self.server = server.rstrip("/")
        self.timeout = timeout
        # max_retries=0: a failed call is reported, not silently retried
        self.client = JIRA(
            basic_auth=(email, token),
            options={"server": self.server, "rest_api_version": "3"},
            timeout=timeout,
            max_retries=0,
            get_server_info=False,
        )
        # Simple in-memory cache: {(hash): (timestamp, data)}
        self._cache: dict[str, tuple[float, list]] = {}
        self._cache_ttl = 300.0  # seconds
        self._cache_lock = threading.Lock()

    def clear_cache(self) -> None:
        """Reset the in-memory search cache."""
        with self._cache_lock:
            self._cache.clear()

    def _prune_cache(self, now: float) -> None:
        # caller holds _cache_lock
        expired = [k for k, (ts, _) in self._cache.items() if now - ts >= self._cache_ttl]
        for k in expired:
            del self._cache[k]

    def _cache_key(self, jql: str, fields, limit: int) -> str:
        payload = {"jql": jql, "fields": fields, "limit": limit}
        return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()

    def search_enhanced(
        self,
        jql: str,
        fields: list[str] | None = None,
        limit: int = SEARCH_MAX_RESULTS,
    ) -> list[dict[str, Any]]:
        """Run a JQL search, following page tokens until ``limit`` issues are collected."""
        session = getattr(self.client, "_session", None)
        if session is None:
            raise UpstreamError("Jira session unavailable")
        url = f"{self.server}/rest/api/3/search/jql"
        key = self._cache_key(jql, fields, limit)
        now = time.time()
        cached = self._cache.get(key)
        if cached and (now - cached[0]) < self._cache_ttl:
            return cached[1]
        params: dict[str, Any] = {"jql": jql, "maxResults": min(limit, 100)}
        if fields:
            params["fields"] = ",".join(fields)
        out: list[dict[str, Any]] = []
        token = None
        while len(out) < limit:
            qp = dict(params)
            if token:
                qp["nextPageToken"] = token
            try:
                resp = session.get(url, params=qp, timeout=self.timeout)
            except requests.RequestException as exc:
                raise UpstreamError(f"Jira search failed: {exc}") from exc
            if resp.status_code >= 400:
                raise UpstreamError(f"Jira search failed {resp.status_code}: {resp.text[:200]}")
            data = resp.json()
            out.extend(data.get("issues", []))
            token = data.get("nextPageToken")
            if not token or data.get("isLast") is True:
                break
        out = out[:limit]
        with self._cache_lock:
            self._prune_cache(now)
            self._cache[key] = (now, out)
        return out

    def fetch_issue_raw(self, issue_key: str) -> dict[str, Any]:
        try:
            issue = self.client.issue(issue_key, fields=",".join(JIRA_FETCH_FIELDS))
        except JIRAError as exc:
            if exc.status_code == 404:
                raise NotFoundError(f"Ticket {issue_key} not found in Jira") from exc
            raise UpstreamError(f"Failed to fetch issue {issue_key}: {exc}") from exc
        except requests.RequestException as exc:
            raise UpstreamError(f"Failed to fetch issue {issue_key}: {exc}") from exc
        if hasattr(issue, "raw"):
            return issue.raw
        if isinstance(issue, dict):
            return issue
        raise UpstreamError(f"Unexpected issue payload type for {issue_key}: {type(issue)!r}")


def text_search_jql(query: str) -> str:
    """Full-text JQL for a free-form query, newest first."""
    escaped = query.replace("\\", "\\\\").replace('"', '\\"')
    return f'text ~ "{escaped}" ORDER BY updated DESC'


class JiraTicketSource:
    """TicketSource backed by a Jira Cloud instance."""

    def __init__(self, api: JiraAPI, *, max_results: int = SEARCH_MAX_RESULTS):
        self.api = api
        self.max_results = max_results

    def fetch(self, ticket_key: str) -> Ticket:
        logger.debug("Fetching %s from Jira", ticket_key)
        raw = self.api.fetch_issue_raw(ticket_key)
        if not raw or not raw.get("key"):
            raise NotFoundError(f"Ticket {ticket_key} not found in Jira")
        return map_ticket(raw)

    def search(self, query: str) -> list[Ticket]:
        raw = self.api.search_enhanced(text_search_jql(query), fields=JIRA_FETCH_FIELDS, limit=self.max_results)
        return [map_ticket(r) for r in raw if r.get("key")]
