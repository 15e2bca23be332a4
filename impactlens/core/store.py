"""In-memory TicketStore and the freshness policy applied on write."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from .config import SEARCH_MAX_RESULTS, TICKET_TTL_OPEN_SECONDS, TICKET_TTL_TERMINAL_SECONDS
from .models import Ticket
from .status import is_terminal_status

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TicketTTLPolicy:
    open_seconds: float = TICKET_TTL_OPEN_SECONDS
    terminal_seconds: float = TICKET_TTL_TERMINAL_SECONDS

    def ttl_for(self, ticket: Ticket) -> timedelta:
        if is_terminal_status(ticket.status):
            return timedelta(seconds=self.terminal_seconds)
        return timedelta(seconds=self.open_seconds)

    def stamp(self, ticket: Ticket, now: datetime) -> Ticket:
        """Return ``ticket`` marked as synced at ``now`` with a fresh expiry."""
        return replace(ticket, last_synced=now, ttl_expires_at=now + self.ttl_for(ticket))


class InMemoryTicketStore:
    """Thread-safe ticket store keyed by ticket key.

    ``search`` mirrors a SQL ``LIKE '%term%'`` over summary and description:
    case-insensitive substring matching, newest update first.
    """

    def __init__(self, *, max_results: int = SEARCH_MAX_RESULTS):
        self._tickets: dict[str, Ticket] = {}
        self._lock = threading.Lock()
        self.max_results = max_results

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)

    def __contains__(self, ticket_key: object) -> bool:
        with self._lock:
            return ticket_key in self._tickets

    def get(self, ticket_key: str) -> Ticket | None:
        with self._lock:
            return self._tickets.get(ticket_key)

    def put(self, ticket: Ticket) -> None:
        if not ticket.key:
            raise ValueError("Cannot store a ticket without a key")
        with self._lock:
            self._tickets[ticket.key] = ticket

    def search(self, query: str) -> list[Ticket]:
        term = (query or "").strip().lower()
        if not term:
            return []
        with self._lock:
            snapshot = list(self._tickets.values())
        hits = [
            t
            for t in snapshot
            if term in (t.summary or "").lower() or term in (t.description or "").lower()
        ]
        hits.sort(key=lambda t: (t.updated is None, -(t.updated.timestamp() if t.updated else 0.0), t.key))
        return hits[: self.max_results]

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [key for key, t in self._tickets.items() if t.is_expired(now)]
            for key in expired:
                del self._tickets[key]
        if expired:
            logger.info("Purged %d expired tickets from store", len(expired))
        return len(expired)

    def needing_sync(self, before: datetime) -> list[Ticket]:
        with self._lock:
            return [t for t in self._tickets.values() if t.last_synced is None or t.last_synced < before]
