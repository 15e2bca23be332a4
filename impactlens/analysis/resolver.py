"""Ticket resolution: store first, live source on miss or expiry."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

import pytz

from impactlens.core.concurrency import call_with_timeout
from impactlens.core.config import EXTERNAL_CALL_TIMEOUT_SECONDS, TICKET_STALE_AFTER_SECONDS
from impactlens.core.errors import ImpactLensError, NotFoundError, UpstreamError
from impactlens.core.interfaces import TicketSource, TicketStore
from impactlens.core.models import Ticket
from impactlens.core.store import TicketTTLPolicy

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(tz=pytz.UTC)


class TicketResolver:
    def __init__(
        self,
        source: TicketSource,
        store: TicketStore,
        *,
        ttl_policy: TicketTTLPolicy | None = None,
        stale_after_seconds: float = TICKET_STALE_AFTER_SECONDS,
        timeout: float | None = EXTERNAL_CALL_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.source = source
        self.store = store
        self.ttl_policy = ttl_policy or TicketTTLPolicy()
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.timeout = timeout
        self.clock = clock
        # requested key -> key the source answered with (moved tickets)
        self._moved: dict[str, str] = {}

    def is_fresh(self, ticket: Ticket, now: datetime) -> bool:
        if ticket.ttl_expires_at is not None:
            return not ticket.is_expired(now)
        return ticket.last_synced is not None and now - ticket.last_synced <= self.stale_after

    def resolve(self, ticket_key: str) -> Ticket:
        """Return the canonical record for ``ticket_key``.

        A fresh stored copy is returned as-is with no source call. Otherwise
        the ticket is fetched, stamped and written back exactly once. If the
        source is unreachable but an expired copy exists, that copy is served.
        A moved ticket is stored under its new key; later lookups of the old
        key are redirected there.
        """
        now = self.clock()
        cached = self.store.get(self._moved.get(ticket_key, ticket_key))
        if cached is not None and self.is_fresh(cached, now):
            logger.info("Found ticket %s in store", ticket_key)
            return cached

        logger.info("Fetching ticket %s from source", ticket_key)
        try:
            fetched = call_with_timeout(self.source.fetch, ticket_key, timeout=self.timeout, label="ticket fetch")
        except NotFoundError:
            raise
        except UpstreamError as exc:
            if cached is not None:
                logger.warning("Source unavailable for %s, serving expired copy: %s", ticket_key, exc)
                return cached
            raise
        except ImpactLensError:
            raise
        except Exception as exc:
            if cached is not None:
                logger.warning("Source failed for %s, serving expired copy: %s", ticket_key, exc)
                return cached
            raise UpstreamError(f"Ticket source failed for {ticket_key}: {exc}") from exc

        if fetched is None:
            raise NotFoundError(f"Ticket {ticket_key} not found")
        if fetched.key != ticket_key:
            logger.info("Source returned %s for %s (moved ticket)", fetched.key, ticket_key)
            self._moved[ticket_key] = fetched.key
        ticket = self.ttl_policy.stamp(fetched, now)
        self.store.put(ticket)
        return ticket

    def refresh_stale(self, now: datetime | None = None) -> int:
        """Re-fetch stored tickets whose last sync is older than the staleness threshold."""
        now = now or self.clock()
        refreshed = 0
        for stale in self.store.needing_sync(now - self.stale_after):
            try:
                fetched = call_with_timeout(self.source.fetch, stale.key, timeout=self.timeout, label="ticket fetch")
            except Exception as exc:
                logger.warning("Failed to refresh ticket %s: %s", stale.key, exc)
                continue
            self.store.put(self.ttl_policy.stamp(fetched, now))
            refreshed += 1
        logger.info("Refreshed %d stale tickets", refreshed)
        return refreshed

    def purge_expired(self, now: datetime | None = None) -> int:
        return self.store.delete_expired(now or self.clock())
