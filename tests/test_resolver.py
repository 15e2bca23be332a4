from dataclasses import replace
from datetime import timedelta

import pytest
from fakes import NOW, FakeSource, make_ticket

from impactlens.analysis.resolver import TicketResolver
from impactlens.core.errors import NotFoundError, UpstreamError
from impactlens.core.store import InMemoryTicketStore, TicketTTLPolicy


class CountingStore(InMemoryTicketStore):
    def __init__(self):
        super().__init__()
        self.puts = 0

    def put(self, ticket):
        self.puts += 1
        super().put(ticket)


def _resolver(source, store, now=NOW):
    return TicketResolver(
        source,
        store,
        ttl_policy=TicketTTLPolicy(open_seconds=3600, terminal_seconds=86400),
        stale_after_seconds=6 * 3600,
        timeout=5,
        clock=lambda: now,
    )


def test_fresh_store_hit_skips_source_and_writes():
    store = CountingStore()
    cached = make_ticket("ABC-1", "Cached", last_synced=NOW, ttl_expires_at=NOW + timedelta(minutes=5))
    store.put(cached)
    store.puts = 0
    source = FakeSource([make_ticket("ABC-1", "Live")])
    got = _resolver(source, store).resolve("ABC-1")
    assert got is cached
    assert source.fetch_calls == []
    assert store.puts == 0


def test_miss_fetches_and_writes_once_with_ttl():
    store = CountingStore()
    source = FakeSource([make_ticket("ABC-1", "Live", status="In Progress")])
    got = _resolver(source, store).resolve("ABC-1")
    assert got.summary == "Live"
    assert got.last_synced == NOW
    assert got.ttl_expires_at == NOW + timedelta(hours=1)
    assert store.puts == 1
    assert store.get("ABC-1") == got


def test_terminal_tickets_get_longer_ttl():
    store = InMemoryTicketStore()
    source = FakeSource([make_ticket("ABC-1", "Shipped", status="Closed")])
    got = _resolver(source, store).resolve("ABC-1")
    assert got.ttl_expires_at == NOW + timedelta(days=1)


def test_expired_copy_is_refreshed():
    store = CountingStore()
    store.put(make_ticket("ABC-1", "Old", last_synced=NOW - timedelta(hours=2), ttl_expires_at=NOW - timedelta(hours=1)))
    store.puts = 0
    source = FakeSource([make_ticket("ABC-1", "New")])
    got = _resolver(source, store).resolve("ABC-1")
    assert got.summary == "New"
    assert source.fetch_calls == ["ABC-1"]
    assert store.puts == 1


def test_copy_without_expiry_uses_staleness_threshold():
    store = InMemoryTicketStore()
    store.put(make_ticket("ABC-1", "Old", last_synced=NOW - timedelta(hours=7)))
    source = FakeSource([make_ticket("ABC-1", "New")])
    assert _resolver(source, store).resolve("ABC-1").summary == "New"


def test_unavailable_source_without_cache_raises_upstream():
    source = FakeSource(unavailable=True)
    with pytest.raises(UpstreamError):
        _resolver(source, InMemoryTicketStore()).resolve("ZZZ-9")


def test_unavailable_source_serves_expired_copy():
    store = InMemoryTicketStore()
    expired = make_ticket("ABC-1", "Old", last_synced=NOW - timedelta(hours=2), ttl_expires_at=NOW - timedelta(hours=1))
    store.put(expired)
    got = _resolver(FakeSource(unavailable=True), store).resolve("ABC-1")
    assert got == expired


def test_unknown_key_raises_not_found():
    with pytest.raises(NotFoundError):
        _resolver(FakeSource(), InMemoryTicketStore()).resolve("ABC-404")


def test_refresh_stale_and_purge():
    store = InMemoryTicketStore()
    fresh = make_ticket("ABC-1", "Fresh", last_synced=NOW, ttl_expires_at=NOW + timedelta(hours=1))
    stale = make_ticket("ABC-2", "Stale", last_synced=NOW - timedelta(days=1), ttl_expires_at=NOW - timedelta(hours=2))
    gone = make_ticket("ABC-3", "Gone", last_synced=NOW - timedelta(days=1), ttl_expires_at=NOW - timedelta(hours=2))
    for t in (fresh, stale, gone):
        store.put(t)
    source = FakeSource([replace(stale, summary="Stale (updated)")])
    resolver = _resolver(source, store)

    assert resolver.refresh_stale() == 1
    assert store.get("ABC-2").summary == "Stale (updated)"
    assert store.get("ABC-2").last_synced == NOW

    assert resolver.purge_expired() == 1
    assert "ABC-3" not in store
    assert "ABC-1" in store and "ABC-2" in store


def test_moved_ticket_is_served_from_store_on_next_lookup():
    store = CountingStore()
    source = FakeSource()
    source.tickets["OLD-1"] = make_ticket("NEW-7", "Moved")
    resolver = _resolver(source, store)

    first = resolver.resolve("OLD-1")
    assert first.key == "NEW-7"
    assert "NEW-7" in store and "OLD-1" not in store

    second = resolver.resolve("OLD-1")
    assert second == first
    assert source.fetch_calls == ["OLD-1"]
    assert store.puts == 1
