from datetime import UTC, datetime, timedelta

import pytest
from fakes import NOW, make_ticket

from impactlens.core.store import InMemoryTicketStore, TicketTTLPolicy


def test_ttl_policy_depends_on_status():
    policy = TicketTTLPolicy(open_seconds=60, terminal_seconds=600)
    open_ticket = policy.stamp(make_ticket("ABC-1", status="In Progress"), NOW)
    done_ticket = policy.stamp(make_ticket("ABC-2", status="Resolved"), NOW)
    assert open_ticket.last_synced == NOW
    assert open_ticket.ttl_expires_at == NOW + timedelta(seconds=60)
    assert done_ticket.ttl_expires_at == NOW + timedelta(seconds=600)


def test_put_get_and_replace():
    store = InMemoryTicketStore()
    store.put(make_ticket("ABC-1", "old"))
    store.put(make_ticket("ABC-1", "new"))
    assert len(store) == 1
    assert "ABC-1" in store
    assert store.get("ABC-1").summary == "new"
    assert store.get("ABC-2") is None


def test_put_without_key_rejected():
    with pytest.raises(ValueError):
        InMemoryTicketStore().put(make_ticket(""))


def test_search_is_case_insensitive_substring_newest_first():
    store = InMemoryTicketStore()
    store.put(make_ticket("ABC-1", "Login page", updated=datetime(2024, 1, 1, tzinfo=UTC)))
    store.put(make_ticket("ABC-2", "Billing", "Fix LOGIN redirect", updated=datetime(2024, 3, 1, tzinfo=UTC)))
    store.put(make_ticket("ABC-3", "Relogin flow"))
    store.put(make_ticket("ABC-4", "Reports"))
    assert [t.key for t in store.search("login")] == ["ABC-2", "ABC-1", "ABC-3"]
    assert store.search("   ") == []


def test_search_respects_max_results():
    store = InMemoryTicketStore(max_results=2)
    for i in range(5):
        store.put(make_ticket(f"ABC-{i}", "login"))
    assert len(store.search("login")) == 2


def test_delete_expired_and_needing_sync():
    store = InMemoryTicketStore()
    policy = TicketTTLPolicy(open_seconds=60, terminal_seconds=3600)
    store.put(policy.stamp(make_ticket("ABC-1", status="To Do"), NOW))
    store.put(policy.stamp(make_ticket("ABC-2", status="Done"), NOW))
    store.put(make_ticket("ABC-3"))

    later = NOW + timedelta(minutes=5)
    assert sorted(t.key for t in store.needing_sync(later)) == ["ABC-1", "ABC-2", "ABC-3"]
    assert [t.key for t in store.needing_sync(NOW)] == ["ABC-3"]

    assert store.delete_expired(later) == 1
    assert "ABC-1" not in store
    assert "ABC-2" in store and "ABC-3" in store
