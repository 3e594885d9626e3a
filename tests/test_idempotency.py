"""Tests for src.capability.idempotency — TTL store."""

from __future__ import annotations

from src.capability.idempotency import IdempotencyStore
from tests.conftest import FakeClock


class TestIdempotencyStore:
    def test_get_missing_returns_none(self):
        assert IdempotencyStore().get("nope") is None

    def test_set_then_get(self):
        store: IdempotencyStore[str] = IdempotencyStore()
        store.set("k", "v")
        assert store.get("k") == "v"
        assert store.has("k")
        assert len(store) == 1

    def test_entry_expires_after_ttl(self):
        clock = FakeClock()
        store: IdempotencyStore[str] = IdempotencyStore(ttl_minutes=1, clock=clock)
        store.set("k", "v")
        clock.advance(60)
        assert store.get("k") == "v"
        clock.advance(0.5)
        assert store.get("k") is None
        assert len(store) == 0

    def test_put_if_absent_first_writer_wins(self):
        store: IdempotencyStore[str] = IdempotencyStore()
        assert store.put_if_absent("k", "first") == "first"
        assert store.put_if_absent("k", "second") == "first"
        assert store.get("k") == "first"

    def test_put_if_absent_replaces_expired(self):
        clock = FakeClock()
        store: IdempotencyStore[str] = IdempotencyStore(ttl_minutes=1, clock=clock)
        store.set("k", "old")
        clock.advance(120)
        assert store.put_if_absent("k", "new") == "new"

    def test_purge_expired(self):
        clock = FakeClock()
        store: IdempotencyStore[int] = IdempotencyStore(ttl_minutes=1, clock=clock)
        store.set("a", 1)
        clock.advance(90)
        store.set("b", 2)
        assert store.purge_expired() == 1
        assert not store.has("a")
        assert store.has("b")

    def test_clear(self):
        store: IdempotencyStore[int] = IdempotencyStore()
        store.set("a", 1)
        store.clear()
        assert len(store) == 0
