"""Tests for cache/store.py -- SearchCache TTL and per-user invalidation."""

import pytest

import cache.store as cache_module
from cache.store import SearchCache


@pytest.fixture
def cache():
    c = SearchCache(":memory:", ttl=60)
    yield c
    c.close()


def test_miss_returns_none(cache):
    assert cache.get(1, "k") is None


def test_set_then_get(cache):
    cache.set(1, "k", [{"score": 10}])
    assert cache.get(1, "k") == [{"score": 10}]
    assert cache.get(2, "k") is None


def test_set_replaces(cache):
    cache.set(1, "k", [1])
    cache.set(1, "k", [2])
    assert cache.get(1, "k") == [2]


def test_expired_entry_is_dropped(cache, monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(cache_module.time, "time", lambda: clock[0])
    cache.set(1, "k", [1])
    clock[0] += 61
    assert cache.get(1, "k") is None
    clock[0] -= 61
    assert cache.get(1, "k") is None


def test_invalidate_user_only_touches_that_user(cache):
    cache.set(1, "a", [1])
    cache.set(1, "b", [2])
    cache.set(2, "a", [3])
    assert cache.invalidate_user(1) == 2
    assert cache.get(1, "a") is None
    assert cache.get(2, "a") == [3]


def test_purge_expired(cache, monkeypatch):
    clock = [1000.0]
    monkeypatch.setattr(cache_module.time, "time", lambda: clock[0])
    cache.set(1, "old", [1])
    clock[0] += 30
    cache.set(1, "new", [2])
    clock[0] += 40
    assert cache.purge_expired() == 1
    assert cache.get(1, "new") == [2]


def test_file_backed_cache_creates_parent(tmp_path):
    path = tmp_path / "nested" / "cache.db"
    c = SearchCache(path)
    c.set(1, "k", ["x"])
    c.close()
    reopened = SearchCache(path)
    assert reopened.get(1, "k") == ["x"]
    reopened.close()
