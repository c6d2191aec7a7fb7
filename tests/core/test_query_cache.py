# tests/core/test_query_cache.py
"""Tests for first-seen query tracking."""

import pytest

from pgsample.contracts.results import RecentQuery
from pgsample.core.query_cache import QueryCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _query(text: str) -> RecentQuery:
    return RecentQuery(username="app", query=text, mean_time=1.0, calls="1", rows="1", top_level=True)


class TestQueryCache:
    def test_rejects_non_positive_capacity(self) -> None:
        with pytest.raises(ValueError, match="max_entries must be positive"):
            QueryCache(max_entries=0)

    def test_first_seen_is_sticky(self) -> None:
        clock = FakeClock(1000.0)
        cache = QueryCache(clock=clock)

        key = cache.store("db1", "select 1")
        clock.now = 2000.0
        cache.store("db1", "select 1")

        assert cache.first_seen(key) == 1_000_000.0

    def test_key_depends_on_database(self) -> None:
        assert QueryCache.key("db1", "select 1") != QueryCache.key("db2", "select 1")

    def test_is_new_for_queries_seen_after_creation(self) -> None:
        clock = FakeClock(1000.0)
        cache = QueryCache(clock=clock)
        clock.now = 1001.0

        key = cache.store("db", "select 2")

        assert cache.is_cached(key)
        assert cache.is_new(key)
        assert cache.is_new("never-stored")

    def test_least_recently_seen_evicted(self) -> None:
        cache = QueryCache(max_entries=2, clock=FakeClock())

        first = cache.store("db", "a")
        second = cache.store("db", "b")
        cache.store("db", "a")
        cache.store("db", "c")

        assert len(cache) == 2
        assert cache.is_cached(first)
        assert not cache.is_cached(second)

    def test_annotate_sets_first_seen(self) -> None:
        clock = FakeClock(5.0)
        cache = QueryCache(clock=clock)
        cache.annotate("db", [_query("select 1")])
        clock.now = 9.0

        annotated = cache.annotate("db", [_query("select 1"), _query("select 2")])

        assert [query.first_seen for query in annotated] == [5000.0, 9000.0]
        assert annotated[0].query == "select 1"
