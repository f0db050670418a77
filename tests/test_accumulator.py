"""Tests for the accumulation cache: batching, flushing and source swaps."""

from datetime import timedelta

import pytest

from conftest import EPOCH, make_samples
from mindsight_agent.cache.accumulator import AccumulationCache
from mindsight_agent.cache.registry import Source
from mindsight_agent.errors import BackendConnectError, CollectError, QueryError


def _cache(connector, clock, sources=(), limit=2, max_age=timedelta(minutes=5)):
    return AccumulationCache(limit=limit, max_age=max_age, sources=sources, connect=connector, now_fn=clock)


def test_no_sources_and_fresh_cache_has_nothing_to_flush(connector, clock):
    cache = _cache(connector, clock, limit=1)
    assert cache.collect() is None
    assert cache.sample_count == 0


def test_no_sources_flushes_empty_batch_once_aged(connector, clock):
    cache = _cache(connector, clock)
    clock.advance(minutes=6)
    flushed = cache.collect()
    assert flushed == {}
    assert cache.last_flush == clock.now


def test_flush_on_count(connector, clock):
    cache = _cache(connector, clock, sources=[Source(1, "http://prom", "up")])

    assert cache.collect() is None
    assert cache.sample_count == 1

    clock.advance(seconds=1)
    flushed = cache.collect()

    assert flushed is not None
    assert len(flushed[1]) == 2
    assert cache.sample_count == 0
    assert cache.pending() == {}
    assert cache.last_flush == EPOCH + timedelta(seconds=1)


def test_flush_on_age_before_count_reached(connector, clock):
    cache = _cache(connector, clock, sources=[Source(1, "http://prom", "up")])
    clock.advance(minutes=10)

    flushed = cache.collect()

    assert flushed is not None
    assert len(flushed[1]) == 1
    assert cache.sample_count == 0
    assert cache.last_flush == clock.now


def test_age_exactly_at_limit_does_not_flush(connector, clock):
    cache = _cache(connector, clock, sources=[Source(1, "http://prom", "up")], limit=100)
    clock.advance(minutes=5)
    assert cache.collect() is None


def test_sample_count_tracks_all_sources_across_calls(connector, clock):
    connector.outcomes.update({"a": 3, "b": 2})
    sources = [Source(1, "http://one", "a"), Source(2, "http://two", "b")]
    cache = _cache(connector, clock, sources=sources, limit=100)

    for _ in range(4):
        assert cache.collect() is None

    assert cache.sample_count == 4 * (3 + 2)
    pending = cache.pending()
    assert len(pending[1]) == 12
    assert len(pending[2]) == 8
    assert cache.sample_count == sum(len(v) for v in pending.values())


def test_batches_are_appended_in_scrape_order(connector, clock):
    first = make_samples(1, name="first")
    second = make_samples(1, name="second")
    connector.outcomes["q"] = first
    cache = _cache(connector, clock, sources=[Source(7, "http://prom", "q")], limit=10)

    cache.collect()
    connector.outcomes["q"] = second
    cache.collect()

    assert cache.pending()[7] == first + second


def test_flushed_batch_is_not_touched_by_later_collects(connector, clock):
    cache = _cache(connector, clock, sources=[Source(1, "http://prom", "up")], limit=1)
    flushed = cache.collect()
    cache.collect()
    assert len(flushed[1]) == 1


def test_query_failure_keeps_earlier_sources(connector, clock):
    connector.outcomes.update({"ok": 2, "broken": QueryError("connection refused")})
    sources = [
        Source(1, "http://one", "ok"),
        Source(2, "http://two", "broken"),
        Source(3, "http://three", "ok"),
    ]
    cache = _cache(connector, clock, sources=sources, limit=100)

    with pytest.raises(CollectError) as exc_info:
        cache.collect()

    assert "query: broken url: http://two" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, QueryError)
    # source 1 was appended before the failure, source 3 never ran
    assert list(cache.pending()) == [1]
    assert cache.sample_count == 2


def test_failure_does_not_flush_even_when_aged(connector, clock):
    connector.outcomes["broken"] = QueryError("timeout")
    cache = _cache(connector, clock, sources=[Source(1, "http://prom", "broken")])
    clock.advance(minutes=30)

    with pytest.raises(CollectError):
        cache.collect()
    assert cache.last_flush == EPOCH


def test_empty_result_from_backend_is_an_error(connector, clock):
    connector.outcomes["nothing"] = []
    cache = _cache(connector, clock, sources=[Source(1, "http://prom", "nothing")])
    with pytest.raises(CollectError, match="empty result vector"):
        cache.collect()
    assert cache.sample_count == 0


def test_next_collect_continues_from_partial_state(connector, clock):
    connector.outcomes.update({"ok": 1, "flaky": QueryError("boom")})
    sources = [Source(1, "http://one", "ok"), Source(2, "http://two", "flaky")]
    cache = _cache(connector, clock, sources=sources, limit=3)

    with pytest.raises(CollectError):
        cache.collect()
    assert cache.sample_count == 1

    connector.outcomes["flaky"] = 1
    flushed = cache.collect()

    assert flushed is not None
    assert len(flushed[1]) == 2
    assert len(flushed[2]) == 1


def test_install_returns_previous_values_and_resets(connector, clock):
    cache = _cache(connector, clock, sources=[Source(23, "http://prom", "up")], limit=100)
    cache.collect()
    before = cache.pending()

    clock.advance(minutes=1)
    previous = cache.install([Source(1, "http://blah", "a"), Source(2, "http://a-url", "b")])

    assert previous == before
    assert cache.sample_count == 0
    assert cache.pending() == {}
    assert cache.last_flush == clock.now
    assert [s.id for s in cache.sources] == [1, 2]


def test_install_with_nothing_pending_returns_empty(connector, clock):
    cache = _cache(connector, clock)
    assert cache.install([Source(1, "http://prom", "up")]) == {}


def test_install_failure_leaves_state_untouched(connector, clock):
    old_sources = [Source(1, "http://prom", "up")]
    cache = _cache(connector, clock, sources=old_sources, limit=100)
    cache.collect()
    pending = cache.pending()
    count = cache.sample_count
    last_flush = cache.last_flush
    registry = cache.registry

    connector.fail_on.add("http://down")
    clock.advance(minutes=1)
    with pytest.raises(BackendConnectError):
        cache.install([Source(1, "http://fine", "up"), Source(2, "http://down", "up")])

    assert cache.sources == old_sources
    assert cache.registry is registry
    assert cache.pending() == pending
    assert cache.sample_count == count
    assert cache.last_flush == last_flush
    assert not registry.connections["http://prom"].closed


def test_install_shares_connections_by_endpoint(connector, clock):
    cache = _cache(connector, clock, limit=100)
    connector.outcomes.update({"a": 1, "b": 1, "c": 1})
    cache.install([
        Source(1, "http://blah", "a"),
        Source(2, "http://a-url", "b"),
        Source(3, "http://a-url", "c"),
    ])
    cache.collect()

    assert len(connector.built) == 2
    shared = cache.registry.connections["http://a-url"]
    assert shared.calls == ["b", "c"]


def test_install_closes_old_connections(connector, clock):
    cache = _cache(connector, clock, sources=[Source(1, "http://old", "up")])
    old = connector.built[0]
    cache.install([Source(1, "http://old", "up")])
    assert old.closed
    # same endpoint gets a fresh connection, never reused across installs
    assert cache.registry.connections["http://old"] is not old


def test_stale_sources_not_queried_after_install(connector, clock):
    cache = _cache(connector, clock, sources=[Source(1, "http://old", "old_query")], limit=100)
    cache.install([Source(2, "http://new", "new_query")])
    cache.collect()
    assert list(cache.pending()) == [2]
    assert connector.built[0].calls == []
