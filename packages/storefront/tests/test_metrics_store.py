from __future__ import annotations

import logging
import threading

import pytest

from storefront.services.metrics import MetricsStore, cache_hit_rate


@pytest.fixture
def store(fake_sampler) -> MetricsStore:
    return MetricsStore(fake_sampler)


def test_record_api_call_tracks_count_latency_and_status_codes(store: MetricsStore) -> None:
    store.record_api_call("/api/orders", "GET", 200, 40)
    store.record_api_call("/api/orders", "GET", 200, 10)
    store.record_api_call("/api/orders", "GET", 404, 25)

    snap = store.get_endpoint("/api/orders", "GET")
    assert snap is not None
    assert snap.count == 3
    assert snap.total_ms == 75
    assert snap.min_ms == 10
    assert snap.max_ms == 40
    assert snap.avg_ms == 25
    assert snap.status_codes == {200: 2, 404: 1}
    assert snap.last_call_at is not None


def test_first_sample_seeds_min_and_max(store: MetricsStore) -> None:
    store.record_api_call("/api/cart", "POST", 201, 300)

    snap = store.get_endpoint("/api/cart", "POST")
    assert snap is not None
    assert snap.min_ms == 300
    assert snap.max_ms == 300


def test_endpoints_are_keyed_by_method_and_path(store: MetricsStore) -> None:
    store.record_api_call("/api/cart", "GET", 200, 5)
    store.record_api_call("/api/cart", "POST", 201, 7)

    assert store.get_endpoint("/api/cart", "GET").count == 1
    assert store.get_endpoint("/api/cart", "POST").count == 1
    assert store.get_endpoint("/api/cart", "DELETE") is None


def test_slow_api_call_logs_warning(store: MetricsStore, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="storefront.services.metrics"):
        store.record_api_call("/api/search", "GET", 200, 1000)
        assert "Slow API call" not in caplog.text
        store.record_api_call("/api/search", "GET", 200, 1001)

    assert "Slow API call detected: GET /api/search took 1001ms" in caplog.text


def test_slow_query_threshold_is_configurable(fake_sampler, caplog: pytest.LogCaptureFixture) -> None:
    store = MetricsStore(fake_sampler, slow_query_ms=50)

    with caplog.at_level(logging.WARNING, logger="storefront.services.metrics"):
        store.record_database_query("orders.list", 51)

    assert "Slow database query detected: orders.list took 51ms" in caplog.text
    assert store.get_operation("orders.list").count == 1


def test_time_operation_records_even_when_block_raises(store: MetricsStore) -> None:
    with pytest.raises(RuntimeError):
        with store.time_operation("products.get"):
            raise RuntimeError("boom")

    snap = store.get_operation("products.get")
    assert snap is not None
    assert snap.count == 1


def test_cache_hit_rate_is_zero_without_lookups(store: MetricsStore) -> None:
    assert cache_hit_rate(0, 0) == 0.0
    assert store.snapshot().cache.hit_rate == 0.0


def test_cache_counters_aggregate_across_keys(store: MetricsStore) -> None:
    store.record_cache_hit("product:1")
    store.record_cache_hit("product:1")
    store.record_cache_miss("product:1")
    store.record_cache_miss("category:7")

    cache = store.snapshot().cache
    assert cache.hits == 2
    assert cache.misses == 2
    assert cache.hit_rate == pytest.approx(50.0)
    assert cache.keys["product:1"].hits == 2
    assert cache.keys["category:7"].misses == 1


def test_user_actions_count_unique_users(store: MetricsStore) -> None:
    store.record_user_action("alice", "POST /api/cart")
    store.record_user_action("alice", "POST /api/cart")
    store.record_user_action("bob", "DELETE /api/cart/{item_id}")

    users = store.snapshot().users
    assert users.unique_users == 2
    assert users.total_actions == 3
    assert users.actions["alice:POST /api/cart"] == 2


def test_snapshot_can_skip_system_sample(store: MetricsStore) -> None:
    assert store.snapshot(include_system=False).system is None
    assert store.snapshot().system.thread_count == 4


@pytest.mark.performance
def test_concurrent_recording_loses_no_increments(store: MetricsStore) -> None:
    threads_n = 8
    per_thread = 1000
    barrier = threading.Barrier(threads_n)

    def worker() -> None:
        barrier.wait()
        for i in range(per_thread):
            store.record_api_call("/api/products", "GET", 200, i % 50)
            store.record_cache_hit("product:hot")
            store.record_user_action("alice", "POST /api/cart")

    threads = [threading.Thread(target=worker) for _ in range(threads_n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    expected = threads_n * per_thread
    snap = store.get_endpoint("/api/products", "GET")
    assert snap.count == expected
    assert snap.status_codes == {200: expected}
    assert snap.min_ms == 0
    assert snap.max_ms == 49

    full = store.snapshot(include_system=False)
    assert full.cache.hits == expected
    assert full.users.total_actions == expected


def test_flush_summary_logs_every_section(store: MetricsStore, caplog: pytest.LogCaptureFixture) -> None:
    store.record_api_call("/api/orders", "GET", 200, 12)
    store.record_database_query("orders.list", 3)
    store.record_cache_hit("order:1")

    with caplog.at_level(logging.INFO, logger="storefront.services.metrics"):
        lines = store.flush_summary()

    assert lines == 5
    assert "API Metrics: /api/orders [GET] - Calls: 1" in caplog.text
    assert "DB Metrics: orders.list - Queries: 1" in caplog.text
    assert "Hit Rate: 100.00%" in caplog.text
    assert "User Activity Metrics: Unique Users: 0" in caplog.text
    assert "System Metrics: Memory Usage: 100MB" in caplog.text


def test_flush_summary_continues_after_a_section_fails(
    fake_sampler, caplog: pytest.LogCaptureFixture
) -> None:
    def broken_snapshot():
        raise RuntimeError("sampler offline")

    fake_sampler.snapshot = broken_snapshot
    store = MetricsStore(fake_sampler)
    store.record_api_call("/api/orders", "GET", 200, 12)

    with caplog.at_level(logging.INFO, logger="storefront.services.metrics"):
        lines = store.flush_summary()

    assert lines == 3
    assert "Error logging system metrics" in caplog.text
    assert "Cache Metrics" in caplog.text
