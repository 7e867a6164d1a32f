from __future__ import annotations

import asyncio

import pytest

from storefront.services.metrics import MetricsFlushService, MetricsStore


class CountingStore:
    def __init__(self) -> None:
        self.flushes = 0

    def flush_summary(self) -> int:
        self.flushes += 1
        return 5


@pytest.mark.asyncio
async def test_flush_service_flushes_on_interval_until_stopped() -> None:
    store = CountingStore()
    service = MetricsFlushService(store, interval_seconds=0.01)  # type: ignore[arg-type]

    await service.start()
    assert service.running
    await asyncio.sleep(0.1)
    await service.stop()

    assert not service.running
    flushed = store.flushes
    assert flushed >= 1
    await asyncio.sleep(0.05)
    assert store.flushes == flushed


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_without_start_is_noop() -> None:
    service = MetricsFlushService(CountingStore(), interval_seconds=60)  # type: ignore[arg-type]

    await service.stop()
    await service.start()
    task = service._task  # noqa: SLF001
    await service.start()
    assert service._task is task  # noqa: SLF001
    await service.stop()


@pytest.mark.asyncio
async def test_manual_flush_runs_off_the_event_loop(fake_sampler) -> None:
    store = MetricsStore(fake_sampler)
    store.record_api_call("/api/orders", "GET", 200, 3)
    store.record_database_query("orders.list", 3)
    service = MetricsFlushService(store)

    assert await service.flush() == 5


@pytest.mark.asyncio
async def test_flush_errors_do_not_stop_the_loop() -> None:
    class FlakyStore(CountingStore):
        def flush_summary(self) -> int:
            self.flushes += 1
            if self.flushes == 1:
                raise RuntimeError("log sink unavailable")
            return 5

    store = FlakyStore()
    service = MetricsFlushService(store, interval_seconds=0.01)  # type: ignore[arg-type]

    await service.start()
    await asyncio.sleep(0.1)
    await service.stop()

    assert store.flushes >= 2
