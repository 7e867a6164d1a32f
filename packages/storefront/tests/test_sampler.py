from __future__ import annotations

import pytest

from storefront.services.sampler import ProcessSampler


def test_first_cpu_sample_has_no_baseline() -> None:
    sampler = ProcessSampler()

    assert sampler.sample_cpu() == 0.0
    assert sampler.sample_cpu() >= 0.0


def test_memory_and_snapshot_read_the_current_process() -> None:
    sampler = ProcessSampler()

    assert sampler.sample_memory() > 0
    snap = sampler.snapshot()
    assert snap.memory_bytes > 0
    assert snap.thread_count >= 1
    assert snap.cpu_time_ms >= 0.0


def test_disk_sample_for_existing_path(tmp_path) -> None:
    free, total = ProcessSampler().sample_disk(str(tmp_path))

    assert total > 0
    assert 0 <= free <= total


def test_disk_sample_for_missing_path_raises(tmp_path) -> None:
    with pytest.raises(OSError):
        ProcessSampler().sample_disk(str(tmp_path / "does-not-exist"))
