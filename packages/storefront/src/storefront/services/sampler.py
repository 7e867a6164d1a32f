"""Process-level OS metrics for health checks and metric summaries."""

from __future__ import annotations

import threading
import time

import psutil

from storefront.contracts.metrics import SystemSnapshot


class ProcessSampler:
    """Reads memory, CPU and disk usage for the current process.

    ``sample_cpu`` keeps a single baseline (last wall time, last CPU time)
    on the instance. Concurrent callers share that baseline, so two checks
    racing each other observe a shorter delta than expected. Health probes
    are coarse enough that this is tolerated.
    """

    def __init__(self, process: psutil.Process | None = None) -> None:
        self._process = process or psutil.Process()
        self._lock = threading.Lock()
        self._last_wall: float | None = None
        self._last_cpu: float = 0.0

    def _cpu_seconds(self) -> float:
        times = self._process.cpu_times()
        return times.user + times.system

    def sample_memory(self) -> int:
        """Resident set size of the process in bytes."""
        return int(self._process.memory_info().rss)

    def sample_cpu(self) -> float:
        """CPU usage percent since the previous call, normalized by core count.

        Returns 0.0 on the first call since there is no baseline yet.
        """
        with self._lock:
            now = time.monotonic()
            cpu = self._cpu_seconds()
            usage = 0.0
            if self._last_wall is not None:
                wall_delta = now - self._last_wall
                if wall_delta > 0:
                    cores = psutil.cpu_count() or 1
                    usage = (cpu - self._last_cpu) / wall_delta / cores * 100
            self._last_wall = now
            self._last_cpu = cpu
            return usage

    def sample_disk(self, path: str) -> tuple[int, int]:
        """Return ``(free_bytes, total_bytes)`` for the filesystem at ``path``.

        Raises ``OSError`` when the path is invalid or inaccessible.
        """
        usage = psutil.disk_usage(path)
        return int(usage.free), int(usage.total)

    def cpu_time_ms(self) -> float:
        """Cumulative CPU time consumed by the process in milliseconds."""
        return self._cpu_seconds() * 1000.0

    def thread_count(self) -> int:
        return int(self._process.num_threads())

    def uptime_seconds(self) -> float:
        return max(0.0, time.time() - self._process.create_time())

    def snapshot(self) -> SystemSnapshot:
        return SystemSnapshot(
            memory_bytes=self.sample_memory(),
            cpu_time_ms=self.cpu_time_ms(),
            thread_count=self.thread_count(),
            uptime_seconds=self.uptime_seconds(),
        )
