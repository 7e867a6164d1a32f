from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio

import storefront.db.session as session_module
from storefront.config import Settings
from storefront.contracts.metrics import SystemSnapshot
from storefront.db.session import Database
from storefront.db.session import init_database as _init_database

MB = 1024 * 1024
GB = 1024 * MB


class FakeSampler:
    """Stand-in for ProcessSampler with fixed readings."""

    def __init__(
        self,
        *,
        memory_bytes: int = 100 * MB,
        cpu_pct: float = 5.0,
        disk: tuple[int, int] | Exception = (50 * GB, 100 * GB),
    ) -> None:
        self.memory_bytes = memory_bytes
        self.cpu_pct = cpu_pct
        self.disk = disk
        self.disk_paths: list[str] = []

    def sample_memory(self) -> int:
        return self.memory_bytes

    def sample_cpu(self) -> float:
        return self.cpu_pct

    def sample_disk(self, path: str) -> tuple[int, int]:
        self.disk_paths.append(path)
        if isinstance(self.disk, Exception):
            raise self.disk
        return self.disk

    def snapshot(self) -> SystemSnapshot:
        return SystemSnapshot(
            memory_bytes=self.memory_bytes,
            cpu_time_ms=1234.0,
            thread_count=4,
            uptime_seconds=10.0,
        )


@pytest.fixture
def fake_sampler() -> FakeSampler:
    return FakeSampler()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        env="dev",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'storefront-test.db'}",
        log_dir=str(tmp_path / "logs"),
        log_file_enabled=False,
        admin_api_key="admin-secret",
        api_keys="alice:alice-key,bob:bob-key",
        version="9.9.9-test",
    )


@pytest.fixture
def reset_global_database() -> Iterator[None]:
    session_module._database = None  # type: ignore[attr-defined]
    yield
    session_module._database = None  # type: ignore[attr-defined]


@pytest_asyncio.fixture
async def sqlite_db(tmp_path: Path) -> AsyncIterator[Database]:
    db_path = tmp_path / "storefront-test.db"
    db = _init_database(f"sqlite+aiosqlite:///{db_path}")
    await db.connect()
    try:
        yield db
    finally:
        await db.disconnect()
        session_module._database = None  # type: ignore[attr-defined]
