from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tradelog.common.config import SyncSettings
from tradelog.persistence.memory_store import MemoryStore
from tradelog.sync.service import SyncService


class StepClock:
    """Deterministic clock: every call advances by one second."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._now = self._now + timedelta(seconds=1)
        return self._now


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(local_data_dir=tmp_path / "journal", _env_file=None)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(clock=StepClock())


@pytest.fixture
def service(store: MemoryStore, settings: SyncSettings) -> SyncService:
    return SyncService(store, settings=settings)
