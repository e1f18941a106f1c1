from __future__ import annotations

from pathlib import Path

import pytest

from stockroom.config import Settings
from stockroom.inventory import InventoryStore
from stockroom.storage import MemoryStorage


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        environment="test",
        data_dir=tmp_path / "data",
        movement_capacity=50,
        movement_display_limit=10,
        secret_key="test-secret",
    )


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def store(storage: MemoryStorage, settings: Settings) -> InventoryStore:
    return InventoryStore(storage, settings)
