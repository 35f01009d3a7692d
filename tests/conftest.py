from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest

from db_sandbox import SampleDatabases
from progress_store import LocalStore, ProgressStore, ThemeStore

DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@pytest.fixture()
def databases() -> Iterator[SampleDatabases]:
    dbs = SampleDatabases(databases_dir=DATA_DIR / "databases", timeout_ms=2500)
    dbs.init_database("hospital")
    yield dbs
    dbs.close()


@pytest.fixture()
def local_store(tmp_path: Path) -> LocalStore:
    return LocalStore(tmp_path / "storage.json", quota_bytes=0)


@pytest.fixture()
def progress_store(local_store: LocalStore) -> ProgressStore:
    return ProgressStore(local_store)


@pytest.fixture()
def theme_store(local_store: LocalStore) -> ThemeStore:
    return ThemeStore(local_store)
