"""Shared test fixtures."""

from pathlib import Path

import pytest

from keepalive.logs.service import LogService
from keepalive.storage.sqlite import SQLiteStorage


@pytest.fixture
def storage(tmp_path: Path) -> SQLiteStorage:
    """A fresh SQLite store per test."""
    return SQLiteStorage(db_path=tmp_path / "test.db")


@pytest.fixture
def log_service(storage: SQLiteStorage) -> LogService:
    return LogService(storage)
