# tests/conftest.py

"""Shared pytest fixtures for the hotelwatch test suite."""

from collections.abc import Generator
from pathlib import Path

import pytest

from hotelwatch.config.settings import Settings


@pytest.fixture(autouse=True)
def isolated_paths(tmp_path: Path) -> Generator[None, None, None]:
    """Point log and database paths at a per-test temp directory."""
    original_logs = Settings.LOGS_DIR
    original_db = Settings.PRICE_DB_PATH
    Settings.LOGS_DIR = tmp_path / "logs"
    Settings.PRICE_DB_PATH = tmp_path / "data" / "hotelwatch.db"
    yield
    Settings.LOGS_DIR = original_logs
    Settings.PRICE_DB_PATH = original_db
