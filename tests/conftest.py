from pathlib import Path

import pytest

import database
from database import MovieStore


@pytest.fixture
def tmp_db(tmp_path) -> Path:
    """Returns path to a temporary SQLite database file."""
    return tmp_path / "test.db"


@pytest.fixture
async def store(tmp_db) -> MovieStore:
    await database.init_db(tmp_db)
    return MovieStore(tmp_db)
