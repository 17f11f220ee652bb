import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    # Fetch sequentially unless a test asks for the thread pool.
    monkeypatch.setenv("FETCH_CONCURRENCY", "1")
    db.configure(str(db_path), max_connections=10)
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def now_ms():
    # 2024-03-01T12:00:00Z
    return 1_709_294_400_000
