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
    monkeypatch.setattr(db, "DB_PATH", str(db_path))
    return str(db_path)


@pytest.fixture
def sqlite_store(temp_db):
    import db

    store = db.SQLiteLearnerStore(temp_db, max_connections=4)
    yield store
    store.close()


@pytest.fixture
def memory_store():
    import db

    return db.InMemoryLearnerStore()
