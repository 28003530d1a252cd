import pytest

from dealflow_sync_core.db import init_db


@pytest.fixture(autouse=True)
def sqlite_db(tmp_path, monkeypatch):
    """Every test gets its own database file."""
    path = tmp_path / "sync.db"
    monkeypatch.setenv("SQLITE_PATH", str(path))
    init_db()
    return path
