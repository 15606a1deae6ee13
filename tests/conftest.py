from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from healthsync import db as db_module


@pytest.fixture
def db_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "test.db"
    monkeypatch.setattr(db_module, "DATABASE_PATH", str(path))
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Europe/Stockholm")
    db_module.init_db()
    return path


@pytest.fixture
def conn(db_path: Path):
    connection = db_module.get_db()
    try:
        yield connection
    finally:
        connection.close()


@pytest.fixture
def client(db_path: Path) -> TestClient:
    from healthsync.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
