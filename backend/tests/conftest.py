import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(tmp_path, monkeypatch):
    """TestClient bound to a throwaway SQLite file; startup creates the schema."""
    monkeypatch.setenv("MIDLANG_DB_PATH", str(tmp_path / "midlang_test.db"))
    from backend.app.main import app

    with TestClient(app) as c:
        yield c
