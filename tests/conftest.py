import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "pastes.db"


@pytest.fixture
def settings(db_path):
    return Settings(
        db_url=f"sqlite+aiosqlite:///{db_path}",
        schema_probe_ttl=0,
        bcrypt_rounds=4,
        rate_limit_enabled=False,
    )


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def make_paste(client):
    def _make(**payload):
        resp = client.post("/pastes", json=payload)
        assert resp.status_code == 201, resp.text
        return resp.json()["paste"]
    return _make
