from pathlib import Path

import pytest
import redis
from fastapi.testclient import TestClient

from notes_website.backend.config import Settings
from notes_website.backend.main import create_app
from notes_website.backend.storage import MemoryBackend, Storage


class FakeRedis:
    """In-process stand-in for the handful of redis-py calls the storage makes."""

    def __init__(self, down: bool = False):
        self.data = {}
        self.down = down

    def _check(self):
        if self.down:
            raise redis.ConnectionError("connection refused")

    def ping(self):
        self._check()
        return True

    def get(self, key):
        self._check()
        return self.data.get(key)

    def set(self, key, value):
        self._check()
        self.data[key] = value
        return True


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "auth_secret": "test-signing-secret-0123456789abcdef",
        "storage_backend": "memory",
        "data_dir": str(tmp_path / "data"),
        "redis_url": None,
        "google_generative_ai_api_key": None,
        "gemini_api_key": None,
        "website_dir": str(tmp_path / "website"),
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def storage():
    return Storage(MemoryBackend())


@pytest.fixture
def client(settings, storage):
    return TestClient(create_app(settings, storage=storage))


def login(client: TestClient, username: str = "demo", password: str = "demo123") -> str:
    res = client.post("/auth/login", json={"username": username, "password": password})
    assert res.status_code == 200, res.text
    return res.json()["token"]
