from __future__ import annotations

from pathlib import Path

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from table_importer.core.config import get_settings
from table_importer.storage import file_storage


class FakeRedis:
    def __init__(self, store: dict, down: bool = False) -> None:
        self.store = store
        self.down = down

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value

    def get(self, key):
        self._check()
        return self.store.get(key)

    def delete(self, key):
        self._check()
        self.store.pop(key, None)

    def close(self):
        pass


@pytest.fixture
def redis_store(monkeypatch):
    store: dict = {}
    state = {"down": False}
    monkeypatch.setattr(
        file_storage,
        "create_redis_client",
        lambda url, **kwargs: FakeRedis(store, down=state["down"]),
    )
    return store, state


def test_upload_round_trips_through_redis(redis_store):
    store, _ = redis_store

    location = file_storage.store_upload("job-1", b"RDF")

    assert location == "redis:job-1"
    assert store == {"files:upload:job-1": b"RDF"}
    assert file_storage.load_upload(location) == b"RDF"

    file_storage.discard_upload(location)
    assert store == {}
    assert file_storage.load_upload(location) is None


def test_upload_falls_back_to_work_dir_when_redis_is_down(redis_store):
    store, state = redis_store
    state["down"] = True

    location = file_storage.store_upload("job-2", b"RDF")

    path = Path(location)
    assert path == Path(get_settings().work_dir) / ".uploads" / "job-2"
    assert path.read_bytes() == b"RDF"
    assert store == {}
    assert file_storage.load_upload(location) == b"RDF"

    file_storage.discard_upload(location)
    assert not path.exists()
    assert file_storage.load_upload(location) is None


def test_oversized_upload_skips_redis(redis_store, monkeypatch):
    store, _ = redis_store
    monkeypatch.setattr(file_storage, "MAX_REDIS_FILE_SIZE", 2)

    location = file_storage.store_upload("job-3", b"RDF")

    assert not location.startswith("redis:")
    assert store == {}
    file_storage.discard_upload(location)


def test_redis_outage_on_load_means_missing_upload(redis_store):
    _, state = redis_store
    state["down"] = True

    assert file_storage.load_upload("redis:job-4") is None
    # Never raises
    file_storage.discard_upload("redis:job-4")
