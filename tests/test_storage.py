import json
import threading

import pytest

from conftest import FakeRedis, make_settings
from notes_website.backend.domain import Attachment, StorageError
from notes_website.backend.storage import (
    BackendError, FileBackend, MemoryBackend, RedisBackend, Storage, build_storage, user_key,
)


class BrokenBackend:
    name = "broken"
    is_global = False

    def load(self, key):
        raise BackendError("disk on fire")

    def save(self, key, document):
        raise BackendError("disk on fire")


@pytest.fixture(params=["memory", "file", "redis"])
def store(request, tmp_path):
    if request.param == "memory":
        return Storage(MemoryBackend())
    if request.param == "file":
        return Storage(FileBackend(str(tmp_path / "data")))
    return Storage(RedisBackend(FakeRedis()))


def test_create_then_list_puts_newest_first(store):
    first = store.create("1", "  First  ", "  body  ")
    second = store.create("1", "Second", "body")

    notes = store.list("1")
    assert [n.id for n in notes] == [second.id, first.id]
    assert notes[1].title == "First"
    assert notes[1].content == "body"
    assert notes[0].created_at == notes[0].updated_at
    assert notes[0].id.startswith("entry-")


def test_update_refreshes_updated_at_only(store):
    note = store.create("1", "A", "B")

    updated = store.update("1", note.id, "A2", "B2")

    assert updated.id == note.id
    assert updated.created_at == note.created_at
    assert updated.user_id == "1"
    assert updated.updated_at > note.updated_at
    assert store.get("1", note.id).title == "A2"


def test_update_keeps_attachments_unless_replaced(store):
    files = [Attachment("att_1", "a.txt", "text/plain", 5, "aGVsbG8=", "2024-01-01T00:00:00.000Z")]
    note = store.create("1", "A", "B", files)

    kept = store.update("1", note.id, "A", "B2")
    assert [a.id for a in kept.attachments] == ["att_1"]

    cleared = store.update("1", note.id, "A", "B3", [])
    assert cleared.attachments == []


def test_delete_then_delete_again(store):
    note = store.create("1", "A", "B")

    assert store.delete("1", note.id) is True
    assert note.id not in [n.id for n in store.list("1")]
    assert store.delete("1", note.id) is False


def test_other_users_cannot_touch_notes(store):
    note = store.create("1", "Private", "secret")

    assert store.list("2") == []
    assert store.get("2", note.id) is None
    assert store.update("2", note.id, "hijack", "x") is None
    assert store.delete("2", note.id) is False
    assert store.get("1", note.id).content == "secret"


def test_reads_drop_entries_owned_by_someone_else():
    backend = MemoryBackend()
    backend.save(user_key("1"), {"entries": [
        {"id": "entry-1", "userId": "1", "title": "mine", "content": "x",
         "createdAt": "2024-01-01T00:00:00.000Z", "updatedAt": "2024-01-01T00:00:00.000Z"},
        {"id": "entry-2", "userId": "2", "title": "stray", "content": "y",
         "createdAt": "2024-01-02T00:00:00.000Z", "updatedAt": "2024-01-02T00:00:00.000Z"},
    ], "lastModified": None})
    store = Storage(backend)

    assert [n.id for n in store.list("1")] == ["entry-1"]
    assert store.get("1", "entry-2") is None


def test_file_backend_missing_or_corrupt_reads_empty(tmp_path):
    backend = FileBackend(str(tmp_path / "data"))
    assert backend.load(user_key("1"))["entries"] == []

    backend.data_dir.mkdir(parents=True)
    backend.path_for(user_key("1")).write_text("{not json", encoding="utf-8")
    assert Storage(backend).list("1") == []


def test_file_backend_writes_whole_document_without_leftovers(tmp_path):
    backend = FileBackend(str(tmp_path / "data"))
    note = Storage(backend).create("1", "A", "B")

    path = backend.path_for(user_key("1"))
    assert path.name == "user_1_notes.json"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert [e["id"] for e in data["entries"]] == [note.id]
    assert data["lastModified"]
    assert list(backend.data_dir.glob("*.tmp")) == []


def test_redis_backend_stores_json_under_user_key():
    fake = FakeRedis()
    note = Storage(RedisBackend(fake)).create("4", "A", "B")

    stored = json.loads(fake.data["user:4:notes"])
    assert stored["entries"][0]["id"] == note.id


def test_primary_failure_switches_to_fallback_for_good():
    fake = FakeRedis()
    store = Storage(RedisBackend(fake), MemoryBackend())
    store.create("1", "in redis", "x")
    assert store.name == "redis"
    assert store.is_global is True

    fake.down = True
    note = store.create("1", "in memory", "y")
    assert store.name == "memory"
    assert store.is_global is False

    # Redis recovering does not flip the process back.
    fake.down = False
    assert [n.id for n in store.list("1")] == [note.id]


def test_both_backends_failing_raises_storage_error():
    store = Storage(BrokenBackend(), BrokenBackend())
    with pytest.raises(StorageError):
        store.list("1")

    single = Storage(BrokenBackend())
    with pytest.raises(StorageError):
        single.create("1", "A", "B")


def test_build_storage_modes(tmp_path):
    assert build_storage(make_settings(tmp_path, storage_backend="memory")).name == "memory"
    assert build_storage(make_settings(tmp_path, storage_backend="file")).name == "file"

    # auto without Redis configured goes straight to the local fallback
    auto = build_storage(make_settings(tmp_path, storage_backend="auto", fallback_backend="memory"))
    assert auto.name == "memory"
    assert auto.fallback is None


def test_build_storage_pings_redis_once(tmp_path):
    settings = make_settings(tmp_path, storage_backend="auto")

    up = build_storage(settings, redis_backend=RedisBackend(FakeRedis()))
    assert up.name == "redis"
    assert up.fallback.name == "file"

    down = build_storage(settings, redis_backend=RedisBackend(FakeRedis(down=True)))
    assert down.name == "file"


def test_build_storage_rejects_bad_configuration(tmp_path):
    with pytest.raises(ValueError):
        build_storage(make_settings(tmp_path, storage_backend="redis"))
    with pytest.raises(ValueError):
        build_storage(make_settings(tmp_path, storage_backend="postgres"))


def test_concurrent_creates_are_not_lost(tmp_path):
    store = Storage(FileBackend(str(tmp_path / "data")))
    note = store.create("1", "shared", "v0")
    created = []

    def worker(i):
        created.append(store.create("1", f"note {i}", "body").id)
        store.update("1", note.id, "shared", f"v{i}")

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(40)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    ids = {n.id for n in store.list("1")}
    assert len(created) == 40
    assert set(created) | {note.id} == ids


def test_build_storage_rejects_unwritable_data_dir(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(ValueError):
        build_storage(make_settings(tmp_path, storage_backend="file", data_dir=str(blocker)))
