import json

from core.storage import JsonFileStore, MemoryStore


def test_memory_store_roundtrip():
    store = MemoryStore({"a": "1"})
    store.set("b", "2")
    store.remove("a")
    store.remove("missing")

    assert store.get("a") is None
    assert store.get("b") == "2"


def test_json_store_persists_between_instances(tmp_path):
    path = tmp_path / "nested" / "storage.json"
    JsonFileStore(path).set("forge.history.items", "[]")

    reopened = JsonFileStore(path)

    assert reopened.get("forge.history.items") == "[]"
    assert json.loads(path.read_text(encoding="utf-8")) == {"forge.history.items": "[]"}
    assert not list(path.parent.glob(".store-*"))


def test_json_store_treats_corrupt_file_as_empty(tmp_path):
    path = tmp_path / "storage.json"
    path.write_text("{broken", encoding="utf-8")

    store = JsonFileStore(path)
    assert store.keys() == []

    store.set("k", "v")
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": "v"}


def test_json_store_remove(tmp_path):
    store = JsonFileStore(tmp_path / "storage.json")
    store.set("k", "v")
    store.remove("k")

    assert JsonFileStore(tmp_path / "storage.json").get("k") is None
