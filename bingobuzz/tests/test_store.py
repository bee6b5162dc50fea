"""Tests for the key/value stores."""

import json
import os

from ..session.store import JsonFileStore, MemoryStore


def test_memory_store_roundtrip():
    store = MemoryStore({"a": "1"})
    assert store.get("a") == "1"
    assert store.set("b", "2") is True
    store.remove("a")
    store.remove("missing")
    assert store.keys() == ["b"]
    assert store.durable is False
    assert store.available is True


def test_json_store_persists_across_instances(tmp_path):
    path = tmp_path / "state.json"
    first = JsonFileStore(path)
    assert first.set("bbz:v1:index", "3") is True

    second = JsonFileStore(path)
    assert second.get("bbz:v1:index") == "3"
    assert json.loads(path.read_text(encoding="utf-8")) == {"bbz:v1:index": "3"}
    assert not (tmp_path / "state.json.tmp").exists()


def test_json_store_remove_rewrites_file(tmp_path):
    path = tmp_path / "state.json"
    store = JsonFileStore(path)
    store.set("k", "v")
    store.remove("k")
    assert json.loads(path.read_text(encoding="utf-8")) == {}


def test_json_store_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("anything") is None
    assert store.set("k", "v") is True
    assert JsonFileStore(path).get("k") == "v"


def test_json_store_ignores_non_string_values(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"good": "x", "bad": 5}), encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("good") == "x"
    assert store.get("bad") is None


def test_json_store_write_failure_is_absorbed(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    store = JsonFileStore(blocker / "state.json")

    assert store.set("k", "v") is False
    assert store.available is False
    # value is still served from memory
    assert store.get("k") == "v"


def test_json_store_reload_reads_disk(tmp_path):
    path = tmp_path / "state.json"
    store = JsonFileStore(path)
    store.set("k", "old")
    path.write_text(json.dumps({"k": "new"}), encoding="utf-8")
    assert store.get("k") == "old"
    store.reload()
    assert store.get("k") == "new"
    assert os.path.exists(path)
