"""Tests for snapshot persistence."""

import json
import logging

from fake_filesystem import DIRECTORY, create_node, get_node
from snapshot_store import (
    FS_STORAGE_KEY,
    JsonFileStorage,
    MemoryStorage,
    deserialize,
    serialize,
)


class TestSerialization:
    """Tests for serialize/deserialize."""

    def test_round_trip(self, fs):
        assert deserialize(serialize(fs)).to_dict() == fs.to_dict()

    def test_snapshot_layout(self, fs):
        data = json.loads(serialize(fs))
        assert set(data) == {"root", "currentUser", "users"}
        assert data["users"]["ubuntu"] == {
            "password": "ubuntu",
            "isAdmin": False,
            "homeDir": "/home/ubuntu",
        }
        assert data["root"]["type"] == "directory"
        assert data["root"]["children"]["etc"]["children"]["hosts"]["type"] == "file"

    def test_missing_value_gives_default(self):
        assert get_node(deserialize(None), "/home/ubuntu/welcome.txt") is not None

    def test_garbage_gives_default(self):
        fs = deserialize("{not json")
        assert fs.current_user == "ubuntu"
        assert get_node(fs, "/etc/passwd") is not None

    def test_parse_failure_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="snapshot_store"):
            deserialize("{not json")

        [record] = caplog.records
        assert record.msg == "Failed to parse stored file system, using default: %s"
        assert len(record.args) == 1

    def test_wrong_shape_gives_default(self):
        fs = deserialize(json.dumps({"root": {"type": "file"}, "currentUser": "x", "users": {}}))
        assert fs.current_user == "ubuntu"

    def test_unknown_current_user_gives_default(self, fs):
        data = fs.to_dict()
        data["currentUser"] = "ghost"
        assert deserialize(json.dumps(data)).current_user == "ubuntu"


class TestMemoryStorage:
    """Tests for MemoryStorage."""

    def test_save_then_load(self):
        storage = MemoryStorage()
        fs = storage.load()
        create_node(fs, "/tmp/d", DIRECTORY)
        storage.save(fs)

        assert get_node(storage.load(), "/tmp/d").is_dir

    def test_each_load_is_a_fresh_copy(self):
        storage = MemoryStorage()
        storage.save(storage.load())
        first = storage.load()
        create_node(first, "/tmp/d", DIRECTORY)
        assert get_node(storage.load(), "/tmp/d") is None


class TestJsonFileStorage:
    """Tests for JsonFileStorage."""

    def test_first_run(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "state.json")
        assert storage.load().current_user == "ubuntu"
        assert not (tmp_path / "state.json").exists()

    def test_save_then_load(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "nested" / "state.json")
        fs = storage.load()
        fs.current_user = "root"
        storage.save(fs)

        assert JsonFileStorage(tmp_path / "nested" / "state.json").load().current_user == "root"

    def test_value_is_stored_under_key(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"other": "kept"}))
        JsonFileStorage(path).save(JsonFileStorage(path).load())

        items = json.loads(path.read_text())
        assert items["other"] == "kept"
        assert json.loads(items[FS_STORAGE_KEY])["currentUser"] == "ubuntu"

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("this is not json")
        assert JsonFileStorage(path).load().current_user == "ubuntu"

    def test_corrupt_value(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text(json.dumps({FS_STORAGE_KEY: "[1, 2"}))
        assert JsonFileStorage(path).load().current_user == "ubuntu"
