# snapshot_store.py

# Persistence adapters for the FileSystem snapshot. The interpreter only
# needs load() and save(fs); both backends keep the snapshot as a serialized
# JSON string under a single fixed key, the way a browser key-value store
# would.

import json
import logging
import os
import tempfile
from pathlib import Path

from fake_filesystem import FileSystem, default_filesystem

logger = logging.getLogger(__name__)

FS_STORAGE_KEY = "ubuntu-terminal-fs"


def serialize(fs):
    return json.dumps(fs.to_dict())


def deserialize(raw):
    """Parse a stored snapshot, or fall back to the default one.

    A missing value means first run. A value that cannot be parsed is
    logged and replaced.
    """
    if not raw:
        return default_filesystem()

    try:
        return FileSystem.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        logger.warning("Failed to parse stored file system, using default: %s", e)
        return default_filesystem()


class MemoryStorage:
    """Keeps the serialized snapshot in a dict; handy for tests and one-off sessions."""

    def __init__(self, key=FS_STORAGE_KEY):
        self.key = key
        self.items = {}

    def load(self):
        return deserialize(self.items.get(self.key))

    def save(self, fs):
        self.items[self.key] = serialize(fs)


class JsonFileStorage:
    """Key-value JSON document on disk; the snapshot is one entry in it."""

    def __init__(self, path, key=FS_STORAGE_KEY):
        self.path = Path(path)
        self.key = key

    def _read_items(self):
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                items = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Cannot read state file %s: %s", self.path, e)
            return {}
        if not isinstance(items, dict):
            logger.warning("State file %s is not a JSON object, ignoring it", self.path)
            return {}
        return items

    def load(self):
        return deserialize(self._read_items().get(self.key))

    def save(self, fs):
        items = self._read_items()
        items[self.key] = serialize(fs)

        parent_dir = self.path.parent
        os.makedirs(parent_dir, exist_ok=True)

        # Write to a temp file in the same directory, then swap it in
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=parent_dir,
            prefix=".tmp_",
            suffix=".json",
            delete=False,
        ) as tmp_file:
            temp_path = tmp_file.name
            json.dump(items, tmp_file)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())

        try:
            os.replace(temp_path, self.path)
        except OSError:
            os.unlink(temp_path)
            raise

        logger.debug("Snapshot saved to %s", self.path)
