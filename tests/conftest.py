import pytest

from command_processor import Terminal
from fake_filesystem import default_filesystem
from snapshot_store import MemoryStorage


@pytest.fixture
def fs():
    return default_filesystem()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def terminal(storage):
    return Terminal(storage)
