from __future__ import annotations

import os

import pytest

from dpengine.core.config.manager import ConfigManager
from dpengine.core.config.paths import ConfigFsPaths
from dpengine.core.store.memory import MemoryAuditStore, MemoryRecordStore
from dpengine.core.store.sqlite import SqliteAuditStore, SqliteRecordStore
from tests.helpers.builders import make_engine
from tests.helpers.fakes import FakeClock, RecordingLogger


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Isolated root with config/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load()
    return cm


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def logger():
    return RecordingLogger()


@pytest.fixture(params=["memory", "sqlite"])
def stores(request, tmp_path):
    """Both backends; every engine-level test runs against each."""
    if request.param == "memory":
        return MemoryRecordStore(), MemoryAuditStore()
    path = str(tmp_path / "data" / "engine.sqlite")
    return SqliteRecordStore(path=path, timeout_seconds=2.0), SqliteAuditStore(path=path, timeout_seconds=2.0)


@pytest.fixture
def engine(stores, clock, logger):
    return make_engine(stores, clock, logger=logger)
