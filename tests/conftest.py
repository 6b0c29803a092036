"""Shared fixtures: a migrated snapshot database and a scriptable collaborator."""

import asyncio

import pytest

from chatkeeper.persistence.db import DatabaseManager
from chatkeeper.persistence.migrate import apply_migrations
from chatkeeper.snapshots.store import SnapshotStore


class FakeCollaborator:
    """Collaborator double that emits a scripted event list on initialize."""

    def __init__(self, factory, session_id, provider, backup_interval, emit, script):
        self.factory = factory
        self.session_id = session_id
        self.provider = provider
        self.backup_interval = backup_interval
        self.emit = emit
        self.script = list(script)
        self.initialized = False
        self.destroyed = False
        self.armed_at_destroy = "unset"
        self.block = None
        self.fail_with = None

    async def initialize(self):
        self.initialized = True
        if self.block is not None:
            await self.block.wait()
        if self.fail_with is not None:
            raise self.fail_with
        for event in self.script:
            self.emit(event)

    async def destroy(self):
        self.destroyed = True
        if self.factory.controller is not None:
            self.armed_at_destroy = self.factory.controller.watchdog.armed


class FakeCollaboratorFactory:
    """Builds FakeCollaborators; scripts[i] drives attempt i (last one repeats)."""

    def __init__(self, *scripts):
        self.scripts = list(scripts) or [[]]
        self.created: list[FakeCollaborator] = []
        self.armed_at_create: list = []
        self.controller = None
        self.configure = None

    def __call__(self, session_id, provider, backup_interval, emit):
        index = min(len(self.created), len(self.scripts) - 1)
        collaborator = FakeCollaborator(
            self, session_id, provider, backup_interval, emit, self.scripts[index]
        )
        if self.configure is not None:
            self.configure(len(self.created), collaborator)
        if self.controller is not None:
            self.armed_at_create.append(self.controller.watchdog.armed)
        self.created.append(collaborator)
        return collaborator

    @property
    def calls(self) -> int:
        return len(self.created)


async def wait_until(predicate, timeout=2.0, interval=0.01):
    """Poll predicate until it holds or timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def store_path(tmp_path):
    path = tmp_path / "snapshots.db"
    apply_migrations(path)
    return path


@pytest.fixture
def store_factory(store_path):
    def _factory():
        return SnapshotStore(DatabaseManager(store_path), min_size_bytes=1000, max_backups=1)

    return _factory


@pytest.fixture
def make_factory():
    return FakeCollaboratorFactory


@pytest.fixture(name="wait_until")
def wait_until_fixture():
    return wait_until
