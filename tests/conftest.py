"""Pytest configuration and shared fixtures."""

import copy
import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from snapkeep.backup.models import BackupOrigin, BackupRecord, RemoteArtifact
from snapkeep.backup.remote import RemoteReplicaAdapter
from snapkeep.config.schemas import DEFAULT_CONFIG
from snapkeep.utils.errors import NotAuthenticatedError


class InMemoryReplica(RemoteReplicaAdapter):
    """Remote replica double that keeps objects in a dict."""

    def __init__(self, authenticated=True):
        self.authenticated = authenticated
        self.objects = {}
        self.uploads = []
        self._counter = 0

    def _check(self):
        if not self.authenticated:
            raise NotAuthenticatedError("Not authenticated with remote storage")

    def upload(self, data, name, on_progress=None):
        self._check()
        self._counter += 1
        remote_id = f"obj{self._counter}"
        created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=self._counter)
        self.objects[remote_id] = (name, bytes(data), created)
        self.uploads.append(name)
        if on_progress:
            on_progress(100)
        return remote_id

    def download(self, remote_id, on_progress=None):
        self._check()
        return self.objects[remote_id][1]

    def list(self):
        self._check()
        return [
            RemoteArtifact(id=remote_id, name=name, size=len(data), created_at=created)
            for remote_id, (name, data, created) in self.objects.items()
        ]

    def delete(self, remote_id):
        self._check()
        self.objects.pop(remote_id, None)

    def quota(self):
        self._check()
        used = sum(len(data) for _, data, _ in self.objects.values())
        return {"used": used, "total": 1024 * 1024, "available": 1024 * 1024 - used}


def create_database(path, rows=("alpha", "beta")):
    """Create a small SQLite database with an ``items`` table."""
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE IF NOT EXISTS items (id INTEGER PRIMARY KEY, name TEXT)")
        conn.executemany("INSERT INTO items (name) VALUES (?)", [(row,) for row in rows])
        conn.commit()
    finally:
        conn.close()


def read_names(path):
    conn = sqlite3.connect(path)
    try:
        return [row[0] for row in conn.execute("SELECT name FROM items ORDER BY id")]
    finally:
        conn.close()


def make_record(backup_id="backup-manual-20240101T000000000000Z", created_at=None, **overrides):
    """Build a valid local backup record."""
    fields = {
        "id": backup_id,
        "filename": f"{backup_id}.db",
        "original_filename": "store.db",
        "size": 4,
        "checksum": "",
        "created_at": created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        "origin": BackupOrigin.MANUAL,
    }
    fields.update(overrides)
    return BackupRecord(**fields)


@pytest.fixture
def temp_directory():
    """Create a temporary directory for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    # Cleanup
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def data_dir(temp_directory):
    """Data directory holding a live ``store.db``."""
    create_database(os.path.join(temp_directory, "store.db"))
    return temp_directory


@pytest.fixture
def sample_config():
    """Default configuration document."""
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def replica():
    """Authenticated in-memory remote replica."""
    return InMemoryReplica()
