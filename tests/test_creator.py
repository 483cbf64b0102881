"""Tests for backup creation."""

import os
import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from conftest import InMemoryReplica, read_names
from snapkeep.backup import events
from snapkeep.backup.creator import BackupCreator
from snapkeep.backup.engine import SQLiteEngine
from snapkeep.backup.events import EventBus
from snapkeep.backup.retention import RetentionPolicy
from snapkeep.backup.storage import BackupStorage
from snapkeep.utils.errors import StorageError, TransportError
from snapkeep.utils.files import FileManager


class TestBackupCreator:
    """Test the backup creation pipeline."""

    @pytest.fixture(autouse=True)
    def setup_creator(self, data_dir):
        self.data_dir = data_dir
        self.db_path = os.path.join(data_dir, "store.db")
        self.files = FileManager(data_dir)
        self.storage = BackupStorage(self.files, "backups")
        self.retention = RetentionPolicy(self.storage)
        self.engine = SQLiteEngine(self.db_path)
        self.event_bus = EventBus()
        self.received = []
        self.event_bus.subscribe(self.received.append)

    def _creator(self, **kwargs):
        kwargs.setdefault("max_local_backups", 30)
        return BackupCreator(
            engine=self.engine,
            storage=self.storage,
            retention=self.retention,
            event_bus=self.event_bus,
            **kwargs,
        )

    def test_create_backup_success(self):
        """Test a local backup produces artifact, sidecar and event."""
        result = self._creator().create_backup("manual")

        assert result.success, result.error
        assert result.backup_id.startswith("backup-manual-")
        assert os.path.exists(result.local_path)
        assert read_names(result.local_path) == ["alpha", "beta"]

        record = self.storage.load_record(result.backup_id)
        assert record is not None
        assert record.checksum == result.checksum
        assert record.size == result.size
        assert record.is_local and not record.is_remote

        assert [event.name for event in self.received] == [events.BACKUP_COMPLETED]
        assert self.received[0].payload["backup_id"] == result.backup_id
        assert self.received[0].payload["success"] is True

    def test_create_backup_of_wal_database(self):
        """Test the snapshot includes rows still in the write-ahead log."""
        conn = self.engine.connect()
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("INSERT INTO items (name) VALUES ('gamma')")
        conn.commit()

        try:
            result = self._creator().create_backup("automatic")
        finally:
            conn.close()

        assert result.success, result.error
        assert read_names(result.local_path) == ["alpha", "beta", "gamma"]

    def test_engine_failure_is_reported(self):
        """Test a failing hot backup fails the whole operation."""
        engine = MagicMock()
        engine.hot_backup.return_value = {"success": False, "error": "disk full"}
        creator = BackupCreator(engine=engine, storage=self.storage, retention=self.retention, event_bus=self.event_bus)

        result = creator.create_backup("manual")

        assert not result.success
        assert "disk full" in result.error
        assert result.backup_id in result.error
        assert self.storage.list_records() == []
        assert self.received[0].name == events.BACKUP_FAILED

    def test_missing_database_fails(self):
        """Test backing up a missing database fails cleanly."""
        os.remove(self.db_path)

        result = self._creator().create_backup("manual")

        assert not result.success
        assert "not found" in result.error

    def test_metadata_failure_removes_artifact(self):
        """Test the artifact is removed when its sidecar cannot be written."""
        with patch.object(self.storage, "save_record", side_effect=StorageError("metadata write failed")):
            result = self._creator().create_backup("manual")

        assert not result.success
        assert "metadata write failed" in result.error
        assert self.files.list_dir("backups") == []

    def test_size_limit_rejects_large_backup(self):
        """Test artifacts above the size limit are discarded."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("INSERT INTO items (name) VALUES (?)", ("x" * (2 * 1024 * 1024),))
        conn.commit()
        conn.close()

        result = self._creator(max_backup_size_mb=1).create_backup("manual")

        assert not result.success
        assert "limit" in result.error
        assert self.files.list_dir("backups") == []

    def test_remote_upload_marks_record(self):
        """Test a successful upload records the remote object id."""
        replica = InMemoryReplica()

        result = self._creator(remote=replica).create_backup("manual")

        assert result.success
        assert result.remote_id == "obj1"
        record = self.storage.load_record(result.backup_id)
        assert record.is_remote
        assert record.remote_id == "obj1"
        assert replica.uploads == [record.filename]

    def test_not_authenticated_is_a_warning(self):
        """Test a missing remote credential degrades to local-only."""
        replica = InMemoryReplica(authenticated=False)

        result = self._creator(remote=replica).create_backup("manual")

        assert result.success
        assert result.remote_id is None
        assert len(result.warnings) == 1
        assert "Remote upload failed" in result.warnings[0]
        assert not self.storage.load_record(result.backup_id).is_remote

    def test_transport_error_is_a_warning(self):
        """Test network failures never fail the local backup."""
        replica = MagicMock()
        replica.upload.side_effect = TransportError("timeout", status_code=503)

        result = self._creator(remote=replica).create_backup("manual")

        assert result.success
        assert "timeout" in result.warnings[0]

    def test_retention_applied_after_backup(self):
        """Test only the newest backups are kept."""
        creator = self._creator(max_local_backups=2)

        ids = [creator.create_backup("manual").backup_id for _ in range(3)]

        remaining = [record.id for record in self.storage.list_records()]
        assert remaining == [ids[2], ids[1]]

    def test_list_backups_merges_remote_only(self):
        """Test remote objects without a local record are listed."""
        replica = InMemoryReplica()
        creator = self._creator(remote=replica)
        result = creator.create_backup("manual")
        replica.upload(b"old", "backup-automatic-20230101T000000000000Z.db")

        listed = creator.list_backups()

        assert {record.id for record in listed} == {result.backup_id, "remote-obj2"}
        assert [record.id for record in creator.list_backups(include_remote=False)] == [result.backup_id]

    def test_list_backups_survives_remote_failure(self):
        """Test remote listing errors are logged and skipped."""
        result = self._creator().create_backup("manual")
        replica = InMemoryReplica(authenticated=False)

        listed = self._creator(remote=replica).list_backups()

        assert [record.id for record in listed] == [result.backup_id]

    def test_delete_backup(self):
        """Test explicit deletion removes artifact and sidecar."""
        creator = self._creator()
        result = creator.create_backup("manual")

        assert creator.delete_backup(result.backup_id)
        assert self.storage.list_records() == []
        assert not os.path.exists(result.local_path)

    def test_delete_unknown_backup(self):
        """Test deleting an unknown id reports nothing deleted."""
        assert not self._creator().delete_backup("backup-manual-missing")

    def test_delete_remote_only_backup(self):
        """Test remote-only entries are deleted from the replica on request."""
        replica = InMemoryReplica()
        replica.upload(b"x", "backup-manual-old.db")
        creator = self._creator(remote=replica)

        assert not creator.delete_backup("remote-obj1")
        assert creator.delete_backup("remote-obj1", delete_remote=True)
        assert replica.objects == {}
