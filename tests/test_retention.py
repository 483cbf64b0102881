"""Tests for local backup storage and the retention policy."""

import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from conftest import InMemoryReplica, make_record
from snapkeep.backup.creator import BackupCreator
from snapkeep.backup.retention import RetentionPolicy
from snapkeep.backup.storage import BackupStorage
from snapkeep.utils.errors import ValidationError
from snapkeep.utils.files import FileManager


def _store(storage, index, remote_id=None):
    created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=index)
    record = make_record(f"backup-manual-{index:02d}", created_at=created)
    if remote_id:
        record.mark_remote(remote_id)
    storage.files.ensure_directory(storage.backup_dir)
    storage.files.atomic_write(storage.artifact_relpath(record.filename), b"data%d" % index)
    storage.save_record(record)
    return record


class TestBackupStorage:
    """Test the on-disk backup layout."""

    @pytest.fixture(autouse=True)
    def setup_storage(self, temp_directory):
        self.files = FileManager(temp_directory)
        self.storage = BackupStorage(self.files, "backups")

    def test_setup_backup_storage(self):
        """Test the backup directory is created."""
        result = self.storage.setup_backup_storage()

        assert result["success"]
        assert self.storage.directory_exists()

    def test_save_and_load_record(self):
        """Test sidecars round-trip through disk."""
        record = _store(self.storage, 1)

        loaded = self.storage.load_record(record.id)

        assert loaded == record
        assert self.storage.has_artifact(loaded)

    def test_save_invalid_record_rejected(self):
        """Test invalid records are never written."""
        with pytest.raises(ValidationError):
            self.storage.save_record(make_record(is_local=False, is_remote=False))

    def test_list_records_newest_first(self):
        """Test listing order."""
        for index in (2, 0, 1):
            _store(self.storage, index)

        ids = [record.id for record in self.storage.list_records()]

        assert ids == ["backup-manual-02", "backup-manual-01", "backup-manual-00"]

    def test_corrupt_sidecar_is_skipped(self):
        """Test unreadable metadata hides the backup instead of failing."""
        _store(self.storage, 0)
        self.files.atomic_write_text(os.path.join("backups", "broken.metadata.json"), "{not json")

        ids = [record.id for record in self.storage.list_records()]

        assert ids == ["backup-manual-00"]
        assert self.storage.find_orphaned_artifacts() == []

    def test_orphaned_artifact_detected(self):
        """Test artifacts without metadata are reported."""
        self.files.ensure_directory("backups")
        self.files.atomic_write(os.path.join("backups", "lost.db"), b"x")

        assert self.storage.find_orphaned_artifacts() == ["lost.db"]

    def test_dangling_metadata_detected(self):
        """Test sidecars whose artifact is gone are reported."""
        record = _store(self.storage, 0)
        os.remove(self.storage.artifact_path(record.filename))

        assert self.storage.find_dangling_metadata() == [record.id]

    def test_read_aux_files(self):
        """Test engine side files stored with a backup are found."""
        record = _store(self.storage, 0)
        self.files.atomic_write(self.storage.artifact_relpath(record.filename + "-wal"), b"wal")

        assert self.storage.read_aux_files(record) == {"-wal": b"wal"}

    def test_sidecar_is_json(self):
        """Test the sidecar format on disk."""
        record = _store(self.storage, 3)

        with open(os.path.join(self.storage.backup_path, f"{record.id}.metadata.json")) as f:
            data = json.load(f)

        assert data["version"] == "2"
        assert data["filename"] == record.filename


class TestRetentionPolicy:
    """Test pruning of old local backups."""

    @pytest.fixture(autouse=True)
    def setup_policy(self, temp_directory):
        self.files = FileManager(temp_directory)
        self.storage = BackupStorage(self.files, "backups")
        self.policy = RetentionPolicy(self.storage)

    def test_prune_keeps_k_newest(self):
        """Test exactly the k newest backups survive."""
        for index in range(5):
            _store(self.storage, index)

        deleted = self.policy.prune(self.storage.list_records(), 2)

        remaining = [record.id for record in self.storage.list_records()]
        assert remaining == ["backup-manual-04", "backup-manual-03"]
        assert sorted(deleted) == ["backup-manual-00", "backup-manual-01", "backup-manual-02"]
        assert self.files.list_dir("backups") == sorted(
            [f"{record_id}{suffix}" for record_id in remaining for suffix in (".db", ".metadata.json")]
        )

    def test_prune_noop_under_limit(self):
        """Test nothing is deleted when under the limit."""
        for index in range(2):
            _store(self.storage, index)

        assert self.policy.prune(self.storage.list_records(), 5) == []

    def test_prune_ignores_remote_only_entries(self):
        """Test remote-only records are never pruned."""
        records = [make_record(f"remote-{index}", is_local=False, is_remote=True, remote_id=str(index)) for index in range(3)]

        assert self.policy.select_for_pruning(records, 0) == []

    def test_artifact_delete_failure_keeps_sidecar(self):
        """Test a failed artifact deletion leaves the record referenced."""
        for index in range(2):
            _store(self.storage, index)

        with patch.object(self.storage, "delete_artifact", side_effect=PermissionError("locked")):
            deleted = self.policy.prune(self.storage.list_records(), 1)

        assert deleted == []
        assert len(self.storage.list_records()) == 2

    def test_sidecar_delete_failure_is_not_fatal(self):
        """Test a failed sidecar deletion is logged and the prune continues."""
        for index in range(3):
            _store(self.storage, index)

        with patch.object(self.storage, "delete_metadata", side_effect=PermissionError("locked")):
            deleted = self.policy.prune(self.storage.list_records(), 1)

        assert sorted(deleted) == ["backup-manual-00", "backup-manual-01"]
        assert sorted(self.storage.find_dangling_metadata()) == ["backup-manual-00", "backup-manual-01"]

    def test_pruned_mirrored_backups_keep_their_sidecar(self):
        """Test a pruned backup with a remote copy stays listed under its own id."""
        replica = InMemoryReplica()
        for index in range(3):
            remote_id = replica.upload(b"data%d" % index, f"backup-manual-{index:02d}.db")
            _store(self.storage, index, remote_id=remote_id)

        self.policy.prune(self.storage.list_records(), 1)

        creator = BackupCreator(engine=None, storage=self.storage, retention=self.policy, remote=replica)
        listed = creator.list_backups()

        assert len(listed) == 3
        local = [record for record in listed if record.is_local]
        assert [record.id for record in local] == ["backup-manual-02"]
        remote_only = sorted(record.id for record in listed if not record.is_local)
        assert remote_only == ["backup-manual-00", "backup-manual-01"]

        demoted = self.storage.load_record("backup-manual-00")
        assert demoted.is_remote
        assert demoted.remote_id == "obj1"
        assert not self.storage.has_artifact(demoted)
        assert self.storage.find_dangling_metadata() == []
