"""Tests for the backup data model."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_record
from snapkeep.backup.models import (
    BackupOrigin,
    BackupRecord,
    RemoteArtifact,
    RestoreCommand,
    RestoreResult,
    RestoreSource,
    RestoreState,
    generate_backup_id,
    parse_timestamp,
)
from snapkeep.utils.errors import ValidationError


class TestBackupRecord:
    """Test backup record validation and serialization."""

    def test_generate_backup_id_is_tagged_and_time_derived(self):
        """Test backup ids carry origin and timestamp."""
        now = datetime(2024, 3, 5, 14, 30, 15, 123456, tzinfo=timezone.utc)

        backup_id = generate_backup_id(BackupOrigin.AUTOMATIC, now)

        assert backup_id == "backup-automatic-20240305T143015123456Z"

    def test_record_without_location_is_invalid(self):
        """Test a record that is neither local nor remote is invalid."""
        record = make_record(is_local=False, is_remote=False)

        assert not record.is_valid()

    def test_remote_record_requires_remote_id(self):
        """Test a remote record must carry its object id."""
        record = make_record(is_remote=True, remote_id=None)

        assert not record.is_valid()

    def test_mark_remote(self):
        """Test marking a record as mirrored."""
        record = make_record()

        record.mark_remote("drive-123")

        assert record.is_remote
        assert record.remote_id == "drive-123"
        assert record.is_valid()

    def test_mark_remote_rejects_empty_id(self):
        """Test an empty remote id is rejected."""
        with pytest.raises(ValidationError):
            make_record().mark_remote("")

    def test_dict_round_trip(self):
        """Test serialization preserves every field."""
        record = make_record(checksum="ab" * 32, size=1234, is_remote=True, remote_id="x1")

        restored = BackupRecord.from_dict(record.to_dict())

        assert restored == record

    def test_from_dict_reads_v1_metadata(self):
        """Test sidecars written with the 1.0 camelCase schema."""
        data = {
            "version": "1.0",
            "id": "backup-manual-1",
            "filename": "backup-manual-1.db",
            "originalFilename": "store.db",
            "size": 2048,
            "checksum": "cafe",
            "createdAt": "2023-06-01T10:00:00.000Z",
            "type": "automatic",
            "isLocal": True,
            "isGoogleDrive": True,
            "googleDriveFileId": "g-1",
        }

        record = BackupRecord.from_dict(data)

        assert record.original_filename == "store.db"
        assert record.origin == BackupOrigin.AUTOMATIC
        assert record.is_remote
        assert record.remote_id == "g-1"
        assert record.created_at == datetime(2023, 6, 1, 10, 0, tzinfo=timezone.utc)
        assert record.version == "1.0"

    def test_from_dict_unknown_version(self):
        """Test that unknown schema versions are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            BackupRecord.from_dict({"version": "99", "id": "x"})

        assert "99" in exc_info.value.message

    def test_from_dict_malformed(self):
        """Test that missing fields raise a validation error."""
        with pytest.raises(ValidationError):
            BackupRecord.from_dict({"version": "2", "filename": "x.db"})

    def test_from_remote(self):
        """Test remote-only entries get a prefixed id."""
        artifact = RemoteArtifact(
            id="abc",
            name="backup-manual-20240101T000000000000Z.db",
            size=10,
            created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        record = BackupRecord.from_remote(artifact, "store.db")

        assert record.id == "remote-abc"
        assert record.origin == BackupOrigin.MANUAL
        assert not record.is_local
        assert record.is_remote
        assert record.is_valid()


class TestRestoreCommand:
    """Test restore command lifecycle fields."""

    def test_create_sets_expiry(self):
        """Test expiry is creation time plus the TTL."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)

        command = RestoreCommand.create("b1", RestoreSource.LOCAL, timedelta(hours=24), now=now)

        assert command.attempts == 0
        assert command.expires_at == now + timedelta(hours=24)
        assert not command.is_expired(now + timedelta(hours=23))
        assert command.is_expired(now + timedelta(hours=24, seconds=1))

    def test_dict_round_trip(self):
        """Test serialization of a command."""
        command = RestoreCommand.create(
            "b1",
            RestoreSource.REMOTE,
            timedelta(hours=1),
            checksum="ff",
            remote_id="r1",
            aux_files=["-wal"],
        )

        assert RestoreCommand.from_dict(command.to_dict()) == command

    def test_from_dict_rejects_unknown_action(self):
        """Test only restore actions are accepted."""
        data = RestoreCommand.create("b1", RestoreSource.LOCAL, timedelta(hours=1)).to_dict()
        data["action"] = "drop"

        with pytest.raises(ValidationError):
            RestoreCommand.from_dict(data)

    def test_from_dict_rejects_non_object(self):
        """Test the command document must be a JSON object."""
        with pytest.raises(ValidationError):
            RestoreCommand.from_dict(["restore"])


class TestResults:
    """Test result serialization."""

    def test_restore_result_to_dict(self):
        """Test enums are serialized by value."""
        result = RestoreResult(success=True, state=RestoreState.STAGED, source=RestoreSource.LOCAL)

        data = result.to_dict()

        assert data["state"] == "staged"
        assert data["source"] == "local"

    def test_parse_timestamp_naive_is_utc(self):
        """Test naive timestamps are read as UTC."""
        parsed = parse_timestamp("2024-01-01T12:00:00")

        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)
