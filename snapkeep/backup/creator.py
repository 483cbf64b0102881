"""Creation of crash-consistent database snapshots."""

import logging
import os
import threading
import time
from typing import Callable, List, Optional

from snapkeep.utils.errors import BackupError, RemoteError, SnapKeepError, StorageError

from . import events
from .engine import HotBackup
from .events import EventBus
from .integrity import IntegrityVerifier
from .models import REMOTE_ID_PREFIX, BackupOrigin, BackupRecord, BackupResult, generate_backup_id, utcnow
from .remote import RemoteReplicaAdapter
from .retention import RetentionPolicy
from .storage import BackupStorage

logger = logging.getLogger(__name__)


class BackupCreator:
    """Produces a snapshot, records it, mirrors it and applies retention."""

    def __init__(
        self,
        engine: HotBackup,
        storage: BackupStorage,
        retention: RetentionPolicy,
        verifier: Optional[IntegrityVerifier] = None,
        remote: Optional[RemoteReplicaAdapter] = None,
        event_bus: Optional[EventBus] = None,
        original_filename: str = "store.db",
        max_local_backups: int = 30,
        max_backup_size_mb: Optional[int] = None,
        verify_after_backup: bool = True,
        remote_provider: Optional[Callable[[], Optional[RemoteReplicaAdapter]]] = None,
    ):
        """
        Initialize backup creator.

        Args:
            engine: Hot backup primitive of the relational engine
            storage: Local backup storage
            retention: Retention policy applied after each backup
            verifier: Digest implementation
            remote: Remote replica, None when replication is disabled
            event_bus: Receiver of backup events
            original_filename: Name of the live database file, recorded in metadata
            max_local_backups: Local backups kept by retention
            max_backup_size_mb: Reject artifacts larger than this
            verify_after_backup: Re-digest the artifact and compare with the engine's digest
            remote_provider: Callable returning the current replica, overrides ``remote``
        """
        self.engine = engine
        self.storage = storage
        self.retention = retention
        self.verifier = verifier or IntegrityVerifier()
        self._remote = remote
        self._remote_provider = remote_provider
        self.events = event_bus or EventBus()
        self.original_filename = original_filename
        self.max_local_backups = max_local_backups
        self.max_backup_size_mb = max_backup_size_mb
        self.verify_after_backup = verify_after_backup
        self._lock = threading.Lock()

    @property
    def remote(self) -> Optional[RemoteReplicaAdapter]:
        if self._remote_provider is not None:
            return self._remote_provider()
        return self._remote

    def create_backup(self, origin: str = "manual") -> BackupResult:
        """
        Create a new backup.

        Args:
            origin: "manual" or "automatic"

        Returns:
            BackupResult: Outcome; remote failures only add warnings
        """
        with self._lock:
            return self._create_backup(BackupOrigin(origin))

    def _create_backup(self, origin: BackupOrigin) -> BackupResult:
        started = time.monotonic()
        backup_id = generate_backup_id(origin)
        filename = f"{backup_id}.db"
        artifact_path = self.storage.artifact_path(filename)
        result = BackupResult(success=False, backup_id=backup_id)

        logger.info(f"Starting {origin.value} backup: {backup_id}")

        try:
            self.storage.files.ensure_directory(self.storage.backup_dir)

            engine_result = self.engine.hot_backup(artifact_path)
            if not engine_result.get("success"):
                raise BackupError(f"Hot backup failed: {engine_result.get('error') or 'unknown error'}")

            size = os.path.getsize(artifact_path)
            self._check_size(size, artifact_path)

            checksum = self.verifier.digest_file(artifact_path)
            engine_checksum = engine_result.get("checksum")
            if self.verify_after_backup and engine_checksum and not self.verifier.matches(engine_checksum, checksum):
                self._discard(artifact_path)
                raise BackupError("Backup verification failed: artifact changed after the engine wrote it")

            record = BackupRecord(
                id=backup_id,
                filename=filename,
                original_filename=self.original_filename,
                size=size,
                checksum=checksum,
                created_at=utcnow(),
                origin=origin,
            )

            try:
                self.storage.save_record(record)
            except StorageError:
                # Without metadata the artifact would be an orphan
                self._discard(artifact_path)
                raise

            result.size = size
            result.checksum = checksum
            result.local_path = artifact_path

            result.warnings.extend(self._replicate(record, artifact_path))
            result.remote_id = record.remote_id

            self._apply_retention()

            result.success = True
        except (SnapKeepError, OSError) as e:
            message = e.message if isinstance(e, SnapKeepError) else str(e)
            result.error = f"Backup {backup_id} failed: {message}"
            logger.error(result.error)

        result.duration = time.monotonic() - started

        if result.success:
            logger.info(f"Backup completed: {backup_id} ({result.size} bytes, {result.duration:.2f}s)")

        self.events.emit(
            events.BACKUP_COMPLETED if result.success else events.BACKUP_FAILED,
            backup_id=backup_id,
            duration=result.duration,
            success=result.success,
            error=result.error,
        )
        return result

    def list_backups(self, include_remote: bool = True) -> List[BackupRecord]:
        """
        List local backups merged with remote-only entries, newest first.

        Args:
            include_remote: Also list objects in the remote replica

        Returns:
            List[BackupRecord]: Known backups
        """
        records = self.storage.list_records()

        remote = self.remote if include_remote else None
        if remote is not None:
            referenced = {record.remote_id for record in records if record.remote_id}
            try:
                artifacts = remote.list()
            except RemoteError as e:
                logger.warning(f"Could not list remote backups: {e.message}")
                artifacts = []

            for artifact in artifacts:
                if artifact.id not in referenced:
                    records.append(BackupRecord.from_remote(artifact, self.original_filename))

        records.sort(key=lambda r: r.created_at, reverse=True)
        return records

    def delete_backup(self, backup_id: str, delete_remote: bool = False) -> bool:
        """
        Delete a backup's local artifact and its metadata sidecar.

        Args:
            backup_id: Backup to delete
            delete_remote: Also delete the remote copy

        Returns:
            bool: True if anything was deleted

        Raises:
            StorageError: If the local artifact could not be removed
        """
        if backup_id.startswith(REMOTE_ID_PREFIX):
            remote = self.remote
            if not delete_remote or remote is None:
                return False
            remote.delete(backup_id[len(REMOTE_ID_PREFIX) :])
            logger.info(f"Deleted remote backup: {backup_id}")
            return True

        record = self.storage.load_record(backup_id)
        if record is None:
            return False

        try:
            self.storage.delete_artifact(record)
        except OSError as e:
            raise StorageError(f"Failed to delete backup {backup_id}", details=str(e)) from e

        remote = self.remote
        if delete_remote and record.remote_id and remote is not None:
            try:
                remote.delete(record.remote_id)
            except RemoteError as e:
                logger.warning(f"Remote copy of {backup_id} was not deleted: {e.message}")

        try:
            self.storage.delete_metadata(backup_id)
        except OSError as e:
            logger.warning(f"Deleted artifact for {backup_id} but its metadata remains: {e}")

        logger.info(f"Deleted backup: {backup_id}")
        return True

    def _check_size(self, size: int, artifact_path: str) -> None:
        if not self.max_backup_size_mb:
            return
        limit = self.max_backup_size_mb * 1024 * 1024
        if size > limit:
            self._discard(artifact_path)
            raise BackupError(
                f"Backup is {size / 1024 / 1024:.1f} MB, above the {self.max_backup_size_mb} MB limit"
            )

    def _replicate(self, record: BackupRecord, artifact_path: str) -> List[str]:
        remote = self.remote
        if remote is None:
            return []

        try:
            with open(artifact_path, "rb") as f:
                data = f.read()
            remote_id = remote.upload(
                data,
                record.filename,
                on_progress=lambda percent: logger.debug(f"Upload progress for {record.id}: {percent}%"),
            )
            record.mark_remote(remote_id)
            self.storage.save_record(record)
        except (RemoteError, StorageError, OSError) as e:
            message = e.message if isinstance(e, SnapKeepError) else str(e)
            warning = f"Remote upload failed, local backup kept: {message}"
            logger.warning(warning)
            return [warning]

        return []

    def _apply_retention(self) -> None:
        try:
            deleted = self.retention.prune(self.storage.list_records(), self.max_local_backups)
        except OSError as e:
            logger.warning(f"Retention pass failed: {e}")
            return
        if deleted:
            logger.info(f"Retention removed {len(deleted)} old backup(s)")

    def _discard(self, artifact_path: str) -> None:
        try:
            if os.path.exists(artifact_path):
                os.remove(artifact_path)
        except OSError as e:
            logger.warning(f"Could not remove artifact {artifact_path}: {e}")

