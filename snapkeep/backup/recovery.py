"""Staged restore: durable restore requests executed at the next process start.

A restore is never applied while the business layer may hold the live file
open. ``stage_restore`` materializes the backup bytes under
``restore-staging/`` and writes ``restore-command.json``; the host then shuts
down. On the next start ``recover_on_boot`` runs before any connection is
opened, deletes the command, and only then swaps the staged bytes in.
Deleting first means a crash mid-swap can never cause a second attempt.
"""

import json
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from snapkeep.utils.errors import (
    ExpiredOrAbandonedError,
    IntegrityMismatchError,
    LockedResourceError,
    NotAuthenticatedError,
    RestoreError,
    SnapKeepError,
    ValidationError,
    create_error_suggestions,
)
from snapkeep.utils.files import FileManager

from . import events
from .engine import ConnectionLifecycle
from .events import EventBus
from .integrity import IntegrityVerifier
from .models import REMOTE_ID_PREFIX, RestoreCommand, RestoreResult, RestoreSource, RestoreState, utcnow
from .remote import RemoteReplicaAdapter
from .storage import AUX_SUFFIXES, BackupStorage

logger = logging.getLogger(__name__)

COMMAND_FILE = "restore-command.json"
STAGING_DIR = "restore-staging"
STAGED_PAYLOAD = "staged-restore.db"
SAFETY_SUFFIX = ".pre-restore-backup"
TEMP_SUFFIX = ".restore.tmp"


@dataclass
class _ResolvedBackup:
    backup_id: str
    source: RestoreSource
    data: bytes
    checksum: str
    remote_id: Optional[str] = None
    aux: Dict[str, bytes] = field(default_factory=dict)


class RecoveryManager:
    """Coordinates staged restores and their execution on boot."""

    def __init__(
        self,
        files: FileManager,
        storage: BackupStorage,
        database_path: str,
        lifecycle: Optional[ConnectionLifecycle] = None,
        verifier: Optional[IntegrityVerifier] = None,
        remote: Optional[RemoteReplicaAdapter] = None,
        remote_provider: Optional[Callable[[], Optional[RemoteReplicaAdapter]]] = None,
        event_bus: Optional[EventBus] = None,
        shutdown_requester: Optional[Callable[[], None]] = None,
        ttl_hours: float = 24,
        max_attempts: int = 3,
        verify_before_restore: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize recovery manager.

        Args:
            files: File manager scoped to the data directory
            storage: Local backup storage
            database_path: Absolute path of the live database file
            lifecycle: Releases engine handles before the swap
            verifier: Digest implementation
            remote: Remote replica used for remote-sourced restores
            remote_provider: Callable returning the current replica, overrides ``remote``
            event_bus: Receiver of restore events
            shutdown_requester: Asks the host process to exit once a restore is staged
            ttl_hours: Lifetime of a staged restore
            max_attempts: Attempt ceiling for a staged restore
            verify_before_restore: Compare resolved bytes with the recorded digest
            clock: Returns the current aware UTC time
        """
        self.files = files
        self.storage = storage
        self.database_path = os.path.abspath(database_path)
        self.lifecycle = lifecycle
        self.verifier = verifier or IntegrityVerifier()
        self._remote = remote
        self._remote_provider = remote_provider
        self.events = event_bus or EventBus()
        self.shutdown_requester = shutdown_requester
        self.ttl = timedelta(hours=ttl_hours)
        self.max_attempts = max_attempts
        self.verify_before_restore = verify_before_restore
        self.clock = clock

    @property
    def remote(self) -> Optional[RemoteReplicaAdapter]:
        if self._remote_provider is not None:
            return self._remote_provider()
        return self._remote

    @property
    def staged_relpath(self) -> str:
        return os.path.join(STAGING_DIR, STAGED_PAYLOAD)

    @property
    def safety_copy_path(self) -> str:
        return self.database_path + SAFETY_SUFFIX

    def command_exists(self) -> bool:
        return self.files.exists(COMMAND_FILE)

    def staged_payload_exists(self) -> bool:
        return self.files.exists(self.staged_relpath)

    # Staging

    def stage_restore(self, backup_id: str, source: Optional[str] = None) -> RestoreResult:
        """
        Stage a restore to be applied at the next process start.

        Args:
            backup_id: Backup to restore
            source: "local" or "remote"; inferred from the backup when omitted

        Returns:
            RestoreResult: STAGED result; the host is asked to shut down

        Raises:
            IntegrityMismatchError: If the backup bytes do not match the recorded digest
            NotAuthenticatedError: If a remote source is requested without a usable replica
            TransportError: If the download fails
            RestoreError: If the backup cannot be found or staging cannot be written
        """
        started = time.monotonic()
        resolved = self._resolve_backup(backup_id, RestoreSource(source) if source else None)

        if self.verify_before_restore:
            checksum = self.verifier.verify_bytes(resolved.data, resolved.checksum, operation="restore staging")
        else:
            checksum = self.verifier.digest_bytes(resolved.data)

        self._write_staging(resolved)

        command = RestoreCommand.create(
            backup_id=resolved.backup_id,
            source=resolved.source,
            ttl=self.ttl,
            checksum=checksum,
            remote_id=resolved.remote_id,
            aux_files=sorted(resolved.aux),
            now=self.clock(),
        )

        try:
            self.files.atomic_write_text(COMMAND_FILE, json.dumps(command.to_dict(), indent=2))
        except OSError as e:
            self._remove_staging()
            raise RestoreError("Failed to write restore command", details=str(e)) from e

        logger.info(
            f"Restore of {resolved.backup_id} staged from {resolved.source.value} "
            f"({len(resolved.data)} bytes), expires {command.expires_at.isoformat()}"
        )

        self.events.emit(
            events.RESTORE_STAGED,
            backup_id=resolved.backup_id,
            source=resolved.source.value,
            expires_at=command.expires_at.isoformat(),
        )

        self._request_shutdown()

        return RestoreResult(
            success=True,
            state=RestoreState.STAGED,
            backup_id=resolved.backup_id,
            source=resolved.source,
            message="Restore staged; restart the application to apply it",
            duration=time.monotonic() - started,
            requires_restart=True,
        )

    def get_pending_restore(self) -> Optional[RestoreCommand]:
        """Return the pending command without acting on it."""
        if not self.command_exists():
            return None
        try:
            return self._read_command()
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Pending restore command is unreadable: {e}")
            return None

    def cancel_pending_restore(self) -> bool:
        """
        Remove the pending command and any staged payload.

        Returns:
            bool: True if anything was removed

        Raises:
            RestoreError: If a file could not be removed
        """
        removed = False
        try:
            for relpath in [COMMAND_FILE] + self._staged_relpaths():
                if self.files.exists(relpath):
                    self.files.delete(relpath)
                    removed = True
        except OSError as e:
            raise RestoreError("Failed to clean up pending restore", details=str(e)) from e

        if removed:
            logger.info("Pending restore cancelled")
        return removed

    # Execution

    def recover_on_boot(self) -> RestoreResult:
        """
        Apply a staged restore, if one is pending.

        Must run before anything opens the live database. Never raises for
        expected failures; every outcome ends in NONE, COMPLETED, FAILED or
        EXPIRED with the command file gone.

        Returns:
            RestoreResult: Outcome of the recovery check
        """
        started = time.monotonic()

        if not self.command_exists():
            return RestoreResult(success=True, state=RestoreState.NONE, message="No pending restore")

        try:
            command = self._read_command()
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Discarding unreadable restore command: {e}")
            self._discard_pending()
            return self._failed(None, None, f"Restore command was unreadable and has been discarded: {e}", started)

        now = self.clock()
        if command.is_expired(now) or command.attempts >= self.max_attempts:
            reason = "expired" if command.is_expired(now) else f"exceeded {self.max_attempts} attempts"
            error = ExpiredOrAbandonedError(f"Staged restore of {command.backup_id} {reason}; it was not applied")
            logger.warning(error.message)
            self._discard_pending()
            self.events.emit(events.RESTORE_EXPIRED, backup_id=command.backup_id, reason=reason)
            return RestoreResult(
                success=False,
                state=RestoreState.EXPIRED,
                backup_id=command.backup_id,
                source=command.source,
                message="Staged restore abandoned",
                error=error.message,
                duration=time.monotonic() - started,
            )

        try:
            self.files.delete(COMMAND_FILE)
        except OSError as e:
            logger.error(f"Could not delete restore command, restore aborted: {e}")
            return self._failed(
                command.backup_id,
                command.source,
                f"Restore aborted: the restore command could not be removed ({e})",
                started,
            )

        logger.info(f"Executing staged restore of {command.backup_id}")

        if not self.staged_payload_exists():
            return self._failed(command.backup_id, command.source, "Restore failed: staged payload is missing", started)

        return self._execute(
            command.backup_id,
            command.source,
            command.checksum,
            command.aux_files,
            started,
        )

    def restore_now(self, backup_id: str, source: Optional[str] = None) -> RestoreResult:
        """
        Replace the live database in-process.

        Only works when the engine can release every handle; otherwise the
        result recommends the staged path.

        Args:
            backup_id: Backup to restore
            source: "local" or "remote"; inferred when omitted

        Returns:
            RestoreResult: COMPLETED or FAILED
        """
        started = time.monotonic()
        try:
            resolved = self._resolve_backup(backup_id, RestoreSource(source) if source else None)
            if self.verify_before_restore:
                checksum = self.verifier.verify_bytes(resolved.data, resolved.checksum, operation="restore")
            else:
                checksum = self.verifier.digest_bytes(resolved.data)
            self._write_staging(resolved)
        except (SnapKeepError, OSError) as e:
            message = e.message if isinstance(e, SnapKeepError) else str(e)
            return self._failed(backup_id, RestoreSource(source) if source else None, f"Restore failed: {message}", started)

        result = self._execute(resolved.backup_id, resolved.source, checksum, sorted(resolved.aux), started)
        if not result.success:
            self._remove_staging()
        return result

    def _execute(
        self,
        backup_id: str,
        source: RestoreSource,
        checksum: str,
        aux_files: List[str],
        started: float,
    ) -> RestoreResult:
        staged_path = self.files.resolve(self.staged_relpath)
        self.events.emit(
            events.RESTORE_EXECUTING,
            backup_id=backup_id,
            source=source.value if source else None,
            state=RestoreState.EXECUTING.value,
        )

        try:
            self.verifier.verify_file(staged_path, checksum, operation="restore")
        except IntegrityMismatchError as e:
            # The live file has not been touched; keep the payload for diagnosis
            detail = f" ({e.details})" if e.details else ""
            return self._failed(backup_id, source, f"Restore failed: {e.message}{detail}", started)
        except OSError as e:
            return self._failed(backup_id, source, f"Restore failed: staged payload unreadable ({e})", started)

        if self.lifecycle is not None:
            try:
                self.lifecycle.close_all_connections()
            except LockedResourceError as e:
                return self._failed(
                    backup_id,
                    source,
                    f"Restore failed: {e.message}; stage the restore and restart the application instead",
                    started,
                )

        try:
            self._swap_in(staged_path)
        except OSError as e:
            return self._failed(
                backup_id,
                source,
                f"Restore failed while replacing the database, original file left in place: {e}",
                started,
            )

        try:
            self._swap_aux_files(staged_path, aux_files)
        except OSError as e:
            reason = f"database side files could not be replaced ({e})"
            return self._failed(backup_id, source, self._roll_back(reason), started)

        if checksum:
            try:
                self.verifier.verify_file(self.database_path, checksum, operation="post-restore verification")
            except (IntegrityMismatchError, OSError) as e:
                message = e.message if isinstance(e, SnapKeepError) else str(e)
                return self._failed(backup_id, source, self._roll_back(message), started)

        self._remove_staging()

        duration = time.monotonic() - started
        logger.info(f"Restore of {backup_id} completed in {duration:.2f}s")
        self.events.emit(
            events.RESTORE_COMPLETED,
            backup_id=backup_id,
            source=source.value,
            duration=duration,
            success=True,
        )

        return RestoreResult(
            success=True,
            state=RestoreState.COMPLETED,
            backup_id=backup_id,
            source=source,
            message=f"Database restored from {backup_id}",
            duration=duration,
            safety_copy=self.safety_copy_path if os.path.exists(self.safety_copy_path) else None,
        )

    def _swap_in(self, staged_path: str) -> None:
        """Take safety copies, then replace the live file with the staged copy."""
        db = self.database_path
        os.makedirs(os.path.dirname(db), exist_ok=True)

        # Safety copies let a failed swap or verification roll back
        for suffix in ("",) + AUX_SUFFIXES:
            live = db + suffix
            safety = live + SAFETY_SUFFIX
            if os.path.exists(live):
                shutil.copy2(live, safety)
            elif suffix and os.path.exists(safety):
                os.remove(safety)

        _replace_file(staged_path, db)

    def _swap_aux_files(self, staged_path: str, aux_files: List[str]) -> None:
        db = self.database_path
        for suffix in AUX_SUFFIXES:
            staged_aux = staged_path + suffix
            if suffix in aux_files and os.path.exists(staged_aux):
                _replace_file(staged_aux, db + suffix)
            elif os.path.exists(db + suffix):
                # A foreign WAL would be replayed over the restored file
                os.remove(db + suffix)

    def _roll_back(self, reason: str) -> str:
        db = self.database_path
        try:
            _replace_file(self.safety_copy_path, db)
            for suffix in AUX_SUFFIXES:
                safety = db + suffix + SAFETY_SUFFIX
                if os.path.exists(safety):
                    _replace_file(safety, db + suffix)
                elif os.path.exists(db + suffix):
                    os.remove(db + suffix)
        except OSError as e:
            logger.critical(f"Rollback failed, safety copy kept at {self.safety_copy_path}: {e}")
            return f"Restore failed: {reason}; rollback also failed, safety copy is at {self.safety_copy_path}"

        logger.error(f"Restore rolled back: {reason}")
        return f"Restore failed: {reason}; the original database was put back"

    # Helpers

    def _resolve_backup(self, backup_id: str, source: Optional[RestoreSource]) -> _ResolvedBackup:
        if backup_id.startswith(REMOTE_ID_PREFIX):
            # A pruned mirror keeps its sidecar, and with it the recorded digest
            record = self.storage.find_by_remote_id(backup_id[len(REMOTE_ID_PREFIX) :])
        else:
            record = self.storage.load_record(backup_id)

        if source is None:
            if backup_id.startswith(REMOTE_ID_PREFIX):
                source = RestoreSource.REMOTE
            elif record is not None and record.is_local and self.storage.has_artifact(record):
                source = RestoreSource.LOCAL
            elif record is not None and record.remote_id:
                source = RestoreSource.REMOTE
            else:
                source = RestoreSource.LOCAL

        if source == RestoreSource.LOCAL:
            if record is None or not self.storage.has_artifact(record):
                raise RestoreError(
                    f"Backup not found locally: {backup_id}",
                    suggestions=create_error_suggestions("backup_not_found", backup_id=backup_id),
                )
            return _ResolvedBackup(
                backup_id=backup_id,
                source=source,
                data=self.storage.read_artifact(record),
                checksum=record.checksum,
                remote_id=record.remote_id,
                aux=self.storage.read_aux_files(record),
            )

        if backup_id.startswith(REMOTE_ID_PREFIX):
            remote_id = backup_id[len(REMOTE_ID_PREFIX) :]
        else:
            remote_id = record.remote_id if record is not None else None
        if not remote_id:
            raise RestoreError(
                f"Backup has no remote copy: {backup_id}",
                suggestions=create_error_suggestions("backup_not_found", backup_id=backup_id),
            )

        remote = self.remote
        if remote is None:
            raise NotAuthenticatedError(
                "Remote storage is not configured",
                suggestions=create_error_suggestions("not_authenticated"),
            )

        logger.info(f"Downloading {backup_id} from remote storage")
        data = remote.download(
            remote_id,
            on_progress=lambda percent: logger.debug(f"Download progress for {backup_id}: {percent}%"),
        )
        return _ResolvedBackup(
            backup_id=backup_id,
            source=source,
            data=data,
            checksum=record.checksum if record is not None else "",
            remote_id=remote_id,
        )

    def _write_staging(self, resolved: _ResolvedBackup) -> None:
        try:
            self.files.ensure_directory(STAGING_DIR)
            self.files.atomic_write(self.staged_relpath, resolved.data)
            for suffix in AUX_SUFFIXES:
                relpath = self.staged_relpath + suffix
                if suffix in resolved.aux:
                    self.files.atomic_write(relpath, resolved.aux[suffix])
                else:
                    self.files.delete(relpath)
        except OSError as e:
            raise RestoreError("Failed to write staged restore payload", details=str(e)) from e

    def _read_command(self) -> RestoreCommand:
        return RestoreCommand.from_dict(json.loads(self.files.read_text(COMMAND_FILE)))

    def _staged_relpaths(self) -> List[str]:
        return [self.staged_relpath] + [self.staged_relpath + suffix for suffix in AUX_SUFFIXES]

    def _remove_staging(self) -> None:
        for relpath in self._staged_relpaths():
            self.files.safe_delete(relpath)

    def _discard_pending(self) -> None:
        self.files.safe_delete(COMMAND_FILE)
        self._remove_staging()

    def _request_shutdown(self) -> None:
        if self.shutdown_requester is None:
            logger.info("No shutdown hook configured; restart the application to apply the restore")
            return
        try:
            self.shutdown_requester()
        except Exception as e:
            logger.warning(f"Shutdown request failed, restart manually: {e}")

    def _failed(
        self,
        backup_id: Optional[str],
        source: Optional[RestoreSource],
        error: str,
        started: float,
    ) -> RestoreResult:
        logger.error(error)
        self.events.emit(events.RESTORE_FAILED, backup_id=backup_id, error=error, success=False)
        return RestoreResult(
            success=False,
            state=RestoreState.FAILED,
            backup_id=backup_id,
            source=source,
            message="Restore failed",
            error=error,
            duration=time.monotonic() - started,
        )


def _replace_file(source: str, target: str) -> None:
    """Copy ``source`` next to ``target`` and rename it into place."""
    tmp = target + TEMP_SUFFIX
    try:
        shutil.copyfile(source, tmp)
        with open(tmp, "rb+") as f:
            os.fsync(f.fileno())
        os.replace(tmp, target)
    except OSError:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
