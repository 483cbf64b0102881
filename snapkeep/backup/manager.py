"""Backup management facade wiring the subsystem together from configuration."""

import logging
import os
from typing import Any, Callable, Dict, List, Optional

from snapkeep.config import BackupConfigManager, ConfigValidationError
from snapkeep.utils.files import FileManager

from .creator import BackupCreator
from .engine import SQLiteEngine
from .events import EventBus
from .health import BackupHealthMonitor
from .integrity import IntegrityVerifier
from .models import BackupRecord, BackupResult, HealthReport, RestoreCommand, RestoreResult
from .recovery import RecoveryManager
from .remote import RemoteReplicaAdapter, create_remote_adapter
from .retention import RetentionPolicy
from .scheduler import BackupScheduler
from .storage import BackupStorage

logger = logging.getLogger(__name__)


class BackupManager:
    """Manages backup and restore operations for one data directory."""

    def __init__(
        self,
        config_manager: Optional[BackupConfigManager] = None,
        data_dir: Optional[str] = None,
        engine: Any = None,
        remote: Optional[RemoteReplicaAdapter] = None,
        shutdown_requester: Optional[Callable[[], None]] = None,
        event_bus: Optional[EventBus] = None,
        verbose: bool = False,
    ):
        """
        Initialize backup manager.

        Args:
            config_manager: Configuration source, created for ``data_dir`` when omitted
            data_dir: Application data directory
            engine: Engine adapter providing ``hot_backup`` and ``close_all_connections``
            remote: Remote replica, built from configuration when omitted
            shutdown_requester: Asks the host process to exit after a restore is staged
            event_bus: Receiver of backup and restore events
            verbose: Enable verbose output
        """
        self.config_manager = config_manager or BackupConfigManager(data_dir)
        self.verbose = verbose

        config = self.config_manager.config
        backup_config = config["backup"]
        restore_config = config.get("restore", {})
        health_config = config.get("health", {})

        self.files = FileManager(self.config_manager.data_dir, verbose=verbose)
        self.events = event_bus or EventBus()
        self.verifier = IntegrityVerifier()
        self.engine = engine or SQLiteEngine(self.config_manager.database_path, verifier=self.verifier)

        self._remote = remote
        self._remote_built = remote is not None

        # Initialize components
        self.storage = BackupStorage(self.files, backup_config["directory"], verbose=verbose)
        self.retention = RetentionPolicy(self.storage)
        self.creator = BackupCreator(
            engine=self.engine,
            storage=self.storage,
            retention=self.retention,
            verifier=self.verifier,
            event_bus=self.events,
            original_filename=os.path.basename(self.config_manager.database_path),
            max_local_backups=backup_config["max_local_backups"],
            max_backup_size_mb=backup_config.get("max_backup_size_mb"),
            verify_after_backup=backup_config.get("verify_after_backup", True),
            remote_provider=self.get_remote,
        )
        self.recovery = RecoveryManager(
            files=self.files,
            storage=self.storage,
            database_path=self.config_manager.database_path,
            lifecycle=self.engine if hasattr(self.engine, "close_all_connections") else None,
            verifier=self.verifier,
            remote_provider=self.get_remote,
            event_bus=self.events,
            shutdown_requester=shutdown_requester,
            ttl_hours=restore_config.get("ttl_hours", 24),
            max_attempts=restore_config.get("max_attempts", 3),
            verify_before_restore=backup_config.get("verify_before_restore", True),
        )
        self.scheduler = BackupScheduler(self.creator, self.config_manager)
        self.health = BackupHealthMonitor(
            storage=self.storage,
            recovery=self.recovery,
            database_path=self.config_manager.database_path,
            scheduler=self.scheduler,
            remote_config=config["remote"],
            remote_provider=self.get_remote,
            stale_after_days=health_config.get("stale_after_days", 7),
            min_backup_count=health_config.get("min_backup_count", 3),
        )

    def bootstrap(self, start_scheduler: bool = False) -> RestoreResult:
        """
        Boot hook: apply any staged restore before the database is opened.

        Args:
            start_scheduler: Arm automatic backups afterwards

        Returns:
            RestoreResult: Outcome of the recovery check
        """
        result = self.recovery.recover_on_boot()
        if result.error:
            logger.error(f"Boot recovery: {result.error}")
        elif result.backup_id:
            logger.info(f"Boot recovery: {result.message}")

        setup = self.storage.setup_backup_storage()
        for error in setup["errors"]:
            logger.warning(error)

        if start_scheduler:
            self.scheduler.start()

        return result

    def shutdown(self) -> None:
        if self.scheduler.is_running:
            self.scheduler.stop()

    # Remote replica

    def get_remote(self) -> Optional[RemoteReplicaAdapter]:
        """Return the configured replica, building it on first use."""
        if not self._remote_built:
            self._remote = create_remote_adapter(
                self.config_manager.get_section("remote"),
                on_token_refresh=self._persist_token,
            )
            self._remote_built = True
        return self._remote

    def configure_remote(self, **settings: Any) -> Dict[str, Any]:
        """Update remote settings and rebuild the replica on next use."""
        stored = self.config_manager.configure_remote(**settings)
        self.health.remote_config = stored
        self._remote = None
        self._remote_built = False
        return stored

    def _persist_token(self, access_token: str, token_expires_at: Optional[float]) -> None:
        try:
            self.config_manager.update_remote_tokens(access_token, token_expires_at)
        except (ConfigValidationError, OSError) as e:
            logger.warning(f"Refreshed remote token could not be saved: {e}")

    # Backups

    def create_backup(self, origin: str = "manual") -> BackupResult:
        return self.creator.create_backup(origin)

    def list_backups(self, include_remote: bool = True) -> List[BackupRecord]:
        return self.creator.list_backups(include_remote=include_remote)

    def delete_backup(self, backup_id: str, delete_remote: bool = False) -> bool:
        return self.creator.delete_backup(backup_id, delete_remote=delete_remote)

    def set_retention(self, max_local_backups: int) -> None:
        self.config_manager.set_retention(max_local_backups)
        self.creator.max_local_backups = max_local_backups

    # Restores

    def stage_restore(self, backup_id: str, source: Optional[str] = None) -> RestoreResult:
        return self.recovery.stage_restore(backup_id, source)

    def restore_now(self, backup_id: str, source: Optional[str] = None) -> RestoreResult:
        return self.recovery.restore_now(backup_id, source)

    def get_pending_restore(self) -> Optional[RestoreCommand]:
        return self.recovery.get_pending_restore()

    def cancel_pending_restore(self) -> bool:
        return self.recovery.cancel_pending_restore()

    # Schedule and health

    def update_schedule(self, schedule: Dict[str, Any]) -> Dict[str, Any]:
        return self.scheduler.update_schedule(schedule)

    def get_schedule_info(self) -> Dict[str, Any]:
        return self.scheduler.get_schedule_info()

    def check_health(self, probe_remote: bool = False) -> HealthReport:
        return self.health.check(probe_remote=probe_remote)
