"""Read-only health checks for the backup subsystem."""

import logging
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from snapkeep.utils.errors import NotAuthenticatedError, TransportError

from .models import HealthReport, parse_timestamp, utcnow
from .recovery import RecoveryManager
from .remote import RemoteReplicaAdapter
from .storage import BackupStorage

logger = logging.getLogger(__name__)


class BackupHealthMonitor:
    """Reports problems with backups and pending restores without fixing them."""

    def __init__(
        self,
        storage: BackupStorage,
        recovery: RecoveryManager,
        database_path: str,
        scheduler: Any = None,
        remote_config: Optional[Dict[str, Any]] = None,
        remote_provider: Optional[Callable[[], Optional[RemoteReplicaAdapter]]] = None,
        stale_after_days: int = 7,
        min_backup_count: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize health monitor.

        Args:
            storage: Local backup storage
            recovery: Staged restore coordinator, used to inspect pending restores
            database_path: Absolute path of the live database
            scheduler: Provides ``get_schedule_info()``
            remote_config: The ``remote`` configuration section
            remote_provider: Returns the replica, used when ``check(probe_remote=True)``
            stale_after_days: Newest backup older than this is reported
            min_backup_count: Fewer backups than this is reported
            clock: Returns the current aware UTC time
        """
        self.storage = storage
        self.recovery = recovery
        self.database_path = database_path
        self.scheduler = scheduler
        self.remote_config = remote_config or {}
        self.remote_provider = remote_provider
        self.stale_after_days = stale_after_days
        self.min_backup_count = min_backup_count
        self.clock = clock

    def check(self, probe_remote: bool = False) -> HealthReport:
        """
        Run every check.

        Args:
            probe_remote: Make a quota request to confirm the remote credential

        Returns:
            HealthReport: Issues and recommendations; nothing is modified
        """
        report = HealthReport(healthy=True, status="healthy")
        errors = False
        now = self.clock()

        # Pending restore
        if self.recovery.command_exists():
            command = self.recovery.get_pending_restore()
            errors = True
            if command is None:
                report.issues.append("An unreadable restore command is present")
            else:
                report.pending_restore = command.to_dict()
                state = "expired" if command.is_expired(now) else "not applied"
                report.issues.append(f"A staged restore of {command.backup_id} is {state}")
            report.recommendations.append(
                "Restart the application to apply the restore, or run 'snapkeep health --cleanup' to discard it"
            )
        elif self.recovery.staged_payload_exists():
            report.issues.append("A staged restore payload exists without a restore command")
            report.recommendations.append("Run 'snapkeep health --cleanup' to remove the leftover payload")

        # Storage
        if not self.storage.directory_exists():
            errors = True
            report.issues.append(f"Backup directory does not exist: {self.storage.backup_path}")
            report.recommendations.append("Create a backup to initialize the backup directory")

        if not os.path.exists(self.database_path):
            report.issues.append(f"Database file not found: {self.database_path}")

        records = [record for record in self.storage.list_records() if record.is_local]
        report.total_backups = len(records)
        report.total_size = sum(record.size for record in records)

        if not records:
            errors = True
            report.issues.append("No backups found")
            report.recommendations.append("Run 'snapkeep backup create' to create the first backup")
        else:
            report.last_backup = records[0].created_at
            age = now - records[0].created_at
            if age > timedelta(days=self.stale_after_days):
                errors = True
                report.issues.append(f"Last backup is {age.days} days old")
                report.recommendations.append("Create a new backup and check that automatic backups run")

            if len(records) < self.min_backup_count:
                report.issues.append(f"Only {len(records)} backup(s) available, fewer than {self.min_backup_count}")
                report.recommendations.append("Keep several backups so an older one is available if the latest is bad")

        dangling = self.storage.find_dangling_metadata()
        if dangling:
            report.issues.append(f"{len(dangling)} backup record(s) point at missing files: {', '.join(dangling)}")
            report.recommendations.append("Delete the affected backups with 'snapkeep backup delete'")

        orphans = self.storage.find_orphaned_artifacts()
        if orphans:
            report.issues.append(f"{len(orphans)} backup file(s) have no metadata: {', '.join(orphans)}")
            report.recommendations.append(f"Remove the orphaned files from {self.storage.backup_path}")

        # Schedule
        if self.scheduler is not None:
            info = self.scheduler.get_schedule_info()
            if not info.get("enabled"):
                report.issues.append("Automatic backups are disabled")
                report.recommendations.append("Enable them with 'snapkeep schedule set --frequency daily --time 02:00'")
            elif info.get("next_run"):
                report.next_scheduled = parse_timestamp(info["next_run"])

        # Remote
        if self.remote_config.get("enabled"):
            remote_issue = self._check_remote(probe_remote)
            if remote_issue:
                report.issues.append(remote_issue)
                report.recommendations.append("Run 'snapkeep remote configure' to reconnect remote storage")

        if report.issues:
            report.healthy = False
            report.status = "error" if errors else "warning"

        logger.debug(f"Health check finished: {report.status} ({len(report.issues)} issue(s))")
        return report

    def cleanup_stale_restore(self) -> bool:
        """Explicitly discard a pending restore and its payload."""
        removed = self.recovery.cancel_pending_restore()
        if removed:
            logger.info("Stale restore state cleaned up")
        return removed

    def _check_remote(self, probe: bool) -> Optional[str]:
        if not self.remote_config.get("access_token") and not self.remote_config.get("refresh_token"):
            return "Remote storage is enabled but not authenticated"

        if not probe or self.remote_provider is None:
            return None

        remote = self.remote_provider()
        if remote is None:
            return "Remote storage is enabled but could not be initialized"

        try:
            remote.quota()
        except NotAuthenticatedError as e:
            return f"Remote storage rejected the credential: {e.message}"
        except TransportError as e:
            return f"Remote storage is unreachable: {e.message}"

        return None
