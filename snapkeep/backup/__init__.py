"""Backup and staged-restore system for SnapKeep."""

from .creator import BackupCreator
from .engine import ConnectionLifecycle, HotBackup, SQLiteEngine
from .health import BackupHealthMonitor
from .integrity import IntegrityVerifier
from .manager import BackupManager
from .models import BackupRecord, BackupResult, HealthReport, RestoreCommand, RestoreResult, RestoreState
from .recovery import RecoveryManager
from .remote import GoogleDriveReplica, RemoteReplicaAdapter
from .retention import RetentionPolicy
from .scheduler import BackupScheduler, next_fire_time
from .storage import BackupStorage

__all__ = [
    "BackupCreator",
    "BackupHealthMonitor",
    "BackupManager",
    "BackupRecord",
    "BackupResult",
    "BackupScheduler",
    "BackupStorage",
    "ConnectionLifecycle",
    "GoogleDriveReplica",
    "HealthReport",
    "HotBackup",
    "IntegrityVerifier",
    "RecoveryManager",
    "RemoteReplicaAdapter",
    "RestoreCommand",
    "RestoreResult",
    "RestoreState",
    "RetentionPolicy",
    "SQLiteEngine",
    "next_fire_time",
]
