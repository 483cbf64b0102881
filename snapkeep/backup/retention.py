"""Retention policy for local backups."""

import logging
from dataclasses import replace
from typing import List

from snapkeep.utils.errors import StorageError, ValidationError

from .models import BackupRecord
from .storage import BackupStorage

logger = logging.getLogger(__name__)


class RetentionPolicy:
    """Keeps the newest N local backups and deletes the rest from disk.

    Remote copies are never pruned here; a mirrored backup keeps its sidecar
    as a remote-only record.
    """

    def __init__(self, storage: BackupStorage):
        self.storage = storage

    def select_for_pruning(self, all_backups: List[BackupRecord], max_local_count: int) -> List[BackupRecord]:
        local = [record for record in all_backups if record.is_local]
        local.sort(key=lambda r: r.created_at, reverse=True)
        return local[max(max_local_count, 0):]

    def prune(self, all_backups: List[BackupRecord], max_local_count: int) -> List[str]:
        """
        Delete local backups beyond the newest ``max_local_count``.

        Args:
            all_backups: Every known record (remote-only entries are ignored)
            max_local_count: Number of local backups to keep

        Returns:
            List[str]: Ids whose local artifact was deleted
        """
        deleted = []

        for record in self.select_for_pruning(all_backups, max_local_count):
            try:
                self.storage.delete_artifact(record)
            except OSError as e:
                # Keep the sidecar so the artifact is still referenced
                logger.warning(f"Failed to remove old backup {record.id}: {e}")
                continue

            deleted.append(record.id)

            if record.is_remote:
                self._demote_to_remote(record)
                continue

            try:
                self.storage.delete_metadata(record.id)
            except OSError as e:
                logger.warning(f"Removed artifact for {record.id} but its metadata remains: {e}")
                continue

            logger.info(f"Removed old backup: {record.id}")

        return deleted

    def _demote_to_remote(self, record: BackupRecord) -> None:
        # The sidecar keeps the digest that verifies the remote copy on restore
        try:
            self.storage.save_record(replace(record, is_local=False))
        except (StorageError, ValidationError) as e:
            logger.warning(f"Removed local copy of {record.id} but its metadata was not updated: {e.message}")
            return

        logger.info(f"Removed local copy of old backup, remote copy kept: {record.id}")
