"""Narrow seams onto the relational engine.

Backup and restore code depends on these protocols through injection; the
business layer hands its connections to :class:`SQLiteEngine` so they can be
closed before the live file is replaced.
"""

import logging
import os
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional, Protocol

from snapkeep.utils.errors import LockedResourceError

from .integrity import IntegrityVerifier

logger = logging.getLogger(__name__)


class HotBackup(Protocol):
    """Consistency-preserving online snapshot."""

    def hot_backup(self, destination: str) -> Dict[str, Any]:
        """Return ``{success, size, checksum, error}``."""
        ...


class ConnectionLifecycle(Protocol):
    """Release every handle the engine holds on the live file."""

    def close_all_connections(self) -> None: ...


class SQLiteEngine:
    """SQLite implementation of :class:`HotBackup` and :class:`ConnectionLifecycle`."""

    def __init__(
        self,
        database_path: str,
        busy_timeout: float = 10.0,
        pages_per_step: int = 100,
        verifier: Optional[IntegrityVerifier] = None,
    ):
        """
        Initialize engine adapter.

        Args:
            database_path: Path to the live database file
            busy_timeout: Seconds to wait on a locked database
            pages_per_step: Pages copied per backup step
            verifier: Digest implementation
        """
        self.database_path = database_path
        self.busy_timeout = busy_timeout
        self.pages_per_step = pages_per_step
        self.verifier = verifier or IntegrityVerifier()
        self._connections: List[sqlite3.Connection] = []
        self._lock = threading.Lock()

    def connect(self, **kwargs: Any) -> sqlite3.Connection:
        """Open a business connection that will be closed before a restore."""
        kwargs.setdefault("timeout", self.busy_timeout)
        conn = sqlite3.connect(self.database_path, **kwargs)
        self.register(conn)
        return conn

    def register(self, conn: sqlite3.Connection) -> None:
        with self._lock:
            self._connections.append(conn)

    @property
    def open_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    def close_all_connections(self) -> None:
        """
        Checkpoint the WAL and close every registered connection.

        Raises:
            LockedResourceError: If a connection could not be released
        """
        with self._lock:
            connections = list(self._connections)
            self._connections.clear()

        failures = []
        for conn in connections:
            try:
                try:
                    conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
                except sqlite3.Error as e:
                    logger.debug(f"WAL checkpoint before close failed: {e}")
                conn.close()
            except sqlite3.Error as e:
                failures.append(str(e))

        if failures:
            raise LockedResourceError(
                "Database connections could not be released",
                details="; ".join(failures),
                suggestions=[
                    "Use 'snapkeep restore stage' and restart the application",
                    "Close other programs that may hold the database open",
                ],
            )

        logger.info(f"Closed {len(connections)} database connection(s)")

    def hot_backup(self, destination: str) -> Dict[str, Any]:
        """
        Snapshot the live database with SQLite's online backup API.

        Args:
            destination: Path of the artifact to create

        Returns:
            Dict[str, Any]: ``{success, size, checksum, error}``
        """
        started = time.monotonic()

        if not os.path.exists(self.database_path):
            return {"success": False, "size": 0, "checksum": "", "error": "Database file not found"}

        os.makedirs(os.path.dirname(os.path.abspath(destination)), exist_ok=True)

        try:
            source = sqlite3.connect(self.database_path, timeout=self.busy_timeout)
            try:
                try:
                    source.execute("PRAGMA wal_checkpoint(RESTART);")
                except sqlite3.Error as e:
                    logger.warning(f"WAL checkpoint failed, continuing anyway: {e}")

                target = sqlite3.connect(destination)
                try:
                    source.backup(target, pages=self.pages_per_step, sleep=0.01)
                finally:
                    target.close()
            finally:
                source.close()
        except sqlite3.Error as e:
            if os.path.exists(destination):
                os.remove(destination)
            return {"success": False, "size": 0, "checksum": "", "error": f"SQLite backup failed: {e}"}

        size = os.path.getsize(destination)
        checksum = self.verifier.digest_file(destination)

        logger.debug(f"Hot backup written to {destination} ({size} bytes) in {time.monotonic() - started:.2f}s")

        return {"success": True, "size": size, "checksum": checksum, "error": None}
