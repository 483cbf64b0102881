"""File operations utilities for SnapKeep."""

import logging
import os
from typing import List, Optional

logger = logging.getLogger(__name__)


class FileManager:
    """Byte-level file operations scoped to the application data directory."""

    def __init__(self, base_dir: str, verbose: bool = False):
        """
        Initialize file manager.

        Args:
            base_dir: Application-private data directory
            verbose: Enable verbose output
        """
        self.base_dir = os.path.abspath(base_dir)
        self.verbose = verbose

    def resolve(self, path: str) -> str:
        """Resolve a path relative to the data directory.

        Absolute paths are accepted as long as they stay inside it.
        """
        full_path = os.path.abspath(os.path.join(self.base_dir, path))
        if os.path.commonpath([full_path, self.base_dir]) != self.base_dir:
            raise ValueError(f"Path escapes data directory: {path}")
        return full_path

    def ensure_directory(self, path: str = "") -> str:
        full_path = self.resolve(path)
        os.makedirs(full_path, exist_ok=True)
        return full_path

    def exists(self, path: str) -> bool:
        return os.path.exists(self.resolve(path))

    def read_bytes(self, path: str) -> bytes:
        with open(self.resolve(path), "rb") as f:
            return f.read()

    def read_text(self, path: str) -> str:
        with open(self.resolve(path), encoding="utf-8") as f:
            return f.read()

    def atomic_write(self, path: str, data: bytes, mode: Optional[int] = None) -> str:
        """
        Write data to a temporary sibling and rename it over the target.

        The rename happens within the same directory so readers never see a
        half-written file; an interrupted write leaves only the temp file.

        Args:
            path: Target path (relative to the data directory or absolute inside it)
            data: Bytes to write
            mode: Optional permission mode applied before the rename

        Returns:
            str: Absolute path to the written file
        """
        target = self.resolve(path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        temp_path = f"{target}.tmp"

        try:
            with open(temp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            if mode is not None:
                os.chmod(temp_path, mode)
            os.replace(temp_path, target)
        except OSError:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove temporary file {temp_path}: {cleanup_error}")
            raise

        self._fsync_directory(os.path.dirname(target))

        if self.verbose:
            print(f"Wrote {len(data)} bytes to {target}")

        return target

    def atomic_write_text(self, path: str, content: str, mode: Optional[int] = None) -> str:
        return self.atomic_write(path, content.encode("utf-8"), mode=mode)

    def delete(self, path: str) -> None:
        """Delete a file, raising on failure. Missing files are ignored."""
        full_path = self.resolve(path)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            return

    def safe_delete(self, path: str) -> bool:
        """
        Delete a file without raising.

        Returns:
            bool: True if the file is gone afterwards
        """
        try:
            self.delete(path)
            return True
        except OSError as e:
            logger.warning(f"Failed to delete {path}: {e}")
            return False

    def list_dir(self, path: str = "") -> List[str]:
        full_path = self.resolve(path)
        if not os.path.isdir(full_path):
            return []
        return sorted(os.listdir(full_path))

    @staticmethod
    def _fsync_directory(directory: str) -> None:
        # Directory fsync is unsupported on Windows
        if os.name == "nt":
            return
        try:
            fd = os.open(directory, os.O_RDONLY)
        except OSError:
            return
        try:
            os.fsync(fd)
        except OSError:
            pass
        finally:
            os.close(fd)
