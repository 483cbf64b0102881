"""Content digests for backup artifacts."""

import hashlib
import hmac
from typing import Optional

from snapkeep.utils.errors import IntegrityMismatchError

CHUNK_SIZE = 1024 * 1024


class IntegrityVerifier:
    """Computes and compares SHA-256 digests."""

    algorithm = "sha256"

    def digest_bytes(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def digest_file(self, path: str) -> str:
        """Digest a file in chunks so large databases are not loaded at once."""
        hasher = hashlib.sha256()
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                hasher.update(chunk)
        return hasher.hexdigest()

    def matches(self, expected: Optional[str], actual: str) -> bool:
        if not expected:
            return False
        return hmac.compare_digest(expected.lower(), actual.lower())

    def verify_bytes(self, data: bytes, expected: Optional[str], operation: str = "verify") -> str:
        """
        Check data against an expected digest.

        Args:
            data: Bytes to check
            expected: Recorded digest; an empty value skips the comparison
            operation: Operation name used in the error message

        Returns:
            str: The computed digest

        Raises:
            IntegrityMismatchError: If the digests differ
        """
        actual = self.digest_bytes(data)
        self._compare(expected, actual, operation)
        return actual

    def verify_file(self, path: str, expected: Optional[str], operation: str = "verify") -> str:
        actual = self.digest_file(path)
        self._compare(expected, actual, operation)
        return actual

    def _compare(self, expected: Optional[str], actual: str, operation: str) -> None:
        if not expected:
            return
        if not self.matches(expected, actual):
            raise IntegrityMismatchError(
                f"Integrity check failed during {operation}: checksum mismatch",
                expected=expected,
                actual=actual,
                suggestions=[
                    "The backup file may be corrupted; choose a different backup",
                    "Create a new backup before retrying the restore",
                ],
            )
