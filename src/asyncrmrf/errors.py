"""Error type shared by the filesystem layer and the deletion engine."""

import errno as errno_codes
import os
from pathlib import Path
from typing import Optional


class FatalIOError(Exception):
    """
    Unrecoverable failure of a filesystem operation.

    Any failure while listing a directory, fetching a batch of entries or
    deleting an entry is fatal: the whole deletion is aborted and the error is
    reported to whoever started it.

    Attributes:
        path: Path the failing operation was applied to
        operation: Short description of the operation ("list directory", ...)
        errno: OS error number, if the failure came from the OS
        strerror: Human-readable reason
    """

    def __init__(self, path: Path, operation: str, strerror: str, errno: Optional[int] = None):
        self.path = Path(path)
        self.operation = operation
        self.strerror = strerror
        self.errno = errno
        super().__init__(f"Error trying to {operation} {self.path}: {strerror}")

    @classmethod
    def from_oserror(cls, path: Path, operation: str, error: OSError) -> "FatalIOError":
        """Wrap an OSError raised while performing ``operation`` on ``path``."""
        strerror = error.strerror or (os.strerror(error.errno) if error.errno else str(error))
        return cls(path, operation, strerror, error.errno)

    @classmethod
    def cancelled(cls, path: Path, operation: str, reason: Optional[str] = None) -> "FatalIOError":
        """Error reported when new work is refused because the operation was cancelled."""
        strerror = f"Operation was cancelled ({reason})" if reason else "Operation was cancelled"
        return cls(path, operation, strerror, errno_codes.ECANCELED)

    @property
    def is_cancellation(self) -> bool:
        return self.errno == errno_codes.ECANCELED
