"""Async filesystem primitives used by the tree deleter.

Everything here runs the blocking OS call in the event loop's default executor
and resumes the caller on the loop thread. OSErrors are converted to
FatalIOError so the engine only has one failure type to handle.
"""

import asyncio
import enum
import os
from itertools import islice
from pathlib import Path
from typing import List, NamedTuple, Optional

import aiofiles.os

from .errors import FatalIOError


class EntryKind(enum.Enum):
    """Type of a directory entry, determined without following symlinks."""

    DIRECTORY = "directory"
    FILE = "file"
    SYMLINK = "symlink"
    SPECIAL = "special"  # sockets, FIFOs, device nodes


class DirectoryEntry(NamedTuple):
    name: str
    kind: EntryKind

    @property
    def is_directory(self) -> bool:
        return self.kind is EntryKind.DIRECTORY


def classify_entry(entry: os.DirEntry) -> EntryKind:
    """Classify a scandir entry from its cached type, never following symlinks."""
    if entry.is_symlink():
        return EntryKind.SYMLINK
    if entry.is_dir(follow_symlinks=False):
        return EntryKind.DIRECTORY
    if entry.is_file(follow_symlinks=False):
        return EntryKind.FILE
    return EntryKind.SPECIAL


class CancelToken:
    """
    Cooperative cancellation flag shared by everything working on one deletion.

    Cancelling does not interrupt operations already in flight; it only makes
    the deleter refuse to issue new ones.
    """

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class DirectoryListing:
    """Streaming listing of one directory's immediate children, read in batches."""

    def __init__(self, path: Path, iterator):
        self.path = path
        self._iterator = iterator
        self.closed = False

    async def next_batch(self, count: int) -> List[DirectoryEntry]:
        """
        Fetch up to ``count`` entries. An empty list means the listing is exhausted.

        Raises:
            FatalIOError: If reading the directory fails
        """
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_batch, count)
        except OSError as e:
            raise FatalIOError.from_oserror(self.path, "read directory", e) from e

    def _read_batch(self, count: int) -> List[DirectoryEntry]:
        return [DirectoryEntry(entry.name, classify_entry(entry)) for entry in islice(self._iterator, count)]

    def close(self) -> None:
        # Synchronous: only releases the directory handle, which does not block
        if not self.closed:
            self.closed = True
            self._iterator.close()


class LocalFilesystem:
    """Filesystem collaborator backed by the local OS through aiofiles."""

    async def open_listing(self, path: Path) -> DirectoryListing:
        """
        Open a streaming listing of ``path``.

        Raises:
            FatalIOError: If the directory cannot be opened
        """
        try:
            iterator = await aiofiles.os.scandir(path)
        except OSError as e:
            raise FatalIOError.from_oserror(path, "list directory", e) from e
        return DirectoryListing(Path(path), iterator)

    async def delete(self, path: Path) -> None:
        """Delete a non-directory entry (file, symlink or special file)."""
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise FatalIOError.from_oserror(path, "remove file", e) from e

    async def delete_directory(self, path: Path) -> None:
        """Delete an empty directory."""
        try:
            await aiofiles.os.rmdir(path)
        except OSError as e:
            raise FatalIOError.from_oserror(path, "remove directory", e) from e

    async def is_symlink(self, path: Path) -> bool:
        return await aiofiles.os.path.islink(path)
