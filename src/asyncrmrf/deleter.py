"""Asynchronous recursive tree deletion.

Every directory being deleted is tracked by a DirectoryTask. A walker lists
the directory in batches and dispatches one operation per entry without
waiting for any of them: a recursive walker for sub-directories, a plain
delete for everything else. Completions flow back up through
``_child_finished``, the single transition that decrements a task's pending
count and removes the directory once nothing is pending and the listing is
exhausted.
"""

import asyncio
import logging
import time
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Set

from . import __version__
from .errors import FatalIOError
from .fs import CancelToken, LocalFilesystem
from .logging import log_with_context, setup_logging
from .progress import ProgressReporter

DEFAULT_BATCH_SIZE = 20

# Directories that are refused outright as a deletion root
PROTECTED_PATHS = {
    "/",
    "/proc",
    "/sys",
    "/dev",
    "/run",
    "/var/run",
    "/boot",
    "/bin",
    "/sbin",
    "/lib",
    "/lib64",
    "/usr/bin",
    "/usr/sbin",
    "/usr/lib",
    "/etc",
}

CompletionSink = Callable[[Optional[Exception]], None]


def check_root_path(root_path: Path) -> Path:
    """
    Return ``root_path`` as an absolute path, refusing protected system directories.

    Raises:
        ValueError: If the path is or lies inside a protected directory
    """
    root = Path(root_path).absolute()
    root_str = str(root)
    for protected in PROTECTED_PATHS:
        inside = protected != "/" and root_str.startswith(protected + "/")
        if root_str == protected or inside:
            raise ValueError(f"Refusing to delete system directory: {root} (protected path '{protected}')")
    return root


class DirectoryTask:
    """
    In-flight recursive deletion of a single directory.

    The task never references its children; it only counts them. Each child
    holds the parent's transition as its completion sink.
    """

    __slots__ = (
        "target_path",
        "pending_children",
        "listing_exhausted",
        "completion_sink",
        "failed",
        "completed",
    )

    def __init__(self, target_path: Path, completion_sink: CompletionSink):
        self.target_path = target_path
        self.pending_children = 0
        self.listing_exhausted = False
        self.completion_sink: Optional[CompletionSink] = completion_sink
        self.failed = False
        self.completed = False

    def __repr__(self) -> str:
        return (
            f"DirectoryTask({str(self.target_path)!r}, pending={self.pending_children}, "
            f"exhausted={self.listing_exhausted}, failed={self.failed})"
        )


class TreeDeleter:
    """
    Deletes directory trees on the running event loop without blocking it.

    Fail fast: the first FatalIOError anywhere in the tree is reported to the
    caller, and no new operation is issued afterwards. Operations already in
    flight are left to finish on their own.
    """

    def __init__(
        self,
        filesystem: Optional[LocalFilesystem] = None,
        progress: Optional[ProgressReporter] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        cancel_token: Optional[CancelToken] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            filesystem: Filesystem collaborator (local filesystem by default)
            progress: Owner of the deletion counter
            batch_size: Number of entries requested per listing batch
            cancel_token: Checked before any new operation is issued
            logger: Logger for diagnostics

        Raises:
            ValueError: If batch_size is not positive
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        self.filesystem = filesystem or LocalFilesystem()
        self.logger = logger or logging.getLogger("asyncrmrf")
        self.progress = progress or ProgressReporter(logger=self.logger)
        self.batch_size = batch_size
        self.cancel_token = cancel_token

        # First fatal error observed anywhere; stops all new work once set
        self.error: Optional[Exception] = None

        self.stats = {
            "directories_started": 0,
            "directories_deleted": 0,
            "files_deleted": 0,
            "sinks_invoked": 0,
            "batches_read": 0,
        }

        self._inflight: Set[asyncio.Task] = set()
        self._done: Optional[asyncio.Future] = None

    # Scheduling

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._on_operation_done)

    def _on_operation_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return

        # Operations report FatalIOError through sinks; anything reaching here is a bug
        log_with_context(
            self.logger,
            "error",
            "Unexpected exception in deletion operation",
            {"error": str(exc), "error_type": type(exc).__name__},
        )
        if self.error is None:
            self.error = exc
        if self._done is not None and not self._done.done():
            self._done.set_exception(exc)

    @property
    def operations_in_flight(self) -> int:
        return len(self._inflight)

    async def wait_idle(self) -> None:
        """Wait until every operation already issued has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # Completion tracking

    def _interrupted(self, task: DirectoryTask, operation: str) -> bool:
        """
        Return True if no new work may be issued for ``task``.

        A task that finds the run aborted or cancelled fails with that error,
        so its sink is still invoked exactly once.
        """
        if task.failed:
            return True

        error = self.error
        if error is None and self.cancel_token is not None and self.cancel_token.cancelled:
            error = FatalIOError.cancelled(task.target_path, operation, self.cancel_token.reason)
        if error is None:
            return False

        self._fail(task, error)
        return True

    def _invoke_sink(self, task: DirectoryTask, error: Optional[Exception]) -> None:
        sink, task.completion_sink = task.completion_sink, None
        if sink is None:
            raise RuntimeError(f"Completion sink invoked twice for {task!r}")
        self.stats["sinks_invoked"] += 1
        sink(error)

    def _fail(self, task: DirectoryTask, error: Exception) -> None:
        if task.failed or task.completed:
            return
        task.failed = True

        if self.error is None:
            self.error = error
            log_with_context(
                self.logger,
                "error",
                "Fatal error, aborting deletion",
                {"path": str(task.target_path), "error": str(error), "error_type": type(error).__name__},
            )

        self._invoke_sink(task, error)

    def _child_finished(self, task: DirectoryTask, error: Optional[Exception] = None) -> None:
        """Record the terminal outcome of one of ``task``'s children."""
        task.pending_children -= 1
        if error is not None:
            self._fail(task, error)
            return
        self._reevaluate(task)

    def _reevaluate(self, task: DirectoryTask) -> None:
        if task.failed or task.pending_children > 0 or not task.listing_exhausted:
            return
        if self._interrupted(task, "remove directory"):
            return
        self._spawn(self._delete_directory(task))

    # Operations

    def _start_directory(self, task: DirectoryTask) -> None:
        self.stats["directories_started"] += 1
        self._spawn(self._walk(task))

    async def _walk(self, task: DirectoryTask) -> None:
        """List ``task``'s directory in batches, dispatching every entry of a batch before fetching the next."""
        if self._interrupted(task, "list directory"):
            return

        try:
            listing = await self.filesystem.open_listing(task.target_path)
        except FatalIOError as e:
            self._fail(task, e)
            return

        try:
            while True:
                if self._interrupted(task, "read directory"):
                    return

                try:
                    batch = await listing.next_batch(self.batch_size)
                except FatalIOError as e:
                    self._fail(task, e)
                    return

                if not batch:
                    break
                self.stats["batches_read"] += 1

                for entry in batch:
                    if self._interrupted(task, "remove"):
                        return

                    task.pending_children += 1
                    child_path = task.target_path / entry.name
                    if entry.is_directory:
                        child = DirectoryTask(child_path, partial(self._child_finished, task))
                        self._start_directory(child)
                    else:
                        self._spawn(self._delete_leaf(task, child_path))
        finally:
            listing.close()

        task.listing_exhausted = True
        self._reevaluate(task)

    async def _delete_leaf(self, parent: DirectoryTask, path: Path) -> None:
        try:
            await self.filesystem.delete(path)
        except FatalIOError as e:
            self._child_finished(parent, e)
            return

        self.progress.increment()
        self.stats["files_deleted"] += 1
        self.logger.debug(f"Deleted: {path}")
        self._child_finished(parent)

    async def _delete_directory(self, task: DirectoryTask) -> None:
        try:
            await self.filesystem.delete_directory(task.target_path)
        except FatalIOError as e:
            self._fail(task, e)
            return

        self.progress.increment()
        self.stats["directories_deleted"] += 1
        self.logger.debug(f"Deleted directory: {task.target_path}")
        task.completed = True
        self._invoke_sink(task, None)

    # Top-level operation

    def start(self, root_path: Path) -> asyncio.Future:
        """
        Begin deleting ``root_path`` and return a future for the whole operation.

        The future resolves to the deletion counter once the root directory
        itself is gone, or raises the first FatalIOError.

        Raises:
            ValueError: If root_path is a protected system directory
            RuntimeError: If this deleter was already started
        """
        if self._done is not None:
            raise RuntimeError("TreeDeleter.start() may only be called once")

        root = check_root_path(root_path)
        done = asyncio.get_running_loop().create_future()
        self._done = done

        def finish(error: Optional[Exception]) -> None:
            if done.done():
                return
            if error is not None:
                done.set_exception(error)
            else:
                done.set_result(self.progress.deleted)

        self._start_directory(DirectoryTask(root, finish))
        return done

    async def delete_tree(self, root_path: Path) -> int:
        """
        Delete ``root_path`` and everything below it.

        Returns:
            Value of the deletion counter after the root was removed

        Raises:
            FatalIOError: On the first failure; raised after the operations
                already in flight have settled
        """
        root = check_root_path(root_path)
        if await self.filesystem.is_symlink(root):
            raise FatalIOError(root, "list directory", "Refusing to follow symbolic link")

        done = self.start(root)
        try:
            return await done
        except Exception:
            await self.wait_idle()
            raise


async def async_main(
    path: str,
    batch_size: int = DEFAULT_BATCH_SIZE,
    progress_interval: float = 1.0,
    log_level: str = "WARNING",
    cancel_token: Optional[CancelToken] = None,
) -> dict:
    """
    Async entry point: delete ``path`` while reporting progress.

    Args:
        path: Directory tree to delete
        batch_size: Number of entries requested per listing batch
        progress_interval: Seconds between progress lines
        log_level: Logging level
        cancel_token: Optional cancellation token shared with the caller

    Returns:
        Operation statistics

    Raises:
        FatalIOError: On the first failure
        ValueError: On invalid parameters or a protected root path
    """

    logger = setup_logging(level=log_level)
    progress = ProgressReporter(interval=progress_interval, logger=logger)
    deleter = TreeDeleter(
        progress=progress,
        batch_size=batch_size,
        cancel_token=cancel_token,
        logger=logger,
    )

    log_with_context(
        logger,
        "info",
        "Starting recursive deletion",
        {
            "version": __version__,
            "root_path": str(Path(path).absolute()),
            "batch_size": batch_size,
            "progress_interval_seconds": progress_interval,
        },
    )

    start_time = time.time()
    progress.start()
    try:
        await deleter.delete_tree(Path(path))
    finally:
        await progress.stop()

    progress.report()

    final_stats = {
        "duration_seconds": round(time.time() - start_time, 2),
        "entries_deleted": progress.deleted,
        "files_deleted": deleter.stats["files_deleted"],
        "directories_deleted": deleter.stats["directories_deleted"],
        "batches_read": deleter.stats["batches_read"],
    }
    log_with_context(logger, "info", "Deletion completed", final_stats)
    return final_stats
