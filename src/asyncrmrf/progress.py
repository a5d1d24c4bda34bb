"""Progress reporting for a running deletion."""

import asyncio
import logging
import sys
import time
from typing import Optional, TextIO

from .logging import log_with_context


class ProgressReporter:
    """
    Owner of the process-wide deletion counter.

    The deleter calls increment() once per successfully deleted entry. A
    background task prints the counter every ``interval`` seconds. All calls
    happen on the event loop thread, so the counter needs no lock.
    """

    def __init__(
        self,
        interval: float = 1.0,
        stream: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")

        self.interval = interval
        self.stream = stream
        self.logger = logger or logging.getLogger("asyncrmrf")
        self.deleted = 0
        self.reports = 0
        self.start_time = time.monotonic()

        self._last_report_time = self.start_time
        self._last_report_count = 0
        self._task: Optional[asyncio.Task] = None

    def increment(self) -> None:
        self.deleted += 1

    def report(self) -> None:
        """Print the current counter value and log rate details at DEBUG."""
        stream = self.stream if self.stream is not None else sys.stdout
        print(f"{self.deleted} files deleted", file=stream, flush=True)
        self.reports += 1

        now = time.monotonic()
        elapsed = now - self.start_time
        since_last = now - self._last_report_time

        if self.logger.isEnabledFor(logging.DEBUG):
            log_with_context(
                self.logger,
                "debug",
                "Progress update",
                {
                    "elapsed_seconds": round(elapsed, 1),
                    "entries_deleted": self.deleted,
                    "deleted_per_second": round(self.deleted / elapsed, 1) if elapsed > 0 else 0.0,
                    "deleted_per_second_instant": (
                        round((self.deleted - self._last_report_count) / since_last, 1) if since_last > 0 else 0.0
                    ),
                },
            )

        self._last_report_time = now
        self._last_report_count = self.deleted

    async def _background_reporter(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.report()

    def start(self) -> None:
        """Start periodic reporting on the running event loop."""
        if self._task is None:
            self.start_time = time.monotonic()
            self._last_report_time = self.start_time
            self._task = asyncio.create_task(self._background_reporter())

    async def stop(self) -> None:
        """Stop periodic reporting. Does not print a final report."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass  # Expected
