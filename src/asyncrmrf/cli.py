"""Command-line interface for asyncrmrf."""

import argparse
import asyncio
import os
import signal
import sys
from typing import List, Optional

from .deleter import DEFAULT_BATCH_SIZE, async_main
from .errors import FatalIOError
from .fs import CancelToken


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments. Tuning knobs come from the environment."""
    parser = argparse.ArgumentParser(
        prog="asyncrmrf",
        description="Recursively delete a directory tree using non-blocking I/O",
        epilog=(
            "Environment: ASYNCRMRF_BATCH_SIZE (entries per listing batch), "
            "ASYNCRMRF_PROGRESS_INTERVAL (seconds between progress lines), "
            "ASYNCRMRF_LOG_LEVEL (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
        ),
    )

    parser.add_argument(
        "path",
        help="Directory to delete, including everything below it",
    )

    args = parser.parse_args(argv)

    try:
        args.batch_size = int(os.getenv("ASYNCRMRF_BATCH_SIZE", str(DEFAULT_BATCH_SIZE)))
        args.progress_interval = float(os.getenv("ASYNCRMRF_PROGRESS_INTERVAL", "1.0"))
    except ValueError as e:
        parser.error(f"invalid environment configuration: {e}")
    args.log_level = os.getenv("ASYNCRMRF_LOG_LEVEL", "WARNING")

    return args


async def _run(args: argparse.Namespace) -> dict:
    cancel_token = CancelToken()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, cancel_token.cancel, "SIGTERM")
    except (NotImplementedError, RuntimeError, ValueError):
        pass  # No signal support on this loop or outside the main thread

    return await async_main(
        path=args.path,
        batch_size=args.batch_size,
        progress_interval=args.progress_interval,
        log_level=args.log_level,
        cancel_token=cancel_token,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = parse_args(argv)

    try:
        asyncio.run(_run(args))
        sys.exit(0)

    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(130)
    except FatalIOError as e:
        print(str(e), file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Invalid argument: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
