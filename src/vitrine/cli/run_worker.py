"""CLI command running the pipeline worker as its own process.

Usage:
    python -m vitrine.cli [OPTIONS]

Examples:
    # Run with settings from the environment
    python -m vitrine.cli

    # Bigger batches, named lock owner
    python -m vitrine.cli --batch-size 10 --worker-id gpu-box-1

    # Verbose logging
    python -m vitrine.cli -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from vitrine.core import timezone  # noqa: F401
from vitrine.core.config import Settings, configure_logging
from vitrine.core.database import setup_db_session
from vitrine.workers.pipeline_worker import run_pipeline_worker

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Run the job pipeline worker",
        epilog="Several workers may run against the same database",
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        help="Deliveries claimed per poll (default: WORKER_BATCH_SIZE)",
    )

    parser.add_argument(
        "--poll-interval",
        type=float,
        help="Seconds between polls of an idle queue (default: POLL_INTERVAL_SECONDS)",
    )

    parser.add_argument(
        "--worker-id",
        help="Lock owner name written on claimed messages (default: hostname:pid)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (stopped by user), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    if args.batch_size:
        settings.worker_batch_size = args.batch_size
    if args.poll_interval:
        settings.poll_interval_seconds = args.poll_interval

    configure_logging(settings)

    logger.info(
        "cli.worker_starting",
        batch_size=settings.worker_batch_size,
        poll_interval=settings.poll_interval_seconds,
        worker_id=args.worker_id,
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)

    try:
        await run_pipeline_worker(session_factory, settings, worker_id=args.worker_id)
    except asyncio.CancelledError:
        logger.info("cli.worker_cancelled")
        return 0
    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    try:
        sys.exit(asyncio.run(async_main()))
    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nWorker stopped by user", file=sys.stderr)
        sys.exit(130)  # Standard exit code for SIGINT


if __name__ == "__main__":
    main()
