#!/usr/bin/env python3
"""
CLI for the access log aggregator.

Runs the dispatcher against a landing directory and writes partitioned
gzip batches to a sink directory.

Usage:
    # Enqueue every object already in the landing store, process, exit
    python scripts/run_aggregator.py --enqueue --once

    # Feed creation notifications (one JSON event per line) and process
    python scripts/run_aggregator.py --events data/events.ndjson --once

    # Long-running service (Ctrl-C to stop, open batches are flushed)
    python scripts/run_aggregator.py --serve --queue-db data/queue.db

    # Dead-letter inspection and manual replay
    python scripts/run_aggregator.py --queue-db data/queue.db --list-dead-letters
    python scripts/run_aggregator.py --queue-db data/queue.db --redrive <message-id>
"""

import argparse
import json
import logging
import signal
import sys
import threading
from dataclasses import replace
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from log_aggregator.config import clear_settings_cache, get_settings
from log_aggregator.exceptions import AggregatorError, ConfigurationError
from log_aggregator.pipeline import LogAggregator, setup_logging

logger = logging.getLogger(__name__)


def apply_overrides(settings, args):
    """Return settings with command line overrides applied."""
    if args.landing_root:
        settings = replace(settings, landing_root=str(args.landing_root))
    if args.sink_root:
        settings = replace(settings, sink_root=str(args.sink_root))
    if args.queue_db:
        settings = replace(
            settings,
            queue=replace(settings.queue, backend="sqlite", sqlite_path=str(args.queue_db)),
        )
    dispatcher = settings.dispatcher
    if args.workers:
        dispatcher = replace(dispatcher, workers=args.workers)
    if args.batch_size:
        dispatcher = replace(dispatcher, batch_size=args.batch_size)
    return replace(settings, dispatcher=dispatcher)


def feed_events(aggregator: LogAggregator, events_path: Path) -> int:
    """Publish every creation notification in an NDJSON file."""
    count = 0
    with open(events_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                count += len(aggregator.notifier.handle_event(line))
    return count


def list_dead_letters(aggregator: LogAggregator) -> None:
    entries = aggregator.queue.dead_letters()
    print(f"Dead letters: {len(entries)}")
    for entry in entries:
        print(
            json.dumps(
                {
                    "message_id": entry.message_id,
                    "key": entry.original_message.get("object_ref", {}).get("object_key"),
                    "receive_count": entry.receive_count,
                    "failure_reason": entry.failure_reason,
                    "last_error": entry.last_error,
                }
            )
        )


def serve(aggregator: LogAggregator) -> None:
    """Run workers until SIGINT / SIGTERM."""
    stop = threading.Event()

    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop.set()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    aggregator.start()
    while not stop.wait(60):
        status = aggregator.status()
        logger.info(f"Status: {json.dumps(status)}")
        if status["queue"]["dead_letter"]:
            logger.warning(f"Dead-letter depth: {status['queue']['dead_letter']}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Access log aggregator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Backfill and process the landing directory once
  python scripts/run_aggregator.py --enqueue --once

  # Run as a service with a durable queue
  python scripts/run_aggregator.py --serve --queue-db data/queue.db

  # Replay a dead-lettered message
  python scripts/run_aggregator.py --queue-db data/queue.db --redrive <message-id>
        """,
    )

    parser.add_argument("--config", "-c", type=str, help="Path to YAML config file")
    parser.add_argument("--landing-root", type=Path, help="Landing directory override")
    parser.add_argument("--sink-root", type=Path, help="Sink directory override")
    parser.add_argument(
        "--queue-db", type=Path, help="Use a SQLite queue at this path"
    )
    parser.add_argument("--workers", type=int, help="Number of worker threads (W)")
    parser.add_argument(
        "--batch-size", type=int, help="Messages received per worker (B)"
    )
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Enqueue every object already present in the landing store",
    )
    parser.add_argument(
        "--prefix", type=str, default="", help="Key prefix for --enqueue"
    )
    parser.add_argument(
        "--events", type=Path, help="NDJSON file of creation notifications to publish"
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once", action="store_true", help="Process visible messages, flush and exit"
    )
    mode.add_argument(
        "--serve", action="store_true", help="Run workers until interrupted"
    )
    mode.add_argument(
        "--list-dead-letters", action="store_true", help="Print dead-letter entries"
    )
    mode.add_argument(
        "--redrive",
        metavar="MESSAGE_ID",
        help="Move a dead-lettered message back to the queue ('all' for every entry)",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if args.workers is not None and args.workers <= 0:
        parser.error("--workers must be greater than 0")
    if args.batch_size is not None and args.batch_size <= 0:
        parser.error("--batch-size must be greater than 0")

    clear_settings_cache()
    settings = apply_overrides(get_settings(args.config), args)

    try:
        aggregator = LogAggregator(settings)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    try:
        if args.list_dead_letters:
            list_dead_letters(aggregator)
            return 0

        if args.redrive:
            ids = (
                [entry.message_id for entry in aggregator.queue.dead_letters()]
                if args.redrive == "all"
                else [args.redrive]
            )
            for message_id in ids:
                try:
                    aggregator.queue.redrive(message_id)
                except KeyError:
                    logger.error(f"No dead-letter entry with id {message_id}")
                    return 1
            print(f"Redriven {len(ids)} messages")
            return 0

        if args.enqueue:
            aggregator.notifier.enqueue_existing(aggregator.landing_store, args.prefix)
        if args.events:
            feed_events(aggregator, args.events)

        if args.serve:
            serve(aggregator)
        elif args.once:
            result = aggregator.run_until_empty()
            print(json.dumps(result.to_dict(), indent=2))
            return 0 if result.failed == 0 else 2
        return 0

    except AggregatorError as e:
        logger.error(f"Aggregator failed: {e}")
        return 1
    finally:
        aggregator.close()


if __name__ == "__main__":
    sys.exit(main())
