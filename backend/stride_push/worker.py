"""Standalone queue worker: `python -m stride_push.worker`.

Runs the queue processor and the retention cleanup outside the API
process. Use this (with QUEUE_PROCESSOR_ENABLED=false on the API) when
the API runs more than one worker process: only one processor may
drain the queue.
"""

import argparse
import logging

from .config import settings, setup_logging
from .database.base import SessionLocal
from .integrations.push_gateway import ExpoPushClient
from .queue.processor import QueueProcessor, install_signal_handlers

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Process the push notification delivery queue.")
    parser.add_argument("--interval", type=float, default=settings.queue_poll_interval_seconds,
                        help="seconds between processing cycles")
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    parser.add_argument("--cleanup", action="store_true", help="run the retention cleanup and exit")
    args = parser.parse_args(argv)

    setup_logging()
    gateway = ExpoPushClient()
    processor = QueueProcessor(SessionLocal, gateway)
    try:
        if args.cleanup:
            deleted = processor.cleanup()
            logger.info("Cleanup removed %d queue items", deleted)
            return 0
        if args.once:
            totals = processor.run_cycle()
            logger.info("Cycle finished: %s", totals)
            return 0

        install_signal_handlers(processor)
        processor.start(args.interval)
        processor.wait()
        logger.info("Worker exiting")
        return 0
    finally:
        gateway.close()


if __name__ == "__main__":
    raise SystemExit(main())
