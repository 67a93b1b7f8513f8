"""Queue processor: polling worker that drains the delivery queue.

Each cycle walks Idle -> Fetching -> Batching -> Sending -> Reconciling
-> Idle. The processor keeps no business state between cycles; every
decision is read from and written back to the queue table. The timer is
an APScheduler interval job with max_instances=1, so cycles inside one
process never overlap. Only one processor instance may run against a
database: fetch-then-update has no claim step.
"""

import enum
import logging
import signal
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..config import settings
from ..database.base import SessionLocal
from ..errors import GatewayError
from ..integrations.push_gateway import ExpoPushClient, PushGateway, Receipt
from .models import DeliveryQueueItem
from .service import build_messages, cleanup_terminal, fetch_pending, mark_batch_failed, partition, reconcile_receipts

logger = logging.getLogger(__name__)


class ProcessorState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    BATCHING = "batching"
    SENDING = "sending"
    RECONCILING = "reconciling"


class QueueProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        gateway: PushGateway | None = None,
        batch_size: int | None = None,
        fetch_limit: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._gateway = gateway if gateway is not None else ExpoPushClient()
        self._batch_size = batch_size or settings.push_gateway_max_batch_size
        self._fetch_limit = fetch_limit or settings.queue_fetch_limit
        self._scheduler: BackgroundScheduler | None = None
        self._lock = threading.RLock()
        self._stopped = threading.Event()
        self._stopped.set()
        self.state = ProcessorState.IDLE
        self.last_cycle_at: datetime | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(self, interval_seconds: float | None = None, cleanup_interval_hours: float | None = None) -> bool:
        """Run one cycle now, then every `interval_seconds`. No-op if already running."""
        with self._lock:
            if self._scheduler is not None:
                logger.warning("Queue processor is already running")
                return False
            scheduler = BackgroundScheduler(timezone="UTC")
            self._scheduler = scheduler
            self._stopped.clear()

        interval = interval_seconds or settings.queue_poll_interval_seconds
        cleanup_hours = (
            settings.queue_cleanup_interval_hours if cleanup_interval_hours is None else cleanup_interval_hours
        )

        self.run_cycle()

        with self._lock:
            if self._scheduler is not scheduler:
                # stop() was called during the startup cycle
                return False
            scheduler.add_job(
                self.run_cycle,
                IntervalTrigger(seconds=interval),
                id="process_queue",
                max_instances=1,
                coalesce=True,
            )
            if cleanup_hours:
                scheduler.add_job(
                    self.cleanup,
                    IntervalTrigger(hours=cleanup_hours),
                    id="cleanup_queue",
                    max_instances=1,
                    coalesce=True,
                )
            scheduler.start()
            if self._scheduler is not scheduler:
                # stopped by a signal handler while starting
                scheduler.shutdown(wait=False)
                return False

        logger.info("Queue processor started (interval: %ss, cleanup every %sh)", interval, cleanup_hours)
        return True

    def stop(self, wait: bool = True) -> None:
        """Stop scheduling cycles. An in-flight cycle finishes; with wait=True this blocks until it does."""
        with self._lock:
            scheduler, self._scheduler = self._scheduler, None
        if scheduler is None:
            self._stopped.set()
            return
        if scheduler.running:
            scheduler.shutdown(wait=wait)
        self._stopped.set()
        logger.info("Queue processor stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() has completed."""
        return self._stopped.wait(timeout)

    # ── Work ──────────────────────────────────────────────────────────

    def run_cycle(self) -> dict[str, int]:
        """Process up to one fetch worth of pending rows. Never raises."""
        totals = {"fetched": 0, "sent": 0, "retry": 0, "failed": 0}
        db = self._session_factory()
        try:
            self.state = ProcessorState.FETCHING
            items = fetch_pending(db, self._fetch_limit)
            totals["fetched"] = len(items)
            if not items:
                return totals

            logger.info("Processing %d pending notifications", len(items))
            self.state = ProcessorState.BATCHING
            for batch in partition(items, self._batch_size):
                counts = self._process_batch(db, batch)
                db.commit()
                for key, value in counts.items():
                    totals[key] += value
        except Exception:
            db.rollback()
            logger.exception("Queue processing cycle failed")
        finally:
            db.close()
            self.state = ProcessorState.IDLE
            self.last_cycle_at = datetime.now(UTC)
        return totals

    def _process_batch(self, db: Session, batch: list[DeliveryQueueItem]) -> dict[str, int]:
        messages = build_messages(batch)
        self.state = ProcessorState.SENDING
        logger.info("Sending batch of %d notifications to push gateway", len(messages))
        try:
            receipts = self._gateway.send(messages)
        except GatewayError as exc:
            self.state = ProcessorState.RECONCILING
            return mark_batch_failed(db, batch, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error from push gateway")
            self.state = ProcessorState.RECONCILING
            return mark_batch_failed(db, batch, str(exc) or exc.__class__.__name__)

        self.state = ProcessorState.RECONCILING
        if not isinstance(receipts, list) or not all(isinstance(r, Receipt) for r in receipts):
            logger.error("Push gateway returned malformed receipts: %r", type(receipts).__name__)
            return mark_batch_failed(db, batch, "Malformed receipts from push gateway")
        return reconcile_receipts(db, batch, receipts)

    def cleanup(self, retention_days: int | None = None) -> int:
        """Delete terminal rows past retention. Independent of the processing cycle."""
        db = self._session_factory()
        try:
            deleted = cleanup_terminal(db, retention_days)
            db.commit()
            return deleted
        except Exception:
            db.rollback()
            logger.exception("Queue cleanup failed")
            return 0
        finally:
            db.close()


def install_signal_handlers(processor: QueueProcessor) -> None:
    """Stop the processor on SIGINT/SIGTERM so in-flight reconciliation is not lost."""

    def _handle(signum, frame):
        logger.info("Received %s, shutting down queue processor", signal.Signals(signum).name)
        processor.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)
