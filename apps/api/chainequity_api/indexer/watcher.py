"""Live watcher: follow the chain head and ingest new blocks as they confirm."""

import logging
import threading
import time
from contextlib import AbstractContextManager
from typing import Optional

from redis.exceptions import LockError
from sqlalchemy.exc import OperationalError

from chainequity_api.errors import ChainSourceError, StructuralError
from chainequity_api.indexer.pipeline import IngestionPipeline, RangeResult
from chainequity_api.utils import metrics

logger = logging.getLogger(__name__)

# LockError covers a redis writer lock that expired mid-range; the range has already committed
TRANSIENT_ERRORS = (ChainSourceError, OperationalError, LockError)


class LiveWatcher:
    """Poll the chain head and feed bounded ranges to the ingestion pipeline.

    The watcher is the only writer while it runs: every range goes through
    ``writer_lock``, which backfills and manual syncs must take too.
    Transient failures back off exponentially; a structural failure halts the
    watcher and is kept in ``last_error`` for an operator.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        poll_interval: float = 3.0,
        max_batch_size: int = 1000,
        confirmations: int = 0,
        backoff_base: float = 1.0,
        backoff_max: float = 8.0,
        writer_lock: Optional[AbstractContextManager] = None,
    ):
        """Initialize watcher."""
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self.pipeline = pipeline
        self.poll_interval = poll_interval
        self.max_batch_size = max_batch_size
        self.confirmations = confirmations
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.writer_lock = writer_lock if writer_lock is not None else threading.Lock()

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.chain_head: Optional[int] = None
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None
        self.halted = False
        self.ranges_committed = 0

    def is_running(self) -> bool:
        """Check if the polling thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start polling on a background thread."""
        if self.is_running():
            logger.warning("Watcher already running")
            return
        self._stop.clear()
        self.halted = False
        self.last_error = None
        self.consecutive_failures = 0
        self._thread = threading.Thread(target=self._run, name="chainequity-watcher", daemon=True)
        self._thread.start()
        logger.info(f"Watcher started (poll every {self.poll_interval}s, batches of {self.max_batch_size})")

    def stop(self, timeout: Optional[float] = None):
        """Signal the polling thread to stop and wait for the in-flight range.

        By default this blocks until the range commits or fails; a bounded
        ``timeout`` can return with the thread still alive.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Watcher thread did not stop within timeout")
            else:
                self._thread = None
        logger.info("Watcher stopped")

    def run_once(self) -> Optional[RangeResult]:
        """Ingest at most one batch up to the confirmed head; ``None`` if caught up."""
        head = self.pipeline.chain.get_chain_head() - self.confirmations
        self.chain_head = head
        metrics.watcher_chain_head.set(max(head, 0))

        with self.writer_lock:
            start = self.pipeline.next_start_block()
            if start > head:
                return None
            end = min(head, start + self.max_batch_size - 1)
            result = self.pipeline.ingest_range(start, end)
        self.ranges_committed += 1
        return result

    def _backoff_delay(self) -> float:
        return min(self.backoff_base * (2 ** (self.consecutive_failures - 1)), self.backoff_max)

    def _run(self):
        while not self._stop.is_set():
            try:
                result = self.run_once()
            except TRANSIENT_ERRORS as e:
                self.consecutive_failures += 1
                self.last_error = str(e)
                metrics.watcher_transient_failures.inc()
                delay = self._backoff_delay()
                logger.warning(f"Transient watcher failure ({self.consecutive_failures} in a row), retrying in {delay}s: {e}")
                self._stop.wait(delay)
                continue
            except StructuralError as e:
                self.halted = True
                self.last_error = str(e)
                logger.critical(f"Watcher halted on structural error: {e}", exc_info=True)
                return
            except Exception as e:
                self.halted = True
                self.last_error = str(e)
                logger.critical(f"Watcher halted on unexpected error: {e}", exc_info=True)
                return

            if self.consecutive_failures:
                logger.info(f"Watcher recovered after {self.consecutive_failures} failures")
            self.consecutive_failures = 0
            self.last_error = None
            if result is None:
                # caught up; otherwise keep draining the backlog without sleeping
                self._stop.wait(self.poll_interval)

    def status(self) -> dict:
        """Snapshot of watcher state for the API and CLI."""
        return {
            "running": self.is_running(),
            "halted": self.halted,
            "watermark": self.pipeline.current_watermark(),
            "chain_head": self.chain_head,
            "confirmations": self.confirmations,
            "poll_interval_seconds": self.poll_interval,
            "max_batch_size": self.max_batch_size,
            "consecutive_failures": self.consecutive_failures,
            "ranges_committed": self.ranges_committed,
            "last_error": self.last_error,
            "checked_at": int(time.time()),
        }
