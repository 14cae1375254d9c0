"""Celery tasks for backfills and ledger verification."""

import logging
from typing import Optional

import redis
from celery import Task
from sqlalchemy.exc import OperationalError

from chainequity_api.db.session import Database
from chainequity_api.errors import ChainSourceError, StructuralError
from chainequity_api.indexer.factory import build_pipeline
from chainequity_api.ledger.balances import BalanceLedger
from chainequity_api.ledger.corporate import CorporateActionLedger
from chainequity_worker.celery_app import celery_app
from chainequity_worker.settings import get_settings

logger = logging.getLogger(__name__)


class IndexerTask(Task):
    """Task owning a database handle for the duration of one run."""

    _database: Optional[Database] = None

    @property
    def database(self) -> Database:
        """Get the open database handle."""
        if self._database is None:
            self._database = Database(get_settings().database_url_computed).open()
        return self._database

    def after_return(self, *args, **kwargs):
        """Close the database handle after the task."""
        if self._database is not None:
            self._database.close()
            self._database = None


def writer_lock(settings):
    """Redis lock shared with the live watcher's ``redis`` lock backend."""
    client = redis.from_url(settings.redis_url)
    return client.lock(
        settings.writer_lock_name,
        timeout=settings.writer_lock_timeout_seconds,
        blocking_timeout=settings.writer_lock_blocking_seconds,
    )


@celery_app.task(
    base=IndexerTask,
    bind=True,
    autoretry_for=(ChainSourceError, OperationalError),
    retry_backoff=True,
    retry_backoff_max=60,
    max_retries=get_settings().backfill_max_retries,
)
def backfill_range(
    self,
    from_block: Optional[int] = None,
    to_block: Optional[int] = None,
    correlation_id: Optional[str] = None,
):
    """Ingest blocks up to ``to_block`` (default: chain head) under the writer lock."""
    settings = get_settings()
    log_extra = {"task": "backfill_range", "correlation_id": correlation_id}

    lock = writer_lock(settings)
    if not lock.acquire():
        logger.info("Writer lock busy, retrying backfill later", extra=log_extra)
        raise self.retry(countdown=settings.writer_lock_retry_countdown_seconds)

    try:
        pipeline = build_pipeline(settings, self.database)
        if from_block is not None:
            end = to_block if to_block is not None else pipeline.chain.get_chain_head()
            results = [pipeline.ingest_range(from_block, end)]
        else:
            results = pipeline.sync_to(to_block, settings.max_batch_size)
    except StructuralError as e:
        logger.critical(f"Backfill aborted on structural error: {e}", extra=log_extra, exc_info=True)
        raise
    finally:
        try:
            lock.release()
        except redis.exceptions.LockNotOwnedError:
            # the lock timed out mid-backfill; every committed range is still atomic
            logger.warning("Writer lock expired before release", extra=log_extra)

    inserted = sum(result.events_inserted for result in results)
    watermark = results[-1].watermark if results else pipeline.current_watermark()
    logger.info(f"Backfill committed {len(results)} ranges, {inserted} new events", extra=log_extra)
    return {
        "ranges": [result.to_dict() for result in results],
        "events_inserted": inserted,
        "watermark": watermark,
    }


@celery_app.task(base=IndexerTask, bind=True)
def verify_ledger(self, correlation_id: Optional[str] = None):
    """Replay stored events against the balance and corporate action ledgers."""
    with self.database.read_session() as db:
        mismatches = BalanceLedger(db).verify_balances()
        splits_ok, problem = CorporateActionLedger(db).verify_split_chain()

    if mismatches or not splits_ok:
        logger.error(
            f"Ledger verification failed: {len(mismatches)} balance mismatches, split chain ok={splits_ok}",
            extra={"task": "verify_ledger", "correlation_id": correlation_id},
        )
    return {
        "consistent": not mismatches and splits_ok,
        "balance_mismatches": mismatches,
        "split_chain_consistent": splits_ok,
        "split_chain_problem": problem,
    }
