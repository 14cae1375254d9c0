"""Ingestion pipeline: one block range in, one atomic ledger commit out."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from chainequity_api.chain.classifier import EventClassifier
from chainequity_api.chain.client import ChainLogSource
from chainequity_api.chain.types import BlockHeader, ClassifiedEvent, EventKind
from chainequity_api.db.session import Database
from chainequity_api.errors import (
    ChainSourceError,
    InvalidArgumentError,
    MalformedEventError,
    ReorgRollbackError,
)
from chainequity_api.ledger.balances import BalanceLedger
from chainequity_api.ledger.corporate import EVENT_TO_ACTION, CorporateActionLedger
from chainequity_api.ledger.events import EventStore, RecordResult
from chainequity_api.ledger.sync_state import WATERMARK_KEY, SyncState
from chainequity_api.models import ChainEvent
from chainequity_api.utils import metrics

logger = logging.getLogger(__name__)


@dataclass
class ReorgResult:
    """What a reorg rollback removed."""

    diverged_block: int
    common_ancestor: int
    corporate_actions_removed: int = 0
    addresses_rebuilt: int = 0


@dataclass
class RangeResult:
    """Outcome of one committed block range."""

    from_block: int
    to_block: int
    events_seen: int = 0
    events_inserted: int = 0
    duplicates: int = 0
    watermark: Optional[int] = None
    reorg: Optional[ReorgResult] = None

    def to_dict(self) -> dict:
        return {
            "from_block": self.from_block,
            "to_block": self.to_block,
            "events_seen": self.events_seen,
            "events_inserted": self.events_inserted,
            "duplicates": self.duplicates,
            "watermark": self.watermark,
            "reorg": None if self.reorg is None else {
                "diverged_block": self.reorg.diverged_block,
                "common_ancestor": self.reorg.common_ancestor,
                "corporate_actions_removed": self.reorg.corporate_actions_removed,
                "addresses_rebuilt": self.reorg.addresses_rebuilt,
            },
        }


class IngestionPipeline:
    """Fetch, classify and apply token events for contiguous block ranges.

    Callers must serialize ``ingest_range``/``sync_to``/``rollback_to``; the
    live watcher does so with its writer lock.
    """

    def __init__(
        self,
        database: Database,
        chain: ChainLogSource,
        classifier: Optional[EventClassifier] = None,
        start_block: int = 0,
    ):
        """Initialize pipeline."""
        self.database = database
        self.chain = chain
        self.classifier = classifier or EventClassifier()
        self.start_block = start_block

    def current_watermark(self) -> Optional[int]:
        """Highest block fully ingested, or ``None``."""
        with self.database.session() as db:
            return SyncState(db).get_watermark()

    def next_start_block(self) -> int:
        """First block the next range should cover."""
        watermark = self.current_watermark()
        return watermark + 1 if watermark is not None else self.start_block

    def ingest_range(self, from_block: int, to_block: int) -> RangeResult:
        """Ingest the inclusive range ``[from_block, to_block]`` atomically."""
        if from_block < 0 or to_block < from_block:
            raise InvalidArgumentError(f"Invalid block range {from_block}-{to_block}")
        next_block = self.next_start_block()
        if from_block > next_block:
            raise InvalidArgumentError(
                f"Range {from_block}-{to_block} would leave blocks {next_block}-{from_block - 1} unindexed"
            )

        reorg = self._check_for_reorg(from_block)
        if reorg is not None:
            from_block = min(from_block, reorg.common_ancestor + 1)

        started = time.monotonic()
        logs = self.chain.get_logs(from_block, to_block)
        events = self.classifier.classify_all(logs)
        headers = self._fetch_headers({event.block_number for event in events} | {to_block})

        result = RangeResult(from_block=from_block, to_block=to_block, events_seen=len(events), reorg=reorg)
        counts: dict[tuple[str, str], int] = {}

        db = self.database.session()
        try:
            store = EventStore(db)
            balances = BalanceLedger(db)
            corporate = CorporateActionLedger(db)
            state = SyncState(db)

            for event in events:
                header = headers[event.block_number]
                status, row = store.record_event(event, header.timestamp)
                key = (event.kind.value, status.value)
                counts[key] = counts.get(key, 0) + 1
                if status is RecordResult.DUPLICATE:
                    result.duplicates += 1
                    continue
                result.events_inserted += 1
                self._apply(event, row, header, balances, corporate)

            for number, header in headers.items():
                state.record_block_hash(number, header.hash)

            previous = state.get_watermark()
            result.watermark = to_block if previous is None else max(previous, to_block)
            state.set_watermark(result.watermark)
            db.commit()
        except Exception as e:
            db.rollback()
            metrics.ranges_failed.labels(error=type(e).__name__).inc()
            logger.error(f"Rolled back blocks {from_block}-{to_block}: {e}", exc_info=True)
            raise
        finally:
            db.close()

        for (event_type, status), count in counts.items():
            metrics.events_ingested.labels(event_type=event_type, result=status).inc(count)
        metrics.ranges_committed.inc()
        metrics.watermark_block.set(result.watermark)
        metrics.ingestion_duration.observe(time.monotonic() - started)

        if result.events_seen:
            logger.info(
                f"Indexed blocks {from_block}-{to_block}: {result.events_inserted} new events, "
                f"{result.duplicates} duplicates"
            )
        else:
            logger.debug(f"Indexed blocks {from_block}-{to_block}: no events")
        return result

    def sync_to(self, target_block: Optional[int] = None, batch_size: int = 1000) -> list[RangeResult]:
        """Backfill from the watermark up to ``target_block`` (default: chain head) in batches."""
        if batch_size <= 0:
            raise InvalidArgumentError("batch_size must be positive")
        head = self.chain.get_chain_head() if target_block is None else target_block
        results = []
        while True:
            start = self.next_start_block()
            if start > head:
                break
            end = min(head, start + batch_size - 1)
            results.append(self.ingest_range(start, end))
        return results

    def rollback_to(self, common_ancestor: int, diverged_block: Optional[int] = None) -> ReorgResult:
        """Remove every ledger effect of blocks above ``common_ancestor``."""
        first_removed = common_ancestor + 1
        db = self.database.session()
        try:
            state = SyncState(db)
            watermark = state.get_watermark()
            corporate_removed = CorporateActionLedger(db).delete_from_block(first_removed)
            touched = EventStore(db).delete_from_block(first_removed)
            state.delete_block_hashes_above(common_ancestor)
            rebuilt = BalanceLedger(db).rebuild_addresses(touched)
            if common_ancestor >= self.start_block:
                state.set_watermark(common_ancestor)
            else:
                state.delete_value(WATERMARK_KEY)
            db.commit()
        except Exception as e:
            db.rollback()
            logger.critical(f"Reorg rollback to block {common_ancestor} failed: {e}", exc_info=True)
            raise ReorgRollbackError(f"Rollback to block {common_ancestor} failed: {e}") from e
        finally:
            db.close()

        if watermark is not None:
            metrics.reorg_depth.observe(max(watermark - common_ancestor, 0))
        logger.warning(
            f"Rolled ledger back to block {common_ancestor}: {corporate_removed} corporate actions removed, "
            f"{rebuilt} balances rebuilt"
        )
        return ReorgResult(
            diverged_block=diverged_block if diverged_block is not None else first_removed,
            common_ancestor=common_ancestor,
            corporate_actions_removed=corporate_removed,
            addresses_rebuilt=rebuilt,
        )

    def _check_for_reorg(self, from_block: int) -> Optional[ReorgResult]:
        """Compare the recorded hash of ``from_block - 1`` with the chain."""
        previous_block = from_block - 1
        if previous_block < 0:
            return None
        with self.database.session() as db:
            recorded = SyncState(db).recorded_hash(previous_block)
        if recorded is None:
            return None

        current = self.chain.get_block_hash(previous_block)
        if current is not None and current.lower() == recorded:
            return None

        metrics.reorgs_detected.inc()
        logger.warning(f"Reorg detected at block {previous_block}: recorded {recorded}, chain has {current}")
        ancestor = self._find_common_ancestor(previous_block)
        return self.rollback_to(ancestor, diverged_block=previous_block)

    def _find_common_ancestor(self, diverged_block: int) -> int:
        """Newest recorded block whose hash still matches the chain."""
        with self.database.session() as db:
            candidates = [
                (row.block_number, row.block_hash) for row in SyncState(db).recorded_blocks(below=diverged_block)
            ]
        for number, recorded in candidates:
            current = self.chain.get_block_hash(number)
            if current is not None and current.lower() == recorded:
                return number
        return self.start_block - 1

    def _fetch_headers(self, block_numbers: set[int]) -> dict[int, BlockHeader]:
        headers = {}
        for number in sorted(block_numbers):
            header = self.chain.get_block(number)
            if header is None:
                raise ChainSourceError(f"Block {number} is not available from the chain source")
            headers[number] = header
        return headers

    def _apply(
        self,
        event: ClassifiedEvent,
        row: ChainEvent,
        header: BlockHeader,
        balances: BalanceLedger,
        corporate: CorporateActionLedger,
    ):
        if event.kind is EventKind.TRANSFER:
            if event.from_address is None or event.to_address is None or event.amount is None:
                raise MalformedEventError(f"Transfer in tx {event.transaction_hash} is missing fields")
            balances.apply_transfer(
                event.from_address, event.to_address, event.amount, event.block_number, header.timestamp
            )
        elif event.kind in EVENT_TO_ACTION:
            corporate.record_action(row)
        # WalletApproved / WalletRevoked / TransferBlocked are journal-only
