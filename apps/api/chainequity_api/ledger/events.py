"""Idempotent append-only event store."""

import hashlib
import time
from enum import Enum
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from chainequity_api.chain.abi import normalize_address
from chainequity_api.chain.types import ClassifiedEvent, EventKind
from chainequity_api.models import ChainEvent


class RecordResult(str, Enum):
    """Outcome of ``EventStore.record_event``."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"


def event_dedup_key(event: ClassifiedEvent) -> str:
    """Natural key of an event.

    ``<tx hash>:<log index>`` when the log index is known, otherwise a digest of
    (block number, kind, from, to, amount).
    """
    if event.log_index is not None:
        return f"{event.transaction_hash.lower()}:{event.log_index}"
    parts = [
        str(event.block_number),
        event.kind.value,
        event.from_address or "",
        event.to_address or "",
        str(event.amount) if event.amount is not None else "",
    ]
    return "nolog:" + hashlib.sha256("|".join(parts).encode()).hexdigest()


class EventStore:
    """Append-only journal of classified chain events."""

    def __init__(self, db: Session):
        """Initialize event store."""
        self.db = db

    def record_event(
        self, event: ClassifiedEvent, block_timestamp: Optional[int] = None
    ) -> tuple[RecordResult, ChainEvent]:
        """Insert an event unless its natural key is already stored."""
        dedup_key = event_dedup_key(event)
        existing = self.db.query(ChainEvent).filter(ChainEvent.dedup_key == dedup_key).first()
        if existing:
            return RecordResult.DUPLICATE, existing

        row = ChainEvent(
            dedup_key=dedup_key,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash.lower(),
            log_index=event.log_index,
            event_type=event.kind.value,
            from_address=event.from_address,
            to_address=event.to_address,
            amount=str(event.amount) if event.amount is not None else None,
            payload_json=event.payload or None,
            block_timestamp=block_timestamp if block_timestamp is not None else int(time.time()),
        )
        self.db.add(row)
        self.db.flush()
        return RecordResult.INSERTED, row

    def _latest_first(self, query):
        return query.order_by(ChainEvent.block_number.desc(), ChainEvent.id.desc())

    def events_by_type(self, kind: EventKind, limit: int = 100) -> list[ChainEvent]:
        """Events of one kind, latest first."""
        query = self.db.query(ChainEvent).filter(ChainEvent.event_type == EventKind(kind).value)
        return self._latest_first(query).limit(limit).all()

    def events_by_types(self, kinds: list[EventKind], limit: int = 100) -> list[ChainEvent]:
        """Events of any of several kinds, latest first."""
        query = self.db.query(ChainEvent).filter(
            ChainEvent.event_type.in_([EventKind(k).value for k in kinds])
        )
        return self._latest_first(query).limit(limit).all()

    def events_by_address(self, address: str, limit: int = 100) -> list[ChainEvent]:
        """Events where the address is sender or receiver, latest first."""
        address = normalize_address(address)
        query = self.db.query(ChainEvent).filter(
            or_(ChainEvent.from_address == address, ChainEvent.to_address == address)
        )
        return self._latest_first(query).limit(limit).all()

    def events_by_block_range(self, from_block: int, to_block: int) -> list[ChainEvent]:
        """Events in an inclusive block range, in replay (ascending) order."""
        return (
            self.db.query(ChainEvent)
            .filter(ChainEvent.block_number >= from_block, ChainEvent.block_number <= to_block)
            .order_by(ChainEvent.block_number.asc(), ChainEvent.id.asc())
            .all()
        )

    def recent_events(self, limit: int = 100, offset: int = 0) -> list[ChainEvent]:
        """All events, latest first, paginated."""
        return self._latest_first(self.db.query(ChainEvent)).offset(offset).limit(limit).all()

    def event_counts(self) -> dict[str, int]:
        """Number of stored events per kind."""
        rows = (
            self.db.query(ChainEvent.event_type, func.count(ChainEvent.id))
            .group_by(ChainEvent.event_type)
            .all()
        )
        counts = {kind.value: 0 for kind in EventKind}
        counts.update({event_type: count for event_type, count in rows})
        return counts

    def transfers(self, address: Optional[str] = None, up_to_block: Optional[int] = None) -> list[ChainEvent]:
        """Transfer events in replay order, optionally for one address and/or up to a block."""
        query = self.db.query(ChainEvent).filter(ChainEvent.event_type == EventKind.TRANSFER.value)
        if address is not None:
            address = normalize_address(address)
            query = query.filter(or_(ChainEvent.from_address == address, ChainEvent.to_address == address))
        if up_to_block is not None:
            query = query.filter(ChainEvent.block_number <= up_to_block)
        return query.order_by(ChainEvent.block_number.asc(), ChainEvent.id.asc()).all()

    def is_wallet_approved(self, address: str) -> bool:
        """Latest WalletApproved/WalletRevoked event for the wallet decides."""
        address = normalize_address(address)
        latest = (
            self._latest_first(
                self.db.query(ChainEvent).filter(
                    ChainEvent.to_address == address,
                    ChainEvent.event_type.in_(
                        [EventKind.WALLET_APPROVED.value, EventKind.WALLET_REVOKED.value]
                    ),
                )
            )
            .first()
        )
        return bool(latest and latest.event_type == EventKind.WALLET_APPROVED.value)

    def delete_from_block(self, block_number: int) -> set[str]:
        """Delete events at or above a block (reorg rollback only).

        Returns the addresses whose balances the deleted transfers touched.
        """
        doomed = self.db.query(ChainEvent).filter(ChainEvent.block_number >= block_number)
        touched = set()
        for event in doomed.filter(ChainEvent.event_type == EventKind.TRANSFER.value).all():
            touched.update(a for a in (event.from_address, event.to_address) if a)
        doomed.delete(synchronize_session=False)
        return touched
