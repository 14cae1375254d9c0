"""Derived raw balance ledger."""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from chainequity_api.chain.abi import ZERO_ADDRESS, normalize_address
from chainequity_api.errors import InvalidTransferError, LedgerConsistencyError, MalformedEventError
from chainequity_api.ledger.events import EventStore
from chainequity_api.models import Balance

logger = logging.getLogger(__name__)


class BalanceLedger:
    """Raw balance per address, maintained from Transfer events.

    The ledger never commits; the ingestion pipeline owns the transaction so a
    whole block range lands or rolls back together.
    """

    def __init__(self, db: Session):
        """Initialize balance ledger."""
        self.db = db

    def _get(self, address: str) -> Optional[Balance]:
        return self.db.get(Balance, address)

    def _credit(self, address: str, amount: int, block_number: int, timestamp: int):
        row = self._get(address)
        if row is None:
            row = Balance(address=address, balance="0", last_updated_block=block_number,
                          last_updated_timestamp=timestamp)
            self.db.add(row)
        row.balance = str(int(row.balance) + amount)
        row.last_updated_block = block_number
        row.last_updated_timestamp = timestamp
        self.db.flush()

    def _debit(self, address: str, amount: int, block_number: int, timestamp: int):
        row = self._get(address)
        current = int(row.balance) if row else 0
        if current < amount:
            raise LedgerConsistencyError(
                f"Balance underflow for {address} at block {block_number}: "
                f"has {current}, transfer of {amount}"
            )
        if row is None:
            # zero-value transfer from an address the ledger has never credited
            return
        row.balance = str(current - amount)
        row.last_updated_block = block_number
        row.last_updated_timestamp = timestamp
        self.db.flush()

    def apply_transfer(
        self,
        from_address: str,
        to_address: str,
        raw_amount: int,
        block_number: int,
        timestamp: int,
    ):
        """Apply one Transfer: mint when ``from`` is the zero address."""
        if raw_amount is None or raw_amount < 0:
            raise MalformedEventError(f"Transfer amount must be a non-negative integer, got {raw_amount!r}")
        from_address = normalize_address(from_address)
        to_address = normalize_address(to_address)
        if to_address == ZERO_ADDRESS:
            raise InvalidTransferError(f"Transfer to the zero address at block {block_number} (burns are not modeled)")

        if from_address != ZERO_ADDRESS:
            self._debit(from_address, raw_amount, block_number, timestamp)
        self._credit(to_address, raw_amount, block_number, timestamp)

    def balance(self, address: str) -> int:
        """Raw balance of an address (zero if never seen)."""
        row = self._get(normalize_address(address))
        return int(row.balance) if row else 0

    def get(self, address: str) -> Optional[Balance]:
        """Balance row of an address, if any."""
        return self._get(normalize_address(address))

    def all_balances(self) -> list[Balance]:
        """All balance rows, including historical zero-balance holders."""
        return self.db.query(Balance).all()

    def all_balances_above(self, threshold: int = 0, limit: Optional[int] = None) -> list[Balance]:
        """Balances strictly above ``threshold``, raw balance descending then address."""
        rows = [row for row in self.all_balances() if int(row.balance) > threshold]
        # Decimal strings do not sort numerically in SQL
        rows.sort(key=lambda row: (-int(row.balance), row.address))
        return rows[:limit] if limit is not None else rows

    def total_raw_supply(self) -> int:
        """Sum of all raw balances."""
        return sum(int(row.balance) for row in self.all_balances())

    def _replay(self, address: Optional[str] = None) -> dict[str, tuple[int, int, int]]:
        """Net transfer sum per address from the event store: (balance, block, timestamp)."""
        totals: dict[str, tuple[int, int, int]] = {}
        for event in EventStore(self.db).transfers(address=address):
            amount = int(event.amount)
            if event.from_address and event.from_address != ZERO_ADDRESS:
                bal, _, _ = totals.get(event.from_address, (0, 0, 0))
                totals[event.from_address] = (bal - amount, event.block_number, event.block_timestamp)
            if event.to_address:
                bal, _, _ = totals.get(event.to_address, (0, 0, 0))
                totals[event.to_address] = (bal + amount, event.block_number, event.block_timestamp)
        if address is not None:
            return {address: totals[address]} if address in totals else {}
        return totals

    def rebuild_addresses(self, addresses: Iterable[str]) -> int:
        """Recompute balances of the given addresses from the stored Transfer events.

        Used after a reorg rollback; an address no remaining transfer touches
        loses its row. Returns the number of addresses rebuilt.
        """
        count = 0
        for address in sorted({normalize_address(a) for a in addresses}):
            if address == ZERO_ADDRESS:
                continue
            replayed = self._replay(address).get(address)
            row = self._get(address)
            if replayed is None:
                if row is not None:
                    self.db.delete(row)
            else:
                bal, block_number, timestamp = replayed
                if bal < 0:
                    raise LedgerConsistencyError(f"Replayed balance for {address} is negative: {bal}")
                if row is None:
                    row = Balance(address=address)
                    self.db.add(row)
                row.balance = str(bal)
                row.last_updated_block = block_number
                row.last_updated_timestamp = timestamp
            count += 1
        self.db.flush()
        logger.info(f"Rebuilt {count} balances from the event store")
        return count

    def verify_balances(self) -> list[dict]:
        """Compare every stored balance with a full replay; returns mismatches."""
        replayed = {address: bal for address, (bal, _, _) in self._replay().items()}
        stored = {row.address: int(row.balance) for row in self.all_balances()}
        mismatches = []
        for address in sorted(set(replayed) | set(stored)):
            expected = replayed.get(address, 0)
            actual = stored.get(address, 0)
            if expected != actual or expected < 0:
                mismatches.append({"address": address, "stored": str(actual), "replayed": str(expected)})
        return mismatches
