"""Cap table analytics over the derived ledgers."""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from chainequity_api.chain.abi import ZERO_ADDRESS, normalize_address
from chainequity_api.errors import InvalidArgumentError, LedgerConsistencyError, NotFoundError
from chainequity_api.ledger.balances import BalanceLedger
from chainequity_api.ledger.corporate import BASIS_POINTS, CorporateActionLedger, CorporateActionType, to_display
from chainequity_api.ledger.events import EventStore
from chainequity_api.ledger.sync_state import SyncState

logger = logging.getLogger(__name__)

# Ownership buckets by minimum percentage, largest first
DISTRIBUTION_BUCKETS = (
    ("whales", 10.0),
    ("large", 1.0),
    ("medium", 0.1),
    ("small", 0.01),
    ("tiny", 0.0),
)

HHI_LOW = 1500
HHI_MODERATE = 2500


def format_units(value: int, decimals: int = 18) -> str:
    """Render an integer amount with ``decimals`` fractional digits (``1.5``, ``3.0``)."""
    sign = "-" if value < 0 else ""
    whole, fraction = divmod(abs(value), 10 ** decimals)
    digits = str(fraction).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{sign}{whole}.{digits or '0'}"


def concentration_level(hhi: float) -> str:
    """Classify an HHI on the 0-10,000 scale."""
    if hhi < HHI_LOW:
        return "low"
    if hhi < HHI_MODERATE:
        return "moderate"
    return "high"


@dataclass
class HolderEntry:
    """One row of the cap table."""

    address: str
    raw_balance: int
    display_balance: int
    ownership_percentage: float
    last_updated_block: Optional[int] = None
    last_updated_timestamp: Optional[int] = None

    def to_dict(self, decimals: int = 18) -> dict:
        return {
            "address": self.address,
            "balance": str(self.display_balance),
            "balance_formatted": format_units(self.display_balance, decimals),
            "raw_balance": str(self.raw_balance),
            "ownership_percentage": self.ownership_percentage,
            "last_updated_block": self.last_updated_block,
            "last_updated_timestamp": self.last_updated_timestamp,
        }


@dataclass
class CapTable:
    """Holders plus supply metadata as of one block."""

    entries: list[HolderEntry]
    total_raw_supply: int
    total_supply: int
    split_multiplier: int
    block_number: Optional[int] = None
    symbol: Optional[str] = None
    name: Optional[str] = None
    generated_at: int = field(default_factory=lambda: int(time.time()))

    @property
    def holder_count(self) -> int:
        return len(self.entries)

    def to_dict(self, decimals: int = 18) -> dict:
        return {
            "holders": [entry.to_dict(decimals) for entry in self.entries],
            "holder_count": self.holder_count,
            "total_supply": str(self.total_supply),
            "total_supply_formatted": format_units(self.total_supply, decimals),
            "total_raw_supply": str(self.total_raw_supply),
            "split_multiplier": self.split_multiplier,
            "block_number": self.block_number,
            "symbol": self.symbol,
            "name": self.name,
            "generated_at": self.generated_at,
        }


def _build_entries(raw: dict[str, tuple[int, Optional[int], Optional[int]]], multiplier: int) -> tuple[list[HolderEntry], int, int]:
    """Holder entries (display balance desc, address asc) plus raw and display totals."""
    positive = {address: values for address, values in raw.items() if values[0] > 0}
    total_raw = sum(values[0] for values in positive.values())
    total_display = to_display(total_raw, multiplier)

    entries = []
    for address, (raw_balance, block_number, timestamp) in positive.items():
        display = to_display(raw_balance, multiplier)
        # floats only at the presentation step
        percentage = display / total_display * 100 if total_display > 0 else 0.0
        entries.append(
            HolderEntry(
                address=address,
                raw_balance=raw_balance,
                display_balance=display,
                ownership_percentage=percentage,
                last_updated_block=block_number,
                last_updated_timestamp=timestamp,
            )
        )
    entries.sort(key=lambda entry: (-entry.display_balance, entry.address))
    return entries, total_raw, total_display


class CapTableService:
    """Read-only analytics; one instance per read session."""

    def __init__(self, db: Session, decimals: int = 18):
        """Initialize cap table service."""
        self.db = db
        self.decimals = decimals
        self.balances = BalanceLedger(db)
        self.corporate = CorporateActionLedger(db)
        self.events = EventStore(db)

    def watermark(self) -> Optional[int]:
        """Highest block reflected in the ledger."""
        return SyncState(self.db).get_watermark()

    def split_multiplier(self) -> int:
        """Current cumulative split multiplier in basis points."""
        return self.corporate.current_split_multiplier()

    def cap_table(self, limit: Optional[int] = None) -> CapTable:
        """Current cap table from the balance ledger."""
        multiplier = self.split_multiplier()
        raw = {
            row.address: (int(row.balance), row.last_updated_block, row.last_updated_timestamp)
            for row in self.balances.all_balances_above(0)
        }
        entries, total_raw, total_display = _build_entries(raw, multiplier)
        return CapTable(
            entries=entries[:limit] if limit is not None else entries,
            total_raw_supply=total_raw,
            total_supply=total_display,
            split_multiplier=multiplier,
            block_number=self.watermark(),
            symbol=self.corporate.latest_value(CorporateActionType.SYMBOL_CHANGE),
            name=self.corporate.latest_value(CorporateActionType.NAME_CHANGE),
        )

    def holders(self, limit: Optional[int] = None) -> list[HolderEntry]:
        """Holders with a positive balance, largest first."""
        if limit is not None and limit < 0:
            raise InvalidArgumentError("limit must not be negative")
        return self.cap_table(limit).entries

    def top_n(self, n: int) -> list[HolderEntry]:
        """The ``n`` largest holders."""
        if n <= 0:
            raise InvalidArgumentError(f"n must be a positive integer, got {n}")
        return self.holders(n)

    def summary(self) -> dict:
        """Holder count, supply, median/average holding, top-10 share and HHI."""
        table = self.cap_table()
        balances = sorted(entry.display_balance for entry in table.entries)
        count = len(balances)
        if count == 0:
            median = average = 0
        else:
            mid = count // 2
            median = balances[mid] if count % 2 else (balances[mid - 1] + balances[mid]) // 2
            average = table.total_supply // count

        top10 = sum(entry.ownership_percentage for entry in table.entries[:10])
        hhi = sum(entry.ownership_percentage ** 2 for entry in table.entries)
        return {
            "holder_count": count,
            "total_supply": str(table.total_supply),
            "total_supply_formatted": format_units(table.total_supply, self.decimals),
            "median_holding": str(median),
            "average_holding": str(average),
            "top10_concentration": top10,
            "hhi_index": hhi,
            "concentration_level": concentration_level(hhi),
            "split_multiplier": table.split_multiplier,
            "symbol": table.symbol,
            "name": table.name,
            "watermark": table.block_number,
        }

    def holder_detail(self, address: str) -> dict:
        """Balance, ownership, approval status and transfer history of one address.

        History is oldest first. ``delta``/``balance_after`` are in display units
        at the current split multiplier, so replaying the deltas reproduces
        ``balance``; ``raw_delta``/``raw_balance_after`` reproduce ``raw_balance``.
        """
        try:
            address = normalize_address(address)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e

        row = self.balances.get(address)
        if row is None:
            raise NotFoundError(f"No balance recorded for {address}")

        multiplier = self.split_multiplier()
        history = []
        running = 0
        display_running = 0
        for event in self.events.transfers(address=address):
            amount = int(event.amount)
            incoming = event.to_address == address
            outgoing = event.from_address == address and event.from_address != ZERO_ADDRESS
            delta = (amount if incoming else 0) - (amount if outgoing else 0)
            running += delta
            # floor the running balance, not each delta, so the sum matches to_display(raw)
            display_after = to_display(running, multiplier)
            history.append({
                "block_number": event.block_number,
                "transaction_hash": event.transaction_hash,
                "log_index": event.log_index,
                "from_address": event.from_address,
                "to_address": event.to_address,
                "delta": str(display_after - display_running),
                "balance_after": str(display_after),
                "raw_delta": str(delta),
                "raw_balance_after": str(running),
                "timestamp": event.block_timestamp,
            })
            display_running = display_after

        raw_balance = int(row.balance)
        if running != raw_balance:
            raise LedgerConsistencyError(
                f"Transfer history of {address} sums to {running}, ledger holds {raw_balance}"
            )

        display = to_display(raw_balance, multiplier)
        total_display = to_display(self.balances.total_raw_supply(), multiplier)
        return {
            "address": address,
            "balance": str(display),
            "balance_formatted": format_units(display, self.decimals),
            "raw_balance": str(raw_balance),
            "ownership_percentage": display / total_display * 100 if total_display > 0 else 0.0,
            "is_approved": self.events.is_wallet_approved(address),
            "split_multiplier": multiplier,
            "last_updated_block": row.last_updated_block,
            "balance_history": history,
        }

    def overview(self, recent_limit: int = 10) -> dict:
        """Supply, holder count, split multiplier and the latest corporate actions."""
        table = self.cap_table()
        return {
            "total_supply": str(table.total_supply),
            "total_supply_formatted": format_units(table.total_supply, self.decimals),
            "holder_count": table.holder_count,
            "split_multiplier": table.split_multiplier,
            "watermark": table.block_number,
            "recent_activity": [
                {
                    "type": action.action_type,
                    "block_number": action.block_number,
                    "transaction_hash": action.transaction_hash,
                    "old_value": action.old_value,
                    "new_value": action.new_value,
                    "timestamp": action.block_timestamp,
                }
                for action in self.corporate.history(limit=recent_limit)
            ],
        }

    def distribution(self) -> dict:
        """Ownership buckets, Gini coefficient and decentralization score."""
        table = self.cap_table()
        buckets = {name: {"min_percentage": minimum, "count": 0, "total_percentage": 0.0}
                   for name, minimum in DISTRIBUTION_BUCKETS}
        for entry in table.entries:
            for name, minimum in DISTRIBUTION_BUCKETS:
                if entry.ownership_percentage >= minimum:
                    buckets[name]["count"] += 1
                    buckets[name]["total_percentage"] += entry.ownership_percentage
                    break

        count = table.holder_count
        hhi = sum(entry.ownership_percentage ** 2 for entry in table.entries)
        gini = 0.0
        if count and table.total_supply > 0:
            ascending = sorted(entry.display_balance for entry in table.entries)
            weighted = sum((i + 1) * balance for i, balance in enumerate(ascending))
            gini = (2 * weighted) / (count * table.total_supply) - (count + 1) / count

        score = (1 - hhi / 10000) * 100 * (1 - gini) * min(1.0, count / 100)
        return {
            "holder_count": count,
            "buckets": buckets,
            "hhi_index": hhi,
            "concentration_level": concentration_level(hhi),
            "gini_coefficient": gini,
            "decentralization_score": max(0.0, min(100.0, score)),
        }

    def supply(self) -> dict:
        """Raw and display supply, total minted and the split multiplier."""
        multiplier = self.split_multiplier()
        raw_supply = self.balances.total_raw_supply()
        minted = sum(int(event.amount) for event in self.events.transfers() if event.from_address == ZERO_ADDRESS)
        return {
            "raw_supply": str(raw_supply),
            "total_supply": str(to_display(raw_supply, multiplier)),
            "total_supply_formatted": format_units(to_display(raw_supply, multiplier), self.decimals),
            "total_minted": str(minted),
            "split_multiplier": multiplier,
            "split_ratio": multiplier / BASIS_POINTS,
            "decimals": self.decimals,
            "watermark": self.watermark(),
        }

    def snapshot_at(self, block_number: int) -> CapTable:
        """Cap table as it stood after ``block_number``, replayed from Transfer events."""
        watermark = self.watermark()
        if block_number < 0:
            raise InvalidArgumentError("block_number must not be negative")
        if watermark is None or block_number > watermark:
            raise InvalidArgumentError(f"Block {block_number} is beyond the indexed watermark {watermark}")

        raw: dict[str, tuple[int, Optional[int], Optional[int]]] = {}
        for event in self.events.transfers(up_to_block=block_number):
            amount = int(event.amount)
            if event.from_address and event.from_address != ZERO_ADDRESS:
                balance, _, _ = raw.get(event.from_address, (0, None, None))
                raw[event.from_address] = (balance - amount, event.block_number, event.block_timestamp)
            balance, _, _ = raw.get(event.to_address, (0, None, None))
            raw[event.to_address] = (balance + amount, event.block_number, event.block_timestamp)

        multiplier = self.corporate.current_split_multiplier(up_to_block=block_number)
        entries, total_raw, total_display = _build_entries(raw, multiplier)
        logger.debug(f"Snapshot at block {block_number}: {len(entries)} holders")
        return CapTable(
            entries=entries,
            total_raw_supply=total_raw,
            total_supply=total_display,
            split_multiplier=multiplier,
            block_number=block_number,
            symbol=self.corporate.latest_value(CorporateActionType.SYMBOL_CHANGE),
            name=self.corporate.latest_value(CorporateActionType.NAME_CHANGE),
        )
