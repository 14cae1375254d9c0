"""Chain-facing data types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventKind(str, Enum):
    """Token events the ledger understands."""

    TRANSFER = "Transfer"
    WALLET_APPROVED = "WalletApproved"
    WALLET_REVOKED = "WalletRevoked"
    STOCK_SPLIT = "StockSplit"
    SYMBOL_CHANGED = "SymbolChanged"
    NAME_CHANGED = "NameChanged"
    TRANSFER_BLOCKED = "TransferBlocked"


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16) if str(value).startswith("0x") else int(value)


@dataclass
class RawLog:
    """Standard event-log fields as returned by ``eth_getLogs``."""

    address: str
    topics: list[str]
    data: str
    block_number: int
    transaction_hash: str
    log_index: Optional[int] = None
    block_hash: Optional[str] = None
    removed: bool = False

    @classmethod
    def from_rpc(cls, entry: dict) -> "RawLog":
        """Build from a JSON-RPC log object (hex quantities)."""
        return cls(
            address=(entry.get("address") or "").lower(),
            topics=[t.lower() for t in entry.get("topics") or []],
            data=entry.get("data") or "0x",
            block_number=_to_int(entry["blockNumber"]),
            transaction_hash=entry["transactionHash"].lower(),
            log_index=_to_int(entry.get("logIndex")),
            block_hash=(entry.get("blockHash") or None),
            removed=bool(entry.get("removed", False)),
        )


@dataclass
class BlockHeader:
    """The parts of a block header the indexer needs."""

    number: int
    hash: str
    timestamp: int


@dataclass
class ClassifiedEvent:
    """A decoded token event, ready for the ledger."""

    kind: EventKind
    block_number: int
    transaction_hash: str
    log_index: Optional[int] = None
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    amount: Optional[int] = None
    payload: dict = field(default_factory=dict)

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.block_number, self.log_index if self.log_index is not None else -1)
