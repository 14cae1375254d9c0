"""Chain event journal model."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Integer, JSON, String, UniqueConstraint

from chainequity_api.db.base import Base

EVENT_TYPES = (
    "Transfer",
    "WalletApproved",
    "WalletRevoked",
    "StockSplit",
    "SymbolChanged",
    "NameChanged",
    "TransferBlocked",
)


class ChainEvent(Base):
    """Append-only record of a classified token event log."""

    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index", name="uq_events_tx_log_index"),
        CheckConstraint(
            "event_type IN (" + ", ".join(f"'{t}'" for t in EVENT_TYPES) + ")",
            name="chk_event_type",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    # "<tx>:<log_index>", or a digest of the natural key when the log index is unknown
    dedup_key = Column(String(255), nullable=False, unique=True, index=True)
    block_number = Column(BigInteger, nullable=False, index=True)
    transaction_hash = Column(String(66), nullable=False, index=True)
    log_index = Column(Integer, nullable=True)
    event_type = Column(String(32), nullable=False, index=True)
    from_address = Column(String(42), nullable=True, index=True)
    to_address = Column(String(42), nullable=True, index=True)
    amount = Column(String(78), nullable=True)  # uint256 as decimal string
    payload_json = Column(JSON, nullable=True)
    block_timestamp = Column(BigInteger, nullable=False, index=True)  # unix seconds
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
