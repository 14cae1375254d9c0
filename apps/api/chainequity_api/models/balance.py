"""Derived balance model."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String

from chainequity_api.db.base import Base


class Balance(Base):
    """Current raw (pre-split-multiplier) balance per address."""

    __tablename__ = "balances"

    address = Column(String(42), primary_key=True)
    balance = Column(String(78), nullable=False, default="0")  # uint256 as decimal string
    last_updated_block = Column(BigInteger, nullable=False, index=True)
    last_updated_timestamp = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def raw_balance(self) -> int:
        return int(self.balance)
