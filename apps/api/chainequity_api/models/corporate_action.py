"""Corporate action audit model."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from chainequity_api.db.base import Base


class CorporateAction(Base):
    """Split, symbol and name change history."""

    __tablename__ = "corporate_actions"
    __table_args__ = (
        CheckConstraint(
            "action_type IN ('StockSplit', 'SymbolChange', 'NameChange')",
            name="chk_action_type",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(Integer, ForeignKey("events.id"), nullable=False, unique=True)
    action_type = Column(String(32), nullable=False, index=True)
    block_number = Column(BigInteger, nullable=False, index=True)
    transaction_hash = Column(String(66), nullable=False)
    log_index = Column(Integer, nullable=True)
    # StockSplit: old = ratio applied, new = resulting cumulative multiplier (basis points)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    block_timestamp = Column(BigInteger, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    event = relationship("ChainEvent")
