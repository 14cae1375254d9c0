"""Sync state models: key/value metadata and recorded block hashes."""

from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String, Text

from chainequity_api.db.base import Base


class IndexerMetadata(Base):
    """Key/value indexer state (watermark and friends)."""

    __tablename__ = "indexer_metadata"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class IndexedBlock(Base):
    """Block hash observed when a range was committed, for reorg detection."""

    __tablename__ = "indexed_blocks"

    block_number = Column(BigInteger, primary_key=True)
    block_hash = Column(String(66), nullable=False)
    recorded_at = Column(DateTime, default=datetime.utcnow, nullable=False)
