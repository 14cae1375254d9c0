"""Persisted sync state: watermark and recorded block hashes."""

from typing import Optional

from sqlalchemy.orm import Session

from chainequity_api.models import IndexedBlock, IndexerMetadata

WATERMARK_KEY = "last_indexed_block"


class SyncState:
    """Watermark and block-hash bookkeeping, inside the caller's transaction."""

    def __init__(self, db: Session):
        """Initialize sync state accessor."""
        self.db = db

    def get_value(self, key: str) -> Optional[str]:
        """Get a metadata value."""
        row = self.db.get(IndexerMetadata, key)
        return row.value if row else None

    def set_value(self, key: str, value: str):
        """Set a metadata value."""
        row = self.db.get(IndexerMetadata, key)
        if row is None:
            self.db.add(IndexerMetadata(key=key, value=value))
        else:
            row.value = value
        self.db.flush()

    def delete_value(self, key: str):
        """Remove a metadata value."""
        row = self.db.get(IndexerMetadata, key)
        if row is not None:
            self.db.delete(row)
            self.db.flush()

    def get_watermark(self) -> Optional[int]:
        """Highest block fully ingested, or ``None`` before the first range."""
        value = self.get_value(WATERMARK_KEY)
        return int(value) if value is not None else None

    def set_watermark(self, block_number: int):
        """Persist the watermark."""
        self.set_value(WATERMARK_KEY, str(block_number))

    def record_block_hash(self, block_number: int, block_hash: str):
        """Remember the hash a block had when it was ingested."""
        row = self.db.get(IndexedBlock, block_number)
        if row is None:
            self.db.add(IndexedBlock(block_number=block_number, block_hash=block_hash.lower()))
        else:
            row.block_hash = block_hash.lower()
        self.db.flush()

    def recorded_hash(self, block_number: int) -> Optional[str]:
        """Hash recorded for a block, if any."""
        row = self.db.get(IndexedBlock, block_number)
        return row.block_hash if row else None

    def recorded_blocks(self, below: int) -> list[IndexedBlock]:
        """Recorded blocks strictly below a block number, newest first."""
        return (
            self.db.query(IndexedBlock)
            .filter(IndexedBlock.block_number < below)
            .order_by(IndexedBlock.block_number.desc())
            .all()
        )

    def delete_block_hashes_above(self, block_number: int) -> int:
        """Forget hashes of blocks strictly above a block number."""
        return (
            self.db.query(IndexedBlock)
            .filter(IndexedBlock.block_number > block_number)
            .delete(synchronize_session=False)
        )
