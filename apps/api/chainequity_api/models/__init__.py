"""Database models - import all models here for Alembic discovery."""

from chainequity_api.models.balance import Balance
from chainequity_api.models.corporate_action import CorporateAction
from chainequity_api.models.event import EVENT_TYPES, ChainEvent
from chainequity_api.models.sync import IndexedBlock, IndexerMetadata

__all__ = [
    "ChainEvent",
    "EVENT_TYPES",
    "Balance",
    "CorporateAction",
    "IndexerMetadata",
    "IndexedBlock",
]
