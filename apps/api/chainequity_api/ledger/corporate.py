"""Corporate action ledger and split multiplier arithmetic."""

import logging
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from chainequity_api.chain.types import EventKind
from chainequity_api.errors import MalformedEventError
from chainequity_api.models import ChainEvent, CorporateAction

logger = logging.getLogger(__name__)

BASIS_POINTS = 10000


class CorporateActionType(str, Enum):
    """Kinds of corporate action."""

    STOCK_SPLIT = "StockSplit"
    SYMBOL_CHANGE = "SymbolChange"
    NAME_CHANGE = "NameChange"


EVENT_TO_ACTION = {
    EventKind.STOCK_SPLIT: CorporateActionType.STOCK_SPLIT,
    EventKind.SYMBOL_CHANGED: CorporateActionType.SYMBOL_CHANGE,
    EventKind.NAME_CHANGED: CorporateActionType.NAME_CHANGE,
}

# payload keys carrying (old, new) for each action
_PAYLOAD_KEYS = {
    CorporateActionType.STOCK_SPLIT: ("multiplier", "newSplitMultiplier"),
    CorporateActionType.SYMBOL_CHANGE: ("oldSymbol", "newSymbol"),
    CorporateActionType.NAME_CHANGE: ("oldName", "newName"),
}


def compound_split(current_multiplier: int, split_ratio: int) -> int:
    """Apply one split to a cumulative multiplier, rounding as the contract does."""
    return current_multiplier * split_ratio // BASIS_POINTS


def to_display(raw_balance: int, multiplier: int) -> int:
    """Scale a raw balance by a basis-point multiplier (integer floor division)."""
    return raw_balance * multiplier // BASIS_POINTS


def _positive_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(f"StockSplit {field} is not an integer: {value!r}") from e
    if number <= 0:
        raise MalformedEventError(f"StockSplit {field} must be positive, got {number}")
    return number


class CorporateActionLedger:
    """Split, symbol and name change history."""

    def __init__(self, db: Session):
        """Initialize corporate action ledger."""
        self.db = db

    def record_action(self, event: ChainEvent) -> CorporateAction:
        """Record the corporate action carried by a stored event.

        Old/new values come straight from the event payload, as reported by
        the chain.
        """
        action_type = EVENT_TO_ACTION.get(EventKind(event.event_type))
        if action_type is None:
            raise ValueError(f"{event.event_type} is not a corporate action")

        old_key, new_key = _PAYLOAD_KEYS[action_type]
        payload = event.payload_json or {}
        if old_key not in payload or new_key not in payload:
            raise MalformedEventError(
                f"{event.event_type} in tx {event.transaction_hash} is missing {old_key}/{new_key}"
            )
        old_value, new_value = payload[old_key], payload[new_key]
        if action_type is CorporateActionType.STOCK_SPLIT:
            old_value = str(_positive_int(old_value, old_key))
            new_value = str(_positive_int(new_value, new_key))
            logger.info(
                f"Stock split at block {event.block_number}: ratio {old_value} bp, "
                f"multiplier now {new_value} bp"
            )

        action = CorporateAction(
            event_id=event.id,
            action_type=action_type.value,
            block_number=event.block_number,
            transaction_hash=event.transaction_hash,
            log_index=event.log_index,
            old_value=str(old_value),
            new_value=str(new_value),
            block_timestamp=event.block_timestamp,
        )
        self.db.add(action)
        self.db.flush()
        return action

    def history(self, action_type: Optional[CorporateActionType] = None, limit: int = 50) -> list[CorporateAction]:
        """Corporate actions, latest first."""
        query = self.db.query(CorporateAction)
        if action_type is not None:
            query = query.filter(CorporateAction.action_type == CorporateActionType(action_type).value)
        return (
            query.order_by(CorporateAction.block_number.desc(), CorporateAction.id.desc())
            .limit(limit)
            .all()
        )

    def splits(self, limit: int = 50) -> list[CorporateAction]:
        """Stock splits, latest first."""
        return self.history(CorporateActionType.STOCK_SPLIT, limit)

    def _splits_ascending(self, up_to_block: Optional[int] = None) -> list[CorporateAction]:
        query = self.db.query(CorporateAction).filter(
            CorporateAction.action_type == CorporateActionType.STOCK_SPLIT.value
        )
        if up_to_block is not None:
            query = query.filter(CorporateAction.block_number <= up_to_block)
        return query.order_by(CorporateAction.block_number.asc(), CorporateAction.id.asc()).all()

    def current_split_multiplier(self, up_to_block: Optional[int] = None) -> int:
        """Cumulative multiplier in basis points, as last reported by the chain."""
        splits = self._splits_ascending(up_to_block)
        return int(splits[-1].new_value) if splits else BASIS_POINTS

    def folded_split_multiplier(self, up_to_block: Optional[int] = None) -> int:
        """Cumulative multiplier recomputed by folding every split ratio in block order."""
        multiplier = BASIS_POINTS
        for split in self._splits_ascending(up_to_block):
            multiplier = compound_split(multiplier, int(split.old_value))
        return multiplier

    def verify_split_chain(self) -> tuple[bool, Optional[str]]:
        """Check that folding the split ratios reproduces every reported multiplier."""
        multiplier = BASIS_POINTS
        for split in self._splits_ascending():
            multiplier = compound_split(multiplier, int(split.old_value))
            if multiplier != int(split.new_value):
                return False, (
                    f"Split at block {split.block_number} (tx {split.transaction_hash}) reports "
                    f"{split.new_value} bp, folded ratios give {multiplier} bp"
                )
        return True, None

    def latest_value(self, action_type: CorporateActionType) -> Optional[str]:
        """Newest value of a symbol/name change, if any."""
        latest = self.history(action_type, limit=1)
        return latest[0].new_value if latest else None

    def delete_from_block(self, block_number: int) -> int:
        """Delete actions at or above a block (reorg rollback only)."""
        return (
            self.db.query(CorporateAction)
            .filter(CorporateAction.block_number >= block_number)
            .delete(synchronize_session=False)
        )
