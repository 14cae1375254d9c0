"""Classify raw token logs into ledger events."""

import logging
from typing import Callable, Optional

from chainequity_api.chain.abi import (
    NAME_CHANGED_TOPIC,
    STOCK_SPLIT_TOPIC,
    SYMBOL_CHANGED_TOPIC,
    TRANSFER_BLOCKED_TOPIC,
    TRANSFER_TOPIC,
    WALLET_APPROVED_TOPIC,
    WALLET_REVOKED_TOPIC,
    decode_strings,
    decode_topic_address,
    decode_uint256s,
    normalize_address,
)
from chainequity_api.chain.types import ClassifiedEvent, EventKind, RawLog
from chainequity_api.errors import MalformedEventError

logger = logging.getLogger(__name__)

TOPIC_TO_KIND = {
    TRANSFER_TOPIC: EventKind.TRANSFER,
    WALLET_APPROVED_TOPIC: EventKind.WALLET_APPROVED,
    WALLET_REVOKED_TOPIC: EventKind.WALLET_REVOKED,
    STOCK_SPLIT_TOPIC: EventKind.STOCK_SPLIT,
    SYMBOL_CHANGED_TOPIC: EventKind.SYMBOL_CHANGED,
    NAME_CHANGED_TOPIC: EventKind.NAME_CHANGED,
    TRANSFER_BLOCKED_TOPIC: EventKind.TRANSFER_BLOCKED,
}


class EventClassifier:
    """Pure mapping from a log's topic signature to a decoded token event.

    Unknown signatures (e.g. ERC-20 ``Approval`` or events added in later
    contract versions) yield ``None`` so ingestion carries on.
    """

    def __init__(self, contract_address: Optional[str] = None):
        """Initialize classifier, optionally pinned to one token contract."""
        self.contract_address = normalize_address(contract_address) if contract_address else None
        self._decoders: dict[EventKind, Callable[[RawLog, EventKind], ClassifiedEvent]] = {
            EventKind.TRANSFER: self._decode_transfer,
            EventKind.TRANSFER_BLOCKED: self._decode_transfer,
            EventKind.WALLET_APPROVED: self._decode_wallet,
            EventKind.WALLET_REVOKED: self._decode_wallet,
            EventKind.STOCK_SPLIT: self._decode_split,
            EventKind.SYMBOL_CHANGED: self._decode_rename,
            EventKind.NAME_CHANGED: self._decode_rename,
        }

    def classify(self, log: RawLog) -> Optional[ClassifiedEvent]:
        """Classify one log; returns ``None`` for logs the ledger ignores."""
        if log.removed or not log.topics:
            return None
        if self.contract_address and log.address and log.address.lower() != self.contract_address:
            return None

        kind = TOPIC_TO_KIND.get(log.topics[0].lower())
        if kind is None:
            logger.debug(
                f"Ignoring unknown log topic {log.topics[0]} "
                f"(tx {log.transaction_hash}, log {log.log_index})"
            )
            return None

        try:
            return self._decoders[kind](log, kind)
        except (ValueError, IndexError, UnicodeDecodeError) as e:
            raise MalformedEventError(
                f"Malformed {kind.value} log in tx {log.transaction_hash} "
                f"(block {log.block_number}, log {log.log_index}): {e}"
            ) from e

    def classify_all(self, logs: list[RawLog]) -> list[ClassifiedEvent]:
        """Classify and order events by (block number, log index)."""
        events = [event for event in (self.classify(log) for log in logs) if event is not None]
        events.sort(key=lambda event: event.sort_key)
        return events

    def _base(self, log: RawLog, kind: EventKind, **fields) -> ClassifiedEvent:
        return ClassifiedEvent(
            kind=kind,
            block_number=log.block_number,
            transaction_hash=log.transaction_hash.lower(),
            log_index=log.log_index,
            **fields,
        )

    def _decode_transfer(self, log: RawLog, kind: EventKind) -> ClassifiedEvent:
        from_address = decode_topic_address(log.topics[1])
        to_address = decode_topic_address(log.topics[2])
        (value,) = decode_uint256s(log.data, 1)
        amount_key = "value" if kind is EventKind.TRANSFER else "amount"
        return self._base(
            log,
            kind,
            from_address=from_address,
            to_address=to_address,
            amount=value,
            payload={"from": from_address, "to": to_address, amount_key: str(value)},
        )

    def _decode_wallet(self, log: RawLog, kind: EventKind) -> ClassifiedEvent:
        wallet = decode_topic_address(log.topics[1])
        return self._base(log, kind, to_address=wallet, payload={"wallet": wallet})

    def _decode_split(self, log: RawLog, kind: EventKind) -> ClassifiedEvent:
        multiplier, new_split_multiplier = decode_uint256s(log.data, 2)
        return self._base(
            log,
            kind,
            payload={
                "multiplier": str(multiplier),
                "newSplitMultiplier": str(new_split_multiplier),
            },
        )

    def _decode_rename(self, log: RawLog, kind: EventKind) -> ClassifiedEvent:
        old_value, new_value = decode_strings(log.data, 2)
        if kind is EventKind.SYMBOL_CHANGED:
            payload = {"oldSymbol": old_value, "newSymbol": new_value}
        else:
            payload = {"oldName": old_value, "newName": new_value}
        return self._base(log, kind, payload=payload)
