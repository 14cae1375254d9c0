"""Tests for corporate actions and split multiplier arithmetic."""

import pytest

from chainequity_api.chain.types import ClassifiedEvent, EventKind
from chainequity_api.errors import MalformedEventError
from chainequity_api.ledger.corporate import (
    BASIS_POINTS,
    CorporateActionLedger,
    CorporateActionType,
    compound_split,
    to_display,
)
from chainequity_api.ledger.events import EventStore

_log_index = iter(range(10_000))


def _store(db, kind, block, payload):
    _, row = EventStore(db).record_event(
        ClassifiedEvent(
            kind=kind,
            block_number=block,
            transaction_hash=f"0x{block:064x}",
            log_index=next(_log_index),
            payload=payload,
        ),
        block_timestamp=5000 + block,
    )
    return row


def _split(db, block, ratio, new_multiplier):
    row = _store(db, EventKind.STOCK_SPLIT, block, {"multiplier": str(ratio), "newSplitMultiplier": str(new_multiplier)})
    return CorporateActionLedger(db).record_action(row)


def test_compound_split_matches_contract_rounding():
    assert compound_split(BASIS_POINTS, 20000) == 20000
    assert compound_split(20000, 15000) == 30000
    assert compound_split(10000, 3333) == 3333
    assert compound_split(3333, 3333) == 1110


def test_to_display_uses_integer_floor():
    assert to_display(600, 20000) == 1200
    assert to_display(1, 15000) == 1
    huge = 10**30 + 7
    assert to_display(huge, 30000) == huge * 3


def test_default_multiplier_is_one(db):
    ledger = CorporateActionLedger(db)
    assert ledger.current_split_multiplier() == BASIS_POINTS
    assert ledger.folded_split_multiplier() == BASIS_POINTS
    assert ledger.verify_split_chain() == (True, None)


def test_split_values_come_from_payload(db):
    action = _split(db, 10, 20000, 20000)

    assert action.action_type == "StockSplit"
    assert action.old_value == "20000"
    assert action.new_value == "20000"
    assert action.block_timestamp == 5010


def test_compounding_splits(db):
    _split(db, 10, 20000, 20000)
    _split(db, 20, 15000, 30000)
    ledger = CorporateActionLedger(db)

    assert ledger.current_split_multiplier() == 30000
    assert ledger.folded_split_multiplier() == 30000
    assert ledger.current_split_multiplier(up_to_block=15) == 20000
    assert ledger.current_split_multiplier(up_to_block=5) == BASIS_POINTS
    assert ledger.verify_split_chain() == (True, None)
    assert [s.block_number for s in ledger.splits()] == [20, 10]


def test_split_chain_drift_detected(db):
    _split(db, 10, 20000, 20000)
    _split(db, 20, 15000, 40000)

    ok, problem = CorporateActionLedger(db).verify_split_chain()
    assert ok is False
    assert "block 20" in problem


@pytest.mark.parametrize("payload", [
    {"multiplier": "0", "newSplitMultiplier": "10000"},
    {"multiplier": "20000", "newSplitMultiplier": "-1"},
    {"multiplier": "abc", "newSplitMultiplier": "10000"},
    {"multiplier": "20000"},
])
def test_invalid_split_payload_rejected(db, payload):
    row = _store(db, EventKind.STOCK_SPLIT, 3, payload)
    with pytest.raises(MalformedEventError):
        CorporateActionLedger(db).record_action(row)


def test_symbol_and_name_history(db):
    ledger = CorporateActionLedger(db)
    ledger.record_action(_store(db, EventKind.SYMBOL_CHANGED, 1, {"oldSymbol": "", "newSymbol": "CEQ"}))
    ledger.record_action(_store(db, EventKind.SYMBOL_CHANGED, 4, {"oldSymbol": "CEQ", "newSymbol": "CEQX"}))
    ledger.record_action(_store(db, EventKind.NAME_CHANGED, 2, {"oldName": "", "newName": "ChainEquity"}))

    assert ledger.latest_value(CorporateActionType.SYMBOL_CHANGE) == "CEQX"
    assert ledger.latest_value(CorporateActionType.NAME_CHANGE) == "ChainEquity"
    history = ledger.history()
    assert [(a.action_type, a.block_number) for a in history] == [
        ("SymbolChange", 4),
        ("NameChange", 2),
        ("SymbolChange", 1),
    ]
    assert [a.old_value for a in ledger.history(CorporateActionType.SYMBOL_CHANGE)] == ["CEQ", ""]


def test_non_corporate_event_rejected(db):
    row = _store(db, EventKind.WALLET_APPROVED, 1, {"wallet": "0x" + "11" * 20})
    with pytest.raises(ValueError):
        CorporateActionLedger(db).record_action(row)


def test_delete_from_block(db):
    _split(db, 10, 20000, 20000)
    _split(db, 20, 15000, 30000)
    ledger = CorporateActionLedger(db)

    assert ledger.delete_from_block(15) == 1
    assert ledger.current_split_multiplier() == 20000
