"""Tests for the derived balance ledger."""

import random

import pytest

from chainequity_api.chain.abi import ZERO_ADDRESS
from chainequity_api.chain.types import ClassifiedEvent, EventKind
from chainequity_api.errors import InvalidTransferError, LedgerConsistencyError, MalformedEventError
from chainequity_api.ledger.balances import BalanceLedger
from chainequity_api.ledger.events import EventStore
from fakes import ALICE, BOB, CAROL, DAVE


def _record_and_apply(db, block, log_index, from_address, to_address, amount):
    EventStore(db).record_event(
        ClassifiedEvent(
            kind=EventKind.TRANSFER,
            block_number=block,
            transaction_hash=f"0x{block:032x}{log_index:032x}",
            log_index=log_index,
            from_address=from_address,
            to_address=to_address,
            amount=amount,
        ),
        block_timestamp=1000 + block,
    )
    BalanceLedger(db).apply_transfer(from_address, to_address, amount, block, 1000 + block)


def test_mint_credits_without_debit(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(ZERO_ADDRESS, ALICE, 1000, 1, 1001)

    assert ledger.balance(ALICE) == 1000
    assert ledger.get(ZERO_ADDRESS) is None
    row = ledger.get(ALICE)
    assert row.last_updated_block == 1
    assert row.last_updated_timestamp == 1001


def test_transfer_moves_balance(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(ZERO_ADDRESS, ALICE, 1000, 1, 1001)
    ledger.apply_transfer(ALICE, BOB, 400, 2, 1002)

    assert ledger.balance(ALICE) == 600
    assert ledger.balance(BOB) == 400
    assert ledger.total_raw_supply() == 1000


def test_unknown_address_has_zero_balance(db):
    assert BalanceLedger(db).balance(CAROL) == 0


def test_underflow_is_fatal(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(ZERO_ADDRESS, ALICE, 10, 1, 1001)
    with pytest.raises(LedgerConsistencyError):
        ledger.apply_transfer(ALICE, BOB, 11, 2, 1002)
    with pytest.raises(LedgerConsistencyError):
        ledger.apply_transfer(CAROL, BOB, 1, 2, 1002)


def test_transfer_to_zero_address_rejected(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(ZERO_ADDRESS, ALICE, 10, 1, 1001)
    with pytest.raises(InvalidTransferError):
        ledger.apply_transfer(ALICE, ZERO_ADDRESS, 5, 2, 1002)
    assert ledger.balance(ALICE) == 10


def test_negative_amount_rejected(db):
    with pytest.raises(MalformedEventError):
        BalanceLedger(db).apply_transfer(ZERO_ADDRESS, ALICE, -1, 1, 1001)


def test_zero_value_transfer_from_unseen_address(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(CAROL, BOB, 0, 1, 1001)
    assert ledger.get(CAROL) is None
    assert ledger.balance(BOB) == 0


def test_zero_balance_holder_is_kept(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(ZERO_ADDRESS, ALICE, 10, 1, 1001)
    ledger.apply_transfer(ALICE, BOB, 10, 2, 1002)

    assert ledger.get(ALICE) is not None
    assert {row.address for row in ledger.all_balances()} == {ALICE, BOB}
    assert [row.address for row in ledger.all_balances_above(0)] == [BOB]


def test_all_balances_above_orders_numerically(db):
    ledger = BalanceLedger(db)
    ledger.apply_transfer(ZERO_ADDRESS, ALICE, 9, 1, 1001)
    ledger.apply_transfer(ZERO_ADDRESS, BOB, 10, 1, 1001)
    ledger.apply_transfer(ZERO_ADDRESS, CAROL, 10, 1, 1001)
    ledger.apply_transfer(ZERO_ADDRESS, DAVE, 100, 1, 1001)

    assert [row.address for row in ledger.all_balances_above(0)] == [DAVE, BOB, CAROL, ALICE]
    assert [row.address for row in ledger.all_balances_above(9, limit=2)] == [DAVE, BOB]


def test_random_transfers_conserve_balances(db):
    """Every balance equals incoming minus outgoing and never goes negative."""
    rng = random.Random(42)
    holders = [ALICE, BOB, CAROL, DAVE]
    expected = {address: 0 for address in holders}
    block = 1
    for index in range(200):
        if index % 5 == 0:
            to_address = rng.choice(holders)
            amount = rng.randint(1, 10**20)
            _record_and_apply(db, block, 0, ZERO_ADDRESS, to_address, amount)
            expected[to_address] += amount
        else:
            from_address = rng.choice([a for a in holders if expected[a] > 0] or holders)
            to_address = rng.choice(holders)
            amount = rng.randint(0, expected[from_address])
            _record_and_apply(db, block, 0, from_address, to_address, amount)
            expected[from_address] -= amount
            expected[to_address] += amount
        block += 1

    ledger = BalanceLedger(db)
    for address in holders:
        assert ledger.balance(address) == expected[address]
        assert ledger.balance(address) >= 0
    assert ledger.verify_balances() == []


def test_rebuild_addresses_replays_store(db):
    _record_and_apply(db, 1, 0, ZERO_ADDRESS, ALICE, 100)
    _record_and_apply(db, 2, 0, ALICE, BOB, 30)
    _record_and_apply(db, 3, 0, ALICE, CAROL, 20)

    EventStore(db).delete_from_block(3)
    rebuilt = BalanceLedger(db).rebuild_addresses([ALICE, CAROL])

    ledger = BalanceLedger(db)
    assert rebuilt == 2
    assert ledger.balance(ALICE) == 70
    assert ledger.get(ALICE).last_updated_block == 2
    assert ledger.get(CAROL) is None
    assert ledger.balance(BOB) == 30


def test_verify_balances_reports_drift(db):
    _record_and_apply(db, 1, 0, ZERO_ADDRESS, ALICE, 100)
    BalanceLedger(db).get(ALICE).balance = "99"
    db.flush()

    assert BalanceLedger(db).verify_balances() == [{"address": ALICE, "stored": "99", "replayed": "100"}]
