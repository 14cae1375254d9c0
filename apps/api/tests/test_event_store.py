"""Tests for the append-only event store."""

from chainequity_api.chain.abi import ZERO_ADDRESS
from chainequity_api.chain.types import ClassifiedEvent, EventKind
from chainequity_api.ledger.events import EventStore, RecordResult, event_dedup_key
from fakes import ALICE, BOB, CAROL


def _transfer(block, log_index, from_address, to_address, amount, tx=None):
    return ClassifiedEvent(
        kind=EventKind.TRANSFER,
        block_number=block,
        transaction_hash=tx or f"0x{block:064x}",
        log_index=log_index,
        from_address=from_address,
        to_address=to_address,
        amount=amount,
        payload={"from": from_address, "to": to_address, "value": str(amount)},
    )


def test_record_event_is_idempotent(db):
    store = EventStore(db)
    event = _transfer(1, 0, ZERO_ADDRESS, ALICE, 100)

    status, row = store.record_event(event, block_timestamp=1234)
    again, same_row = store.record_event(event, block_timestamp=9999)

    assert status is RecordResult.INSERTED
    assert again is RecordResult.DUPLICATE
    assert same_row.id == row.id
    assert row.amount == "100"
    assert row.block_timestamp == 1234
    assert len(store.recent_events()) == 1


def test_dedup_key_without_log_index_uses_natural_key():
    a = _transfer(5, None, ALICE, BOB, 10, tx="0xaa")
    b = _transfer(5, None, ALICE, BOB, 10, tx="0xbb")
    c = _transfer(5, None, ALICE, BOB, 11, tx="0xaa")

    assert event_dedup_key(a).startswith("nolog:")
    assert event_dedup_key(a) == event_dedup_key(b)
    assert event_dedup_key(a) != event_dedup_key(c)
    assert event_dedup_key(_transfer(5, 3, ALICE, BOB, 10, tx="0xAA")) == "0xaa:3"


def test_latest_first_queries(db):
    store = EventStore(db)
    store.record_event(_transfer(1, 0, ZERO_ADDRESS, ALICE, 100))
    store.record_event(_transfer(2, 0, ALICE, BOB, 40))
    store.record_event(_transfer(3, 0, ALICE, CAROL, 10))
    store.record_event(ClassifiedEvent(kind=EventKind.WALLET_APPROVED, block_number=3,
                                       transaction_hash="0xfeed", log_index=1, to_address=BOB,
                                       payload={"wallet": BOB}))

    transfers = store.events_by_type(EventKind.TRANSFER)
    assert [e.block_number for e in transfers] == [3, 2, 1]
    assert [e.block_number for e in store.events_by_type(EventKind.TRANSFER, limit=1)] == [3]

    bob_events = store.events_by_address(BOB)
    assert [e.event_type for e in bob_events] == ["WalletApproved", "Transfer"]

    mixed = store.events_by_types([EventKind.WALLET_APPROVED, EventKind.TRANSFER], limit=2)
    assert [(e.block_number, e.event_type) for e in mixed] == [(3, "WalletApproved"), (3, "Transfer")]


def test_block_range_is_ascending_and_inclusive(db):
    store = EventStore(db)
    for block in (1, 2, 3, 4):
        store.record_event(_transfer(block, 0, ZERO_ADDRESS, ALICE, block))

    assert [e.block_number for e in store.events_by_block_range(2, 3)] == [2, 3]
    assert store.events_by_block_range(5, 9) == []


def test_transfers_filters(db):
    store = EventStore(db)
    store.record_event(_transfer(1, 0, ZERO_ADDRESS, ALICE, 100))
    store.record_event(_transfer(2, 0, ALICE, BOB, 40))
    store.record_event(_transfer(3, 0, ZERO_ADDRESS, CAROL, 7))

    assert [e.block_number for e in store.transfers()] == [1, 2, 3]
    assert [e.block_number for e in store.transfers(address=BOB)] == [2]
    assert [e.block_number for e in store.transfers(up_to_block=2)] == [1, 2]


def test_event_counts_include_every_kind(db):
    store = EventStore(db)
    store.record_event(_transfer(1, 0, ZERO_ADDRESS, ALICE, 100))
    counts = store.event_counts()
    assert counts["Transfer"] == 1
    assert counts["StockSplit"] == 0
    assert set(counts) == {kind.value for kind in EventKind}


def test_wallet_approval_follows_latest_event(db):
    store = EventStore(db)
    assert store.is_wallet_approved(ALICE) is False

    store.record_event(ClassifiedEvent(kind=EventKind.WALLET_APPROVED, block_number=1,
                                       transaction_hash="0x01", log_index=0, to_address=ALICE))
    assert store.is_wallet_approved(ALICE) is True

    store.record_event(ClassifiedEvent(kind=EventKind.WALLET_REVOKED, block_number=2,
                                       transaction_hash="0x02", log_index=0, to_address=ALICE))
    assert store.is_wallet_approved(ALICE) is False


def test_delete_from_block_reports_touched_addresses(db):
    store = EventStore(db)
    store.record_event(_transfer(1, 0, ZERO_ADDRESS, ALICE, 100))
    store.record_event(_transfer(5, 0, ALICE, BOB, 40))
    store.record_event(ClassifiedEvent(kind=EventKind.WALLET_APPROVED, block_number=6,
                                       transaction_hash="0x06", log_index=0, to_address=CAROL))

    touched = store.delete_from_block(5)

    assert touched == {ALICE, BOB}
    assert [e.block_number for e in store.recent_events()] == [1]
