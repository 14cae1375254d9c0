"""Tests for reorg detection and rollback-and-replay."""

from unittest.mock import patch

import pytest

from chainequity_api.errors import ReorgRollbackError
from chainequity_api.ledger.corporate import BASIS_POINTS, CorporateActionLedger
from chainequity_api.ledger.sync_state import SyncState
from chainequity_api.models import Balance, ChainEvent, IndexedBlock
from fakes import ALICE, BOB, CAROL, FakeChain


def _balances(database) -> dict:
    with database.session() as db:
        return {row.address: int(row.balance) for row in db.query(Balance).all()}


def _seed(chain: FakeChain):
    chain.mint(1, ALICE, 1000)
    chain.transfer(5, ALICE, BOB, 100)
    chain.transfer(9, ALICE, BOB, 200)
    chain.mine_to(10)


def test_reorg_replaces_invalidated_blocks(pipeline, chain: FakeChain, database):
    _seed(chain)
    pipeline.ingest_range(0, 10)
    assert _balances(database) == {ALICE: 700, BOB: 300}

    chain.reorg(8)
    chain.transfer(8, ALICE, CAROL, 50)
    chain.transfer(10, ALICE, BOB, 10)
    chain.mine_to(12)

    result = pipeline.ingest_range(11, 12)

    assert result.reorg is not None
    assert result.reorg.diverged_block == 10
    assert result.reorg.common_ancestor == 5
    assert result.from_block == 6
    assert result.watermark == 12
    assert _balances(database) == {ALICE: 840, BOB: 110, CAROL: 50}

    with database.session() as db:
        blocks = sorted(e.block_number for e in db.query(ChainEvent).all())
        assert blocks == [1, 5, 8, 10]
        hashes = {row.block_number: row.block_hash for row in db.query(IndexedBlock).all()}
    for number, block_hash in hashes.items():
        assert block_hash == chain.get_block_hash(number)


def test_no_reorg_when_hashes_match(pipeline, chain: FakeChain):
    _seed(chain)
    pipeline.ingest_range(0, 10)
    chain.mine_to(15)

    result = pipeline.ingest_range(11, 15)

    assert result.reorg is None
    assert result.from_block == 11


def test_reorg_removes_corporate_actions(pipeline, chain: FakeChain, database):
    chain.mint(1, ALICE, 100)
    chain.split(9, 20000, 20000)
    chain.mine_to(10)
    pipeline.ingest_range(0, 10)

    chain.reorg(9)
    chain.mine_to(11)
    pipeline.ingest_range(11, 11)

    with database.session() as db:
        assert CorporateActionLedger(db).current_split_multiplier() == BASIS_POINTS
        assert CorporateActionLedger(db).verify_split_chain() == (True, None)


def test_reorg_below_every_recorded_block_replays_from_start(pipeline, chain: FakeChain, database):
    _seed(chain)
    pipeline.ingest_range(0, 10)

    chain.reorg(0)
    chain.mint(2, CAROL, 7)
    chain.mine_to(11)

    result = pipeline.ingest_range(11, 11)

    assert result.reorg.common_ancestor == -1
    assert result.from_block == 0
    assert _balances(database) == {CAROL: 7}
    assert pipeline.current_watermark() == 11


def test_sync_to_recovers_from_reorg(pipeline, chain: FakeChain, database):
    _seed(chain)
    pipeline.sync_to(batch_size=4)

    chain.reorg(9)
    chain.transfer(9, ALICE, CAROL, 1)
    chain.mine_to(13)
    pipeline.sync_to(batch_size=4)

    assert pipeline.current_watermark() == 13
    assert _balances(database) == {ALICE: 899, BOB: 100, CAROL: 1}


def test_failed_rollback_is_fatal_and_leaves_state(pipeline, chain: FakeChain, database):
    _seed(chain)
    pipeline.ingest_range(0, 10)
    chain.reorg(8)
    chain.mine_to(11)

    with patch(
        "chainequity_api.indexer.pipeline.BalanceLedger.rebuild_addresses",
        side_effect=RuntimeError("disk full"),
    ):
        with pytest.raises(ReorgRollbackError):
            pipeline.ingest_range(11, 11)

    with database.session() as db:
        assert db.query(ChainEvent).count() == 3
        assert SyncState(db).get_watermark() == 10
    assert _balances(database) == {ALICE: 700, BOB: 300}


def test_manual_rollback(pipeline, chain: FakeChain, database):
    _seed(chain)
    pipeline.ingest_range(0, 10)

    reorg = pipeline.rollback_to(4)

    assert reorg.common_ancestor == 4
    assert pipeline.current_watermark() == 4
    assert _balances(database) == {ALICE: 1000}
