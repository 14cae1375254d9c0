"""Tests for the live watcher."""

import threading
import time
from unittest.mock import MagicMock

import pytest
from redis.exceptions import LockNotOwnedError

from chainequity_api.indexer.watcher import LiveWatcher
from chainequity_api.models import Balance
from fakes import ALICE, BOB, FakeChain


def _wait_for(condition, timeout: float = 5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def _watcher(pipeline, **kwargs) -> LiveWatcher:
    options = {"poll_interval": 0.01, "max_batch_size": 10, "backoff_base": 0.01, "backoff_max": 0.02}
    options.update(kwargs)
    return LiveWatcher(pipeline, **options)


def test_run_once_respects_batch_size(pipeline, chain: FakeChain):
    chain.mint(3, ALICE, 1)
    chain.mine_to(25)
    watcher = _watcher(pipeline)

    first = watcher.run_once()
    second = watcher.run_once()

    assert (first.from_block, first.to_block) == (0, 9)
    assert (second.from_block, second.to_block) == (10, 19)
    assert watcher.chain_head == 25


def test_run_once_waits_for_confirmations(pipeline, chain: FakeChain):
    chain.mine_to(10)
    watcher = _watcher(pipeline, confirmations=3)

    result = watcher.run_once()

    assert result.to_block == 7
    assert watcher.run_once() is None


def test_run_once_returns_none_when_caught_up(pipeline, chain: FakeChain):
    chain.mine_to(4)
    watcher = _watcher(pipeline)
    watcher.run_once()
    assert watcher.run_once() is None
    assert pipeline.current_watermark() == 4


def test_run_once_holds_writer_lock(pipeline, chain: FakeChain):
    chain.mine_to(2)
    lock = MagicMock()
    watcher = _watcher(pipeline, writer_lock=lock)

    watcher.run_once()

    lock.__enter__.assert_called_once()
    lock.__exit__.assert_called_once()


def test_invalid_batch_size_rejected(pipeline):
    with pytest.raises(ValueError):
        LiveWatcher(pipeline, max_batch_size=0)


def test_background_loop_catches_up_and_stops(pipeline, chain: FakeChain, database):
    chain.mint(1, ALICE, 10)
    chain.transfer(14, ALICE, BOB, 4)
    chain.mine_to(24)
    watcher = _watcher(pipeline)

    watcher.start()
    try:
        assert _wait_for(lambda: watcher.chain_head == 24 and watcher.ranges_committed >= 3)
    finally:
        watcher.stop(timeout=5)

    assert not watcher.is_running()
    assert not watcher.halted
    assert pipeline.current_watermark() == 24
    with database.session() as db:
        assert {row.address: row.balance for row in db.query(Balance).all()} == {ALICE: "6", BOB: "4"}


def test_transient_failures_back_off_and_recover(pipeline, chain: FakeChain):
    chain.mint(1, ALICE, 10)
    chain.mine_to(5)
    chain.fail_next_get_logs(2)
    watcher = _watcher(pipeline)

    watcher.start()
    try:
        assert _wait_for(lambda: watcher.ranges_committed >= 1)
    finally:
        watcher.stop(timeout=5)

    assert len(chain.get_logs_calls) >= 3
    assert watcher.consecutive_failures == 0
    assert watcher.last_error is None
    assert pipeline.current_watermark() == 5


def test_stop_waits_for_in_flight_range(pipeline, chain: FakeChain):
    chain.mint(1, ALICE, 10)
    chain.mine_to(5)
    fetching = threading.Event()
    release = threading.Event()
    get_logs = chain.get_logs

    def slow_get_logs(from_block, to_block):
        fetching.set()
        release.wait(5)
        return get_logs(from_block, to_block)

    chain.get_logs = slow_get_logs
    watcher = _watcher(pipeline)
    watcher.start()
    assert fetching.wait(5)

    stopper = threading.Thread(target=watcher.stop)
    stopper.start()
    time.sleep(0.1)
    assert stopper.is_alive()
    assert watcher.is_running()

    release.set()
    stopper.join(5)

    assert not stopper.is_alive()
    assert not watcher.is_running()
    assert pipeline.current_watermark() == 5


def test_expired_writer_lock_is_transient(pipeline, chain: FakeChain):
    chain.mint(1, ALICE, 10)
    chain.mine_to(15)
    exits = []

    def exit_lock(*args):
        exits.append(args)
        if len(exits) == 1:
            raise LockNotOwnedError("Cannot release a lock that is no longer owned")
        return False

    lock = MagicMock()
    lock.__exit__.side_effect = exit_lock
    watcher = _watcher(pipeline, writer_lock=lock)

    watcher.start()
    try:
        assert _wait_for(lambda: watcher.ranges_committed >= 1)
    finally:
        watcher.stop(timeout=5)

    assert not watcher.halted
    assert watcher.consecutive_failures == 0
    assert pipeline.current_watermark() == 15


def test_backoff_delay_is_capped(pipeline):
    watcher = LiveWatcher(pipeline, backoff_base=1.0, backoff_max=8.0)
    delays = []
    for failures in range(1, 7):
        watcher.consecutive_failures = failures
        delays.append(watcher._backoff_delay())
    assert delays == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]


def test_structural_error_halts_watcher(pipeline, chain: FakeChain):
    chain.transfer(2, ALICE, BOB, 5)  # ALICE never received anything
    chain.mine_to(3)
    watcher = _watcher(pipeline)

    watcher.start()
    assert _wait_for(lambda: not watcher.is_running())
    watcher.stop(timeout=5)

    status = watcher.status()
    assert status["halted"] is True
    assert status["running"] is False
    assert "underflow" in status["last_error"]
    assert status["watermark"] is None


def test_stop_is_idempotent_and_status_reports(pipeline, chain: FakeChain):
    watcher = _watcher(pipeline)
    watcher.stop()

    watcher.start()
    assert watcher.is_running()
    watcher.start()  # already running: no second thread
    watcher.stop(timeout=5)
    watcher.stop(timeout=5)

    status = watcher.status()
    assert status["running"] is False
    assert status["max_batch_size"] == 10
    assert status["consecutive_failures"] == 0
