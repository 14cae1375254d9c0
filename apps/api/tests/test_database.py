"""Tests for the database handle."""

import pytest

from chainequity_api.db.session import Database
from chainequity_api.models import Balance
from fakes import ALICE, BOB


@pytest.fixture
def file_database(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}").open()
    database.create_all()
    try:
        yield database
    finally:
        database.close()


def _add_balance(database, address, amount):
    with database.session() as db:
        db.add(Balance(address=address, balance=str(amount), last_updated_block=1, last_updated_timestamp=0))
        db.commit()


def test_read_session_keeps_one_snapshot(file_database):
    _add_balance(file_database, ALICE, 100)

    with file_database.read_session() as reader:
        assert reader.query(Balance).count() == 1
        _add_balance(file_database, BOB, 50)
        assert reader.query(Balance).count() == 1

    with file_database.read_session() as reader:
        assert reader.query(Balance).count() == 2


def test_close_disposes_both_engines(file_database):
    file_database.close()

    assert not file_database.is_open
    with pytest.raises(RuntimeError):
        file_database.read_session()


def test_memory_database_shares_one_engine():
    with Database("sqlite:///:memory:") as database:
        database.create_all()
        _add_balance(database, ALICE, 1)
        with database.read_session() as reader:
            assert reader.get(Balance, ALICE).balance == "1"
