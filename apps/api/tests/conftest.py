"""Pytest configuration and fixtures."""

import os

import pytest

from chainequity_api.chain.classifier import EventClassifier
from chainequity_api.db.session import Database
from chainequity_api.indexer.pipeline import IngestionPipeline
from fakes import CONTRACT, FakeChain

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")


@pytest.fixture(scope="function")
def database():
    """
    Open a database handle with a fresh schema.

    For integration tests, point TEST_DATABASE_URL at a real PostgreSQL
    instance.
    """
    database = Database(TEST_DATABASE_URL).open()
    database.create_all()
    try:
        yield database
    finally:
        database.drop_all()
        database.close()


@pytest.fixture
def db(database):
    """A session for tests that drive the ledgers directly."""
    session = database.session()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def pipeline(database, chain) -> IngestionPipeline:
    return IngestionPipeline(database, chain, EventClassifier(contract_address=CONTRACT), start_block=0)
