"""Build indexer components from settings."""

import logging
import threading
from typing import Optional

import redis

from chainequity_api.chain.classifier import EventClassifier
from chainequity_api.chain.client import ChainLogSource, JsonRpcChainSource
from chainequity_api.db.session import Database
from chainequity_api.indexer.pipeline import IngestionPipeline
from chainequity_api.indexer.watcher import LiveWatcher
from chainequity_api.settings import Settings

logger = logging.getLogger(__name__)


def build_chain_source(settings: Settings) -> JsonRpcChainSource:
    """JSON-RPC chain source for the configured token contract."""
    if not settings.rpc_url or not settings.token_contract_address:
        raise ValueError("RPC_URL and TOKEN_CONTRACT_ADDRESS must be set to index a chain")
    return JsonRpcChainSource(
        settings.rpc_url,
        settings.token_contract_address,
        timeout_seconds=settings.rpc_timeout_seconds,
    )


def build_pipeline(
    settings: Settings,
    database: Database,
    chain: Optional[ChainLogSource] = None,
) -> IngestionPipeline:
    """Ingestion pipeline wired to the configured contract."""
    chain = chain or build_chain_source(settings)
    classifier = EventClassifier(contract_address=settings.token_contract_address)
    return IngestionPipeline(database, chain, classifier, start_block=settings.start_block)


def build_writer_lock(settings: Settings):
    """Writer lock: in-process by default, Redis-backed when shared with workers."""
    if settings.writer_lock_backend == "redis":
        client = redis.from_url(settings.redis_url)
        logger.info(f"Using Redis writer lock {settings.writer_lock_name}")
        return client.lock(settings.writer_lock_name, timeout=settings.writer_lock_timeout_seconds)
    return threading.Lock()


def build_watcher(settings: Settings, pipeline: IngestionPipeline) -> LiveWatcher:
    """Live watcher using the configured polling and backoff parameters."""
    return LiveWatcher(
        pipeline,
        poll_interval=settings.poll_interval_seconds,
        max_batch_size=settings.max_batch_size,
        confirmations=settings.confirmations,
        backoff_base=settings.backoff_base_seconds,
        backoff_max=settings.backoff_max_seconds,
        writer_lock=build_writer_lock(settings),
    )
