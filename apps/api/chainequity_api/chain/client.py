"""Chain log source: the collaborator interface and its JSON-RPC implementation."""

import logging
from typing import Any, Optional, Protocol

import httpx

from chainequity_api.chain.abi import normalize_address
from chainequity_api.chain.types import BlockHeader, RawLog
from chainequity_api.errors import ChainSourceError

logger = logging.getLogger(__name__)


class ChainLogSource(Protocol):
    """What the ingestion pipeline needs from a chain node."""

    def get_logs(self, from_block: int, to_block: int) -> list[RawLog]:
        ...

    def get_block(self, block_number: int) -> Optional[BlockHeader]:
        ...

    def get_block_hash(self, block_number: int) -> Optional[str]:
        ...

    def get_chain_head(self) -> int:
        ...


class JsonRpcChainSource:
    """Ethereum JSON-RPC client scoped to one token contract."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        timeout_seconds: float = 30,
        client: Optional[httpx.Client] = None,
    ):
        """Initialize RPC client."""
        self.rpc_url = rpc_url
        self.contract_address = normalize_address(contract_address)
        self.client = client or httpx.Client(timeout=timeout_seconds)
        self._request_id = 0

    def _call(self, method: str, params: list) -> Any:
        """Perform one JSON-RPC call; transport and node errors are transient."""
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        try:
            response = self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ChainSourceError(f"{method} failed: {e}") from e

        if body.get("error"):
            error = body["error"]
            raise ChainSourceError(f"{method} returned error {error.get('code')}: {error.get('message')}")
        return body.get("result")

    def get_logs(self, from_block: int, to_block: int) -> list[RawLog]:
        """Fetch all contract logs in the inclusive block range."""
        result = self._call(
            "eth_getLogs",
            [{"address": self.contract_address, "fromBlock": hex(from_block), "toBlock": hex(to_block)}],
        )
        logs = [RawLog.from_rpc(entry) for entry in result or []]
        logger.debug(f"eth_getLogs {from_block}-{to_block}: {len(logs)} logs")
        return logs

    def get_block(self, block_number: int) -> Optional[BlockHeader]:
        """Fetch a block header; ``None`` if the node does not know the block."""
        result = self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not result:
            return None
        return BlockHeader(
            number=int(result["number"], 16),
            hash=result["hash"].lower(),
            timestamp=int(result["timestamp"], 16),
        )

    def get_block_hash(self, block_number: int) -> Optional[str]:
        """Fetch the canonical hash of a block."""
        header = self.get_block(block_number)
        return header.hash if header else None

    def get_chain_head(self) -> int:
        """Fetch the latest block number."""
        return int(self._call("eth_blockNumber", []), 16)

    def close(self):
        """Close the underlying HTTP client."""
        self.client.close()
