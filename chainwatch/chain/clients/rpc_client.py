"""
JSON-RPC chain client.

Talks to an Ethereum-compatible node over HTTP using httpx.
"""

import itertools
import time
from typing import Any, Dict, List, Optional

import httpx
import structlog
from pydantic import ValidationError

from chainwatch.chain.clients.base import (
    BaseChainClient,
    DecodeError,
    TransportError,
    parse_hex_quantity,
)
from chainwatch.chain.models import RpcRequest, RpcResponse

logger = structlog.get_logger()


class JsonRpcChainClient(BaseChainClient):
    """
    Chain client backed by a JSON-RPC node.

    Every malformed or error-carrying response is a hard failure of that
    single call; retrying is left to the caller.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            rpc_url: Node JSON-RPC endpoint
            timeout: Request timeout in seconds
            http_client: Optional preconfigured httpx client (used by tests)
        """
        if not rpc_url:
            raise ValueError("RPC URL cannot be empty")
        super().__init__(rpc_url, timeout)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    def get_source_name(self) -> str:
        """Return source identifier."""
        return "rpc"

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def current_height(self) -> int:
        result = await self._call("eth_blockNumber", [])
        return parse_hex_quantity(result, "blockNumber")

    async def get_block(self, block_number: int) -> Dict[str, Any]:
        result = await self._call("eth_getBlockByNumber", [hex(block_number), True])
        if result is None:
            raise DecodeError(f"Block {block_number} not available")
        if not isinstance(result, dict):
            raise DecodeError(f"Block {block_number}: expected object")
        return result

    async def fetch_balance(self, address: str) -> int:
        result = await self._call("eth_getBalance", [address, "latest"])
        return parse_hex_quantity(result, "balance")

    async def _call(self, method: str, params: List[Any]) -> Any:
        """
        Send one JSON-RPC request and return its ``result`` member.

        Raises:
            TransportError: On network failure, HTTP error status or RPC error
            DecodeError: If the body is not a JSON-RPC response
        """
        request = RpcRequest(method=method, params=params, id=next(self._ids))
        started = time.perf_counter()

        try:
            response = await self._http.post(
                self.rpc_url,
                json=request.model_dump(),
                headers={"Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method}: {type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise TransportError(f"{method}: HTTP {response.status_code}")

        try:
            envelope = RpcResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DecodeError(f"{method}: malformed JSON-RPC response") from e

        if envelope.error is not None:
            raise TransportError(
                f"{method}: RPC error {envelope.error.code}: {envelope.error.message}"
            )

        logger.debug(
            "rpc.call",
            method=method,
            request_id=request.id,
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return envelope.result
