"""Chain client implementations."""

from chainwatch.chain.clients.base import (
    BaseChainClient,
    ChainError,
    DecodeError,
    InvalidAddress,
    TransportError,
)
from chainwatch.chain.clients.mock_client import MockChainClient
from chainwatch.chain.clients.rpc_client import JsonRpcChainClient

__all__ = [
    "BaseChainClient",
    "ChainError",
    "DecodeError",
    "InvalidAddress",
    "TransportError",
    "MockChainClient",
    "JsonRpcChainClient",
    "create_chain_client",
]


def create_chain_client(
    client_type: str, rpc_url: str, timeout: float = 10.0
) -> BaseChainClient:
    """Create a chain client by type name ('rpc' or 'mock')."""
    if client_type == "mock":
        return MockChainClient(auto_mine=True)
    return JsonRpcChainClient(rpc_url, timeout=timeout)
