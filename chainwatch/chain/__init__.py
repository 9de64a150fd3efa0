"""
Chain access module.

Queries the node for heights, blocks and balances and decodes the raw
payloads into Transaction objects.
"""

from chainwatch.chain.models import Transaction
from chainwatch.chain.clients.base import BaseChainClient

__all__ = ["Transaction", "BaseChainClient"]
