"""
Mock chain client for testing and development.

Keeps an in-memory chain of node-shaped blocks so the real decoding and
filtering path runs without a node. Failures can be scripted per call or
simulated at random.
"""

import asyncio
import random
import secrets
import time
from collections import defaultdict
from typing import Any, Dict, List, Optional

from chainwatch.chain.clients.base import (
    BaseChainClient,
    DecodeError,
    TransportError,
)

DEMO_ADDRESSES = [
    "0x97c5abe06209123987392d4489b54b8b213e0dac",
    "0xc15683bc491872ff122a11edb9a2b038f8ba15ad",
    "0x1111111111111111111111111111111111111111",
]


def _random_address() -> str:
    return "0x" + secrets.token_hex(20)


class MockChainClient(BaseChainClient):
    """
    Mock chain client backed by an in-memory chain.

    With ``auto_mine`` every height query mines one block holding a few
    random transfers between the demo addresses, which makes the mock
    usable as a development chain.
    """

    def __init__(
        self,
        height: int = 0,
        failure_rate: float = 0.0,
        latency_ms: int = 0,
        auto_mine: bool = False,
        genesis_timestamp: Optional[int] = None,
    ):
        """
        Initialize mock client.

        Args:
            height: Initial chain height
            failure_rate: Probability of a simulated transport failure (0.0 to 1.0)
            latency_ms: Simulated network latency in milliseconds
            auto_mine: Mine a block of random transfers on each height query
            genesis_timestamp: Timestamp of block 0 (defaults to now)
        """
        super().__init__(rpc_url=None, timeout=0)
        self.height = height
        self.failure_rate = failure_rate
        self.latency_ms = latency_ms
        self.auto_mine = auto_mine
        self.genesis_timestamp = (
            genesis_timestamp if genesis_timestamp is not None else int(time.time())
        )

        self.blocks: Dict[int, Dict[str, Any]] = {}
        self.balances: Dict[str, int] = {}
        self.block_requests: List[int] = []
        self.height_requests = 0

        self._height_failures = 0
        self._block_failures: Dict[int, int] = defaultdict(int)
        self._tx_counter = 0

    def get_source_name(self) -> str:
        """Return source identifier."""
        return "mock"

    # Chain construction

    def set_height(self, height: int) -> None:
        self.height = height

    def set_balance(self, address: str, wei: int) -> None:
        self.balances[address] = wei

    def add_transaction(
        self,
        block_number: int,
        sender: str,
        recipient: Optional[str],
        value: int = 0,
        tx_hash: Optional[str] = None,
        gas_price: Optional[int] = None,
        gas_used: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Append a node-shaped transaction object to ``block_number``."""
        self._tx_counter += 1
        raw: Dict[str, Any] = {
            "hash": tx_hash or "0x" + format(self._tx_counter, "064x"),
            "from": sender,
            "to": recipient,
            "value": hex(value),
            "blockNumber": hex(block_number),
        }
        if gas_price is not None:
            raw["gasPrice"] = hex(gas_price)
        if gas_used is not None:
            raw["gasUsed"] = hex(gas_used)
        self._block(block_number)["transactions"].append(raw)
        return raw

    def put_raw_block(self, block_number: int, block: Any) -> None:
        """Store an arbitrary payload as the block, malformed or not."""
        self.blocks[block_number] = block

    # Failure scripting

    def fail_height(self, times: int = 1) -> None:
        """Make the next ``times`` height queries fail."""
        self._height_failures += times

    def fail_block(self, block_number: int, times: int = 1) -> None:
        """Make the next ``times`` fetches of ``block_number`` fail."""
        self._block_failures[block_number] += times

    # BaseChainClient

    async def current_height(self) -> int:
        await self._simulate_latency()
        self.height_requests += 1
        self._maybe_fail()
        if self._height_failures > 0:
            self._height_failures -= 1
            raise TransportError("Simulated height query failure")
        if self.auto_mine:
            self._mine_random_block()
        return self.height

    async def get_block(self, block_number: int) -> Dict[str, Any]:
        await self._simulate_latency()
        self.block_requests.append(block_number)
        self._maybe_fail()
        if self._block_failures.get(block_number, 0) > 0:
            self._block_failures[block_number] -= 1
            raise TransportError(f"Simulated failure fetching block {block_number}")
        if block_number > self.height:
            raise DecodeError(f"Block {block_number} not available")
        return self._block(block_number)

    async def fetch_balance(self, address: str) -> int:
        await self._simulate_latency()
        self._maybe_fail()
        return self.balances.get(address, 0)

    # Internals

    def _block(self, block_number: int) -> Dict[str, Any]:
        if block_number not in self.blocks:
            self.blocks[block_number] = {
                "number": hex(block_number),
                "timestamp": hex(self.genesis_timestamp + block_number * 12),
                "transactions": [],
            }
        return self.blocks[block_number]

    def _mine_random_block(self) -> None:
        self.height += 1
        for _ in range(random.randint(0, 3)):
            sender = random.choice(DEMO_ADDRESSES + [_random_address()])
            recipient = random.choice(DEMO_ADDRESSES + [_random_address(), None])
            self.add_transaction(
                self.height,
                sender=sender,
                recipient=recipient,
                value=random.randint(1, 5) * 10**17,
                gas_price=random.randint(5, 40) * 10**9,
                gas_used=21_000,
            )

    def _maybe_fail(self) -> None:
        if self.failure_rate and random.random() < self.failure_rate:
            raise TransportError("Simulated node connection failure")

    async def _simulate_latency(self):
        """Simulate network latency."""
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000.0)
