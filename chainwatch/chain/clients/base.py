"""
Base chain client interface.

Defines the contract that all chain clients must implement, the error
taxonomy they raise, and the decoding of node payloads into
Transaction objects.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from chainwatch.chain.models import Transaction

ADDRESS_LENGTH = 42
ADDRESS_PREFIX = "0x"

_HEX_DIGITS = re.compile(r"[0-9a-fA-F]+")


class ChainError(Exception):
    """Base exception for chain client errors."""

    pass


class InvalidAddress(ChainError):
    """Raised when an address fails syntax validation. Never retried."""

    def __init__(self, address: str):
        super().__init__(f"Invalid address: {address!r}")
        self.address = address


class TransportError(ChainError):
    """Raised when the node cannot be reached or answers with an error."""

    pass


class DecodeError(ChainError):
    """Raised when the node returns a payload that cannot be decoded."""

    pass


def is_valid_address(address: Any) -> bool:
    """Syntactic check only: 42 characters starting with ``0x``."""
    return (
        isinstance(address, str)
        and len(address) == ADDRESS_LENGTH
        and address.startswith(ADDRESS_PREFIX)
    )


def parse_hex_quantity(value: Any, field: str = "quantity") -> int:
    """
    Parse a ``0x``-prefixed big-endian hex string into an int.

    Raises:
        DecodeError: If the prefix is missing or the payload is not hex
    """
    if not isinstance(value, str) or not value.startswith("0x"):
        raise DecodeError(f"{field}: expected 0x-prefixed hex, got {value!r}")
    payload = value[2:]
    if not _HEX_DIGITS.fullmatch(payload):
        raise DecodeError(f"{field}: invalid hex payload {value!r}")
    return int(payload, 16)


def _require_str(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value:
        raise DecodeError(f"transaction.{key}: expected string, got {value!r}")
    return value


def decode_transaction(
    raw: Dict[str, Any], block_timestamp: Optional[str] = None
) -> Transaction:
    """
    Decode one transaction object as returned inside a full block.

    Nodes carry the timestamp on the block rather than on the transaction,
    so ``block_timestamp`` is used when the transaction has none.
    """
    recipient = raw.get("to")
    if recipient is not None and not isinstance(recipient, str):
        raise DecodeError(f"transaction.to: expected string, got {recipient!r}")

    fee = None
    if raw.get("gasPrice") is not None and raw.get("gasUsed") is not None:
        fee = parse_hex_quantity(raw["gasPrice"], "gasPrice") * parse_hex_quantity(
            raw["gasUsed"], "gasUsed"
        )

    return Transaction(
        hash=_require_str(raw, "hash"),
        sender=_require_str(raw, "from"),
        recipient=recipient or None,
        value=parse_hex_quantity(raw.get("value"), "value"),
        block_number=parse_hex_quantity(raw.get("blockNumber"), "blockNumber"),
        timestamp=parse_hex_quantity(
            raw.get("timestamp", block_timestamp), "timestamp"
        ),
        fee=fee,
    )


def select_transactions(block: Any, address: str) -> List[Transaction]:
    """
    Return the transactions in ``block`` sent by or sent to ``address``.

    A transaction with an empty recipient (contract creation) only ever
    matches through its sender.
    """
    if not isinstance(block, dict):
        raise DecodeError(f"block: expected object, got {type(block).__name__}")
    raw_transactions = block.get("transactions")
    if not isinstance(raw_transactions, list):
        raise DecodeError("block.transactions: expected list")

    matched: List[Transaction] = []
    for raw in raw_transactions:
        if not isinstance(raw, dict):
            raise DecodeError("block.transactions: expected full transaction objects")
        sender = raw.get("from")
        recipient = raw.get("to")
        if sender != address and (not recipient or recipient != address):
            continue
        matched.append(decode_transaction(raw, block.get("timestamp")))
    return matched


class BaseChainClient(ABC):
    """
    Abstract base class for chain clients.

    Subclasses supply raw node data; address validation and transaction
    filtering live here so every implementation behaves the same.
    """

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = 10.0):
        """
        Initialize the client.

        Args:
            rpc_url: Node endpoint
            timeout: Request timeout in seconds
        """
        self.rpc_url = rpc_url
        self.timeout = timeout

    @abstractmethod
    async def current_height(self) -> int:
        """
        Return the latest block number.

        Raises:
            TransportError: If the node cannot be queried
            DecodeError: If the answer is malformed
        """
        pass

    @abstractmethod
    async def get_block(self, block_number: int) -> Dict[str, Any]:
        """
        Fetch a block with its full transaction objects.

        Raises:
            TransportError: If the node cannot be queried
            DecodeError: If the answer is malformed or the block is missing
        """
        pass

    @abstractmethod
    async def fetch_balance(self, address: str) -> int:
        """Return the wei balance of an already validated address."""
        pass

    @abstractmethod
    def get_source_name(self) -> str:
        """
        Get the name of this chain source.

        Returns:
            Source identifier (e.g., 'rpc', 'mock')
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the client."""
        return None

    async def transactions_for_address(
        self, address: str, block_number: int
    ) -> List[Transaction]:
        """
        Fetch block ``block_number`` and keep the transactions of ``address``.

        Raises:
            InvalidAddress: If the address fails syntax validation
            TransportError: If the node cannot be queried
            DecodeError: If the block cannot be decoded
        """
        self._require_valid_address(address)
        block = await self.get_block(block_number)
        return select_transactions(block, address)

    async def balance(self, address: str) -> int:
        """
        Return the wei balance of ``address`` at the latest block.

        Raises:
            InvalidAddress: If the address fails syntax validation
            TransportError: If the node cannot be queried
            DecodeError: If the answer is malformed
        """
        self._require_valid_address(address)
        return await self.fetch_balance(address)

    @staticmethod
    def _require_valid_address(address: str) -> None:
        if not is_valid_address(address):
            raise InvalidAddress(address)
