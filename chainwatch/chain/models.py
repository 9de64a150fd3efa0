"""
Chain data models.

Transactions as stored and delivered by the watcher, plus the JSON-RPC
envelopes exchanged with the node.
"""

from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Transaction(BaseModel):
    """A transaction matched against a watched address.

    Immutable once built; two transactions are the same transaction when
    their hashes are equal. ``recipient`` is None for contract creations.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    hash: str
    sender: str = Field(alias="from")
    recipient: Optional[str] = Field(default=None, alias="to")
    value: int = Field(ge=0, description="Value in wei")
    block_number: int = Field(ge=0, alias="blockNumber")
    timestamp: int = Field(ge=0, description="Unix seconds")
    fee: Optional[int] = Field(default=None, ge=0, description="Fee in wei")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Transaction):
            return NotImplemented
        return self.hash == other.hash

    def __hash__(self) -> int:
        return hash(self.hash)

    def is_contract_creation(self) -> bool:
        return not self.recipient

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict using the node's field names."""
        return self.model_dump(mode="json", by_alias=True)


class RpcRequest(BaseModel):
    """JSON-RPC 2.0 request envelope."""

    jsonrpc: str = "2.0"
    method: str
    params: List[Any] = Field(default_factory=list)
    id: int = 1


class RpcErrorBody(BaseModel):
    """Error member of a JSON-RPC response."""

    code: int
    message: str


class RpcResponse(BaseModel):
    """JSON-RPC 2.0 response envelope."""

    jsonrpc: str = "2.0"
    result: Any = None
    error: Optional[RpcErrorBody] = None
    id: Union[int, str, None] = None
