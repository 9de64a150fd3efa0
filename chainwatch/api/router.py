"""
Watcher API routes.

Thin HTTP layer over the subscription registry, the transaction store,
the chain client and the block poller.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
import structlog

from chainwatch.chain.clients.base import BaseChainClient, ChainError, InvalidAddress
from chainwatch.polling.poller import BlockPoller
from chainwatch.storage.memory import TransactionStore
from chainwatch.subscriptions.registry import SubscriptionRegistry

logger = structlog.get_logger()

router = APIRouter(tags=["watcher"])


class SubscribeRequest(BaseModel):
    """Body for subscribe requests."""

    address: str = Field(min_length=1)


class SubscribeResponse(BaseModel):
    success: bool


class CurrentBlockResponse(BaseModel):
    block: int


class BalanceResponse(BaseModel):
    address: str
    balance: str = Field(description="Wei, as a decimal string")


class PollTriggerResponse(BaseModel):
    """Response for manual poll trigger."""

    run_id: Optional[str]
    status: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


def get_registry(request: Request) -> SubscriptionRegistry:
    return request.app.state.registry


def get_store(request: Request) -> TransactionStore:
    return request.app.state.store


def get_chain_client(request: Request) -> BaseChainClient:
    return request.app.state.chain_client


def get_block_poller(request: Request) -> BlockPoller:
    return request.app.state.poller


@router.post("/subscribe", response_model=SubscribeResponse)
def subscribe(
    body: SubscribeRequest, registry: SubscriptionRegistry = Depends(get_registry)
):
    """Watch an address. ``success`` is false if it was already watched."""
    return SubscribeResponse(success=registry.subscribe(body.address))


@router.get("/transactions")
def list_transactions(
    address: Optional[str] = None, store: TransactionStore = Depends(get_store)
) -> List[Dict[str, Any]]:
    """Transactions stored for an address, in discovery order."""
    if not address:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="address is required"
        )
    return [tx.to_payload() for tx in store.list(address)]


@router.get("/current-block", response_model=CurrentBlockResponse)
async def current_block(client: BaseChainClient = Depends(get_chain_client)):
    """Latest block number reported by the node."""
    try:
        height = await client.current_height()
    except ChainError as e:
        logger.error("api.current_block_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Chain node error: {e}",
        )
    return CurrentBlockResponse(block=height)


@router.get("/balance", response_model=BalanceResponse)
async def balance(
    address: Optional[str] = None,
    client: BaseChainClient = Depends(get_chain_client),
):
    """Wei balance of an address at the latest block."""
    if not address:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="address is required"
        )
    try:
        wei = await client.balance(address)
    except InvalidAddress as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ChainError as e:
        logger.error("api.balance_failed", address=address, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Chain node error: {e}",
        )
    return BalanceResponse(address=address, balance=str(wei))


@router.get("/poller/status")
async def poller_status(poller: BlockPoller = Depends(get_block_poller)):
    """Poller state, cursor and recent cycle metrics."""
    return poller.get_status()


@router.get("/poller/metrics")
async def poller_metrics(
    hours: Optional[int] = None, poller: BlockPoller = Depends(get_block_poller)
):
    """
    Aggregate metrics for polling cycles.

    Args:
        hours: Limit to last N hours (omit for all history)
    """
    return poller.get_metrics(hours=hours)


@router.post("/poller/poll", response_model=PollTriggerResponse)
async def trigger_poll(poller: BlockPoller = Depends(get_block_poller)):
    """
    Manually trigger a polling cycle.

    Runs one cycle immediately, regardless of the configured interval.
    Skipped if a cycle is already running.
    """
    result = await poller.poll_once()
    return PollTriggerResponse(
        run_id=result.get("run_id"),
        status=result["status"],
        message=f"Poll {result['status']}",
        details=result,
    )
