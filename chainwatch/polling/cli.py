"""
Block poller CLI commands.

Provides a command-line interface for querying the node, running
polling cycles by hand and running the watcher continuously.
"""

import asyncio
import sys
from typing import List, Optional
import structlog
import uvicorn

from chainwatch.chain.clients import BaseChainClient, ChainError, create_chain_client
from chainwatch.core.config import get_settings
from chainwatch.core.logging import configure_logging
from chainwatch.polling.config import get_poller_config
from chainwatch.polling.poller import BlockPoller
from chainwatch.storage.memory import TransactionStore
from chainwatch.subscriptions.registry import SubscriptionRegistry

logger = structlog.get_logger()


def print_cycle(result: dict):
    """Pretty print one cycle result."""
    print(f"Run ID: {result.get('run_id')}")
    print(f"Status: {result['status']}")
    print(f"Chain height: {result.get('chain_height')}")
    print(f"Cursor: {result.get('cursor_before')} -> {result.get('cursor')}")
    print(f"Blocks: {result.get('blocks_processed', 0)}")
    print(f"Matched: {result.get('transactions_matched', 0)}")
    if result.get("lookup_failures"):
        print(f"Lookup failures: {result['lookup_failures']}")
    if result.get("notification_failures"):
        print(f"Notification failures: {result['notification_failures']}")
    print(f"Duration: {result.get('duration_seconds', 0):.2f}s")


def _client() -> BaseChainClient:
    settings = get_settings()
    return create_chain_client(
        settings.CHAIN_CLIENT_TYPE,
        settings.ETHEREUM_RPC_URL,
        get_poller_config().rpc_timeout,
    )


def _poller(client: BaseChainClient, addresses: List[str]) -> BlockPoller:
    registry = SubscriptionRegistry(addresses)
    return BlockPoller(client, registry, TransactionStore(), config=get_poller_config())


async def height_command():
    """Print the latest block number."""
    client = _client()
    try:
        print(await client.current_height())
        return 0
    except ChainError as e:
        print(f"Height query failed: {e}")
        return 1
    finally:
        await client.aclose()


async def balance_command(address: str):
    """Print the wei balance of an address."""
    client = _client()
    try:
        print(await client.balance(address))
        return 0
    except ChainError as e:
        print(f"Balance query failed: {e}")
        return 1
    finally:
        await client.aclose()


async def poll_command(addresses: List[str]):
    """
    Run one scanning cycle for the given addresses.

    The first cycle only records the current height, so two cycles are run
    and the second one scans whatever was mined in between.
    """
    client = _client()
    poller = _poller(client, addresses)
    try:
        print("Initializing cursor...")
        first = await poller.poll_once()
        if first["status"] == "failed":
            print("\nPoll failed: could not read chain height")
            return 1

        await asyncio.sleep(poller.config.poll_interval_seconds)
        result = await poller.poll_once()
        print("\nPoll completed!")
        print_cycle(result)

        for address in addresses:
            for tx in poller.store.list(address):
                print(f"  {address}: {tx.hash} block={tx.block_number} value={tx.value}")
        return 0 if result["status"] != "failed" else 1
    finally:
        await poller.notifier.aclose()
        await client.aclose()


async def run_command(addresses: List[str]):
    """Run the poller continuously."""
    config = get_poller_config()
    print("Starting block poller...")
    print(f"Poll interval: {config.poll_interval_seconds} seconds")
    print(f"Watching: {', '.join(addresses) if addresses else '(nothing yet)'}")
    print("Press Ctrl+C to stop\n")

    client = _client()
    poller = _poller(client, addresses)

    try:
        await poller.start()
        while True:
            await asyncio.sleep(1)
    finally:
        print("\nShutting down...")
        await poller.stop()
        await poller.notifier.aclose()
        await client.aclose()
        print("Poller stopped.")


def serve_command(port: Optional[int] = None):
    """Run the HTTP front-end with the poller attached."""
    settings = get_settings()
    uvicorn.run("chainwatch.main:app", host="0.0.0.0", port=port or settings.HTTP_PORT)
    return 0


def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print("Usage: python -m chainwatch.polling.cli <command> [options]")
        print("\nCommands:")
        print("  height              Show the latest block number")
        print("  balance <address>   Show the wei balance of an address")
        print("  poll <address>...   Run one scanning cycle for the addresses")
        print("  run [address...]    Run the poller continuously")
        print("  serve [port]        Run the HTTP API with the poller")
        print("\nExamples:")
        print("  python -m chainwatch.polling.cli height")
        print("  python -m chainwatch.polling.cli run 0x97c5aBe06209123987392D4489b54B8b213E0Dac")
        return 1

    settings = get_settings()
    configure_logging(settings.ENV, settings.LOG_LEVEL)

    command = sys.argv[1]
    args = sys.argv[2:]

    try:
        if command == "height":
            return asyncio.run(height_command())
        elif command == "balance":
            if not args:
                print("balance requires an address")
                return 1
            return asyncio.run(balance_command(args[0]))
        elif command == "poll":
            return asyncio.run(poll_command(args))
        elif command == "run":
            return asyncio.run(run_command(args))
        elif command == "serve":
            return serve_command(int(args[0]) if args else None)
        else:
            print(f"Unknown command: {command}")
            return 1
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130
    except Exception as e:
        print(f"Error: {str(e)}")
        logger.exception("cli_error", command=command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
