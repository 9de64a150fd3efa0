from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI

from chainwatch.api.router import router as watcher_router
from chainwatch.chain.clients import BaseChainClient, create_chain_client
from chainwatch.core.config import Settings, get_settings
from chainwatch.core.logging import configure_logging, request_id_middleware
from chainwatch.notifications.webhook import WebhookNotifier
from chainwatch.polling.config import PollerConfig
from chainwatch.polling.poller import BlockPoller
from chainwatch.storage.memory import TransactionStore
from chainwatch.subscriptions.registry import SubscriptionRegistry

logger = structlog.get_logger()


def create_app(
    settings: Optional[Settings] = None,
    chain_client: Optional[BaseChainClient] = None,
    notifier: Optional[WebhookNotifier] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Registry, store, client, notifier and poller are created once in the
    lifespan and shared through ``app.state``.
    """
    settings = settings or get_settings()
    configure_logging(settings.ENV, settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = PollerConfig.from_settings(settings)
        client = chain_client or create_chain_client(
            settings.CHAIN_CLIENT_TYPE, settings.ETHEREUM_RPC_URL, config.rpc_timeout
        )
        sink = notifier or WebhookNotifier(timeout=config.webhook_timeout)
        registry = SubscriptionRegistry()
        store = TransactionStore()
        poller = BlockPoller(client, registry, store, notifier=sink, config=config)

        app.state.chain_client = client
        app.state.registry = registry
        app.state.store = store
        app.state.poller = poller

        logger.info(
            "app.starting",
            env=settings.ENV,
            rpc_url=settings.ETHEREUM_RPC_URL,
            client_type=client.get_source_name(),
            http_port=settings.HTTP_PORT,
        )

        if settings.POLLER_AUTOSTART:
            await poller.start()

        yield

        logger.info("app.stopping")
        await poller.stop()
        if notifier is None:
            await sink.aclose()
        if chain_client is None:
            await client.aclose()
        logger.info("app.stopped")

    app = FastAPI(title="chainwatch", version="0.1.0", lifespan=lifespan)
    app.middleware("http")(request_id_middleware)
    app.include_router(watcher_router)

    @app.get("/healthz")
    def healthz():
        return {"status": "healthy", "env": settings.ENV}

    return app


app = create_app()
