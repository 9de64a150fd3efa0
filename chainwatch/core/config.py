from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Values are validated by pydantic-settings; anything not set falls back
    to the defaults below.
    """

    # App basics
    ENV: Literal["development", "staging", "production"] = "development"
    """Environment mode: affects logging output."""

    DEBUG: bool = True
    """Enable debug mode: verbose logging."""

    LOG_LEVEL: Literal["debug", "info", "warning", "error"] = "info"
    """Minimum level for emitted log records."""

    # Chain node
    ETHEREUM_RPC_URL: str = "https://ethereum-rpc.publicnode.com"
    """JSON-RPC endpoint of the chain node."""

    CHAIN_CLIENT_TYPE: Literal["rpc", "mock"] = "rpc"
    """Chain client implementation: a real node or the in-memory mock chain."""

    # Notifications
    WEBHOOK_URL: str = "https://example-webhook-url.com/notify"
    """Sink that receives one POST per matched transaction."""

    # HTTP front-end
    HTTP_PORT: int = 8060
    """Port the HTTP front-end listens on."""

    POLLER_AUTOSTART: bool = True
    """Start the block poller together with the HTTP front-end."""

    # Block poller
    POLL_INTERVAL_SECONDS: float = 15.0
    """Seconds between polling cycles."""

    CYCLE_TIMEOUT_SECONDS: float = 10.0
    """Soft deadline for one cycle; no retry starts after it passes."""

    RPC_TIMEOUT_SECONDS: float = 10.0
    """Timeout of a single node request."""

    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    """Timeout of a single webhook delivery."""

    NOTIFY_ENABLED: bool = True
    """Post matches to WEBHOOK_URL; when false matches are only stored."""

    POLLER_ENABLED: bool = True
    """Run cycles on the timer; manual polls still work when false."""

    POLLER_RUN_ON_STARTUP: bool = False
    """Run one cycle as soon as the poller starts."""

    RETRY_MAX_ATTEMPTS: int = 3
    """Attempts per address and block lookup, including the first."""

    RETRY_BACKOFF: Literal["none", "fixed", "exponential"] = "none"
    """Delay strategy between lookup attempts."""

    RETRY_INITIAL_DELAY_SECONDS: float = 0.5
    """First delay for fixed and exponential backoff."""

    RETRY_MAX_DELAY_SECONDS: float = 30.0
    """Upper bound for a single backoff delay."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance to avoid re-parsing .env repeatedly."""
    return Settings()
