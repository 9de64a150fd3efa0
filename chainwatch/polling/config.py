"""
Block poller configuration.

Defines settings for the polling period, the per-cycle deadline,
retry policy, HTTP timeouts and notification delivery.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from chainwatch.core.config import Settings, get_settings


class BackoffStrategy(str, Enum):
    """Delay applied between retry attempts."""

    NONE = "none"  # Retry immediately
    FIXED = "fixed"  # Same delay before every retry
    EXPONENTIAL = "exponential"  # initial_delay * exponential_base ** attempt


class RetryConfig(BaseModel):
    """Retry policy for per-address block lookups."""

    max_attempts: int = Field(
        default=3, ge=1, description="Total attempts, including the first"
    )
    strategy: BackoffStrategy = Field(
        default=BackoffStrategy.NONE, description="Delay between attempts"
    )
    initial_delay: float = Field(
        default=0.5, ge=0, description="Delay in seconds for fixed/exponential"
    )
    max_delay: float = Field(default=30.0, gt=0, description="Maximum delay in seconds")
    exponential_base: float = Field(default=2.0, gt=1, description="Backoff multiplier")
    jitter: bool = Field(
        default=False, description="Randomize delays to spread out retries"
    )


class PollerConfig(BaseModel):
    """Main block poller configuration."""

    # Polling behavior
    poll_interval_seconds: float = Field(
        default=15.0, gt=0, description="Seconds between polling cycles"
    )
    cycle_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Soft deadline for a cycle; checked between retry attempts",
    )

    # Chain client settings
    rpc_timeout: float = Field(
        default=10.0, gt=0, description="Node request timeout in seconds"
    )

    # Retry
    retry: RetryConfig = Field(default_factory=RetryConfig)

    # Notifications
    webhook_url: str = Field(
        default="https://example-webhook-url.com/notify",
        description="Sink for match notifications",
    )
    webhook_timeout: float = Field(
        default=10.0, gt=0, description="Webhook request timeout in seconds"
    )
    notify_enabled: bool = Field(default=True, description="Send webhook notifications")

    # Operational settings
    enabled: bool = Field(default=True, description="Enable/disable poller")
    run_on_startup: bool = Field(
        default=False, description="Run a cycle immediately on startup"
    )

    # Metrics
    metrics_history_size: int = Field(
        default=100, ge=1, description="Cycles kept in the metrics history"
    )

    @classmethod
    def from_settings(cls, settings: Settings) -> PollerConfig:
        """Build poller configuration from application settings."""
        return cls(
            poll_interval_seconds=settings.POLL_INTERVAL_SECONDS,
            cycle_timeout_seconds=settings.CYCLE_TIMEOUT_SECONDS,
            rpc_timeout=settings.RPC_TIMEOUT_SECONDS,
            retry=RetryConfig(
                max_attempts=settings.RETRY_MAX_ATTEMPTS,
                strategy=BackoffStrategy(settings.RETRY_BACKOFF),
                initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
                max_delay=settings.RETRY_MAX_DELAY_SECONDS,
            ),
            webhook_url=settings.WEBHOOK_URL,
            webhook_timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
            notify_enabled=settings.NOTIFY_ENABLED,
            enabled=settings.POLLER_ENABLED,
            run_on_startup=settings.POLLER_RUN_ON_STARTUP,
        )


def get_poller_config() -> PollerConfig:
    """Poller configuration derived from the current settings."""
    return PollerConfig.from_settings(get_settings())
