"""Subscription management."""

from chainwatch.subscriptions.registry import SubscriptionRegistry

__all__ = ["SubscriptionRegistry"]
