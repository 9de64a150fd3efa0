"""Outbound notifications for matched transactions."""

from chainwatch.notifications.webhook import DeliveryError, WebhookNotifier

__all__ = ["DeliveryError", "WebhookNotifier"]
