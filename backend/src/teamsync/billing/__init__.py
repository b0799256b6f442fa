"""Billing: Stripe webhook verification and subscription reconciliation."""

from teamsync.billing.models import CancelledSubscription, ProcessedWebhookEvent
from teamsync.billing.reconciler import SubscriptionReconciler

__all__ = ["CancelledSubscription", "ProcessedWebhookEvent", "SubscriptionReconciler"]
