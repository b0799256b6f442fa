"""Billing webhook bookkeeping models."""

from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String

from teamsync.storage.db import Base


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook events for idempotency.

    Stripe delivers at least once. The handlers are idempotent on their own;
    this table lets repeated deliveries of the same event id skip them.
    """
    __tablename__ = "processed_webhook_events"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)  # e.g., "customer.subscription.created"
    source = Column(String(50), nullable=False)  # e.g., "stripe"
    processed_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"


class CancelledSubscription(Base):
    """Subscriptions Stripe has reported as deleted.

    Written even when no team exists yet, so a created event delivered
    after the deletion cannot open a team for a cancelled subscription.
    """
    __tablename__ = "cancelled_subscriptions"

    id = Column(Integer, primary_key=True)
    stripe_subscription_id = Column(String(255), unique=True, nullable=False, index=True)
    cancelled_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CancelledSubscription(subscription={self.stripe_subscription_id})>"
