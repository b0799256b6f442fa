"""Webhook endpoints for external services."""

from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError

from teamsync.api.deps import get_database, get_reconciler
from teamsync.billing.models import ProcessedWebhookEvent
from teamsync.billing.reconciler import SubscriptionReconciler
from teamsync.billing.stripe_service import verify_webhook_signature
from teamsync.errors import AuthenticationFailure
from teamsync.logging_config import get_logger
from teamsync.settings import settings
from teamsync.storage.db import Database

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def is_event_processed(database: Database, event_id: str, source: str) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        database: Database to check
        event_id: The unique event ID from the webhook source
        source: The webhook source (e.g., "stripe")

    Returns:
        True if already processed, False otherwise
    """
    with database.session() as session:
        existing = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id,
            ProcessedWebhookEvent.source == source,
        ).first()
        return existing is not None


def mark_event_processed(database: Database, event_id: str, event_type: str, source: str) -> None:
    """Mark a webhook event as processed.

    Args:
        database: Database to write to
        event_id: The unique event ID from the webhook source
        event_type: The type of event (e.g., "customer.subscription.created")
        source: The webhook source (e.g., "stripe")
    """
    try:
        with database.session() as session:
            session.add(ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                source=source,
                processed_at=datetime.utcnow(),
            ))
    except IntegrityError:
        # Parallel delivery already recorded it
        logger.info("webhook_event_already_recorded", event_id=event_id)


def cleanup_old_events(database: Database, days: int = 30) -> int:
    """Remove webhook events older than specified days.

    Args:
        database: Database to clean
        days: Number of days to keep events

    Returns:
        Number of deleted events
    """
    cutoff = datetime.utcnow() - timedelta(days=days)
    with database.session() as session:
        deleted = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.processed_at < cutoff
        ).delete()
        return deleted


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    reconciler: SubscriptionReconciler = Depends(get_reconciler),
    database: Database = Depends(get_database),
):
    """Handle Stripe subscription events.

    Verifies the webhook signature before reading the payload. Event types
    other than subscription created / deleted / updated are acknowledged and
    ignored.
    """
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = verify_webhook_signature(payload, sig_header)
    except AuthenticationFailure as e:
        logger.warning("stripe_webhook_invalid", error=e.message)
        raise

    event_id = event.get("id", "")
    event_type = event.get("type", "")

    if event_id and is_event_processed(database, event_id, "stripe"):
        logger.info("stripe_webhook_duplicate", event_id=event_id)
        return {"received": True, "duplicate": True}

    handled = await reconciler.dispatch(event)

    # Mark as processed AFTER successful handling
    if handled and event_id:
        mark_event_processed(database, event_id, event_type, "stripe")
        logger.info("stripe_webhook_processed", event_id=event_id, event_type=event_type)

    return {"received": True}
