"""Stripe integration: webhook verification and customer lookup."""

from typing import Any

import stripe

from teamsync.errors import AuthenticationFailure, UpstreamUnavailable
from teamsync.logging_config import get_logger
from teamsync.settings import settings

logger = get_logger(__name__)

# Initialize Stripe
stripe.api_key = settings.stripe_secret_key


def verify_webhook_signature(payload: bytes, sig_header: str, secret: str | None = None) -> dict[str, Any]:
    """Verify and parse a Stripe webhook event.

    Args:
        payload: Raw request body
        sig_header: Stripe-Signature header value
        secret: Webhook signing secret (defaults to settings)

    Returns:
        The event as a plain dict

    Raises:
        AuthenticationFailure: If the signature is missing, invalid or stale
    """
    secret = secret or settings.stripe_webhook_secret
    if not secret:
        raise AuthenticationFailure("Stripe webhook secret not configured")
    if not sig_header:
        raise AuthenticationFailure("Missing Stripe-Signature header")

    try:
        event = stripe.Webhook.construct_event(
            payload,
            sig_header,
            secret,
            tolerance=settings.stripe_webhook_tolerance,
        )
    except stripe.SignatureVerificationError:
        raise AuthenticationFailure("Invalid webhook signature")
    except ValueError:
        raise AuthenticationFailure("Webhook payload is not valid JSON")

    return event.to_dict()


def retrieve_customer_email(customer_id: str) -> str | None:
    """Fetch the email on a Stripe customer.

    Raises:
        UpstreamUnavailable: If Stripe cannot be reached or is not configured
    """
    if not settings.stripe_secret_key:
        raise UpstreamUnavailable("Stripe not configured")

    try:
        customer = stripe.Customer.retrieve(customer_id)
    except stripe.StripeError as e:
        logger.error("stripe_customer_lookup_failed", customer_id=customer_id, error=str(e))
        raise UpstreamUnavailable(f"Stripe customer lookup failed: {e}")

    return getattr(customer, "email", None)
