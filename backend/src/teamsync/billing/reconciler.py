"""Subscription event reconciler.

Turns Stripe subscription lifecycle events into team changes. Stripe
delivers at least once and in no guaranteed order, so every handler checks
current ledger state first and does nothing when the change is already in
place.
"""

from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from teamsync.billing.models import CancelledSubscription
from teamsync.billing.stripe_service import retrieve_customer_email
from teamsync.circle.gateway import Outcome, TagGateway
from teamsync.logging_config import get_logger
from teamsync.settings import settings
from teamsync.storage.db import Database, db
from teamsync.teams.access import degrade_access
from teamsync.teams.ledger import MembershipLedger
from teamsync.teams.models import AccessType, InviteMode

logger = get_logger(__name__)

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"

# Stripe statuses after which a subscription never becomes active again
ENDED_STATUSES = frozenset({"canceled", "incomplete_expired"})


def _id_of(value: Any) -> str | None:
    """Stripe fields hold either an id or the expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def is_cancelled(session: Session, subscription_id: str) -> bool:
    return session.scalar(
        select(CancelledSubscription.id).where(
            CancelledSubscription.stripe_subscription_id == subscription_id
        )
    ) is not None


def subscription_product(items: Any) -> str | None:
    """Product id of the first subscription item."""
    if not isinstance(items, dict):
        return None
    data = items.get("data") or []
    if not data or not isinstance(data[0], dict):
        return None
    price = data[0].get("price") or data[0].get("plan") or {}
    return _id_of(price.get("product"))


def team_options(subscription: dict) -> dict[str, Any]:
    """Team attributes carried in subscription metadata, with defaults."""
    metadata = subscription.get("metadata") or {}

    try:
        seat_limit = int(metadata.get("seat_limit", settings.default_seat_limit))
    except (TypeError, ValueError):
        seat_limit = settings.default_seat_limit
    if seat_limit <= 0:
        seat_limit = settings.default_seat_limit

    try:
        access_type = AccessType(metadata.get("access_type", AccessType.SUBSCRIPTION.value))
    except ValueError:
        access_type = AccessType.SUBSCRIPTION

    try:
        invite_mode = InviteMode(metadata.get("invite_mode", settings.default_invite_mode))
    except ValueError:
        invite_mode = InviteMode(settings.default_invite_mode)

    return {
        "seat_limit": seat_limit,
        "access_type": access_type,
        "invite_mode": invite_mode,
        "course_space_id": metadata.get("course_space_id"),
    }


class SubscriptionReconciler:
    """Applies subscription created / deleted / updated events to teams."""

    def __init__(
        self,
        gateway: TagGateway,
        database: Database | None = None,
        customer_email_lookup: Callable[[str], str | None] = retrieve_customer_email,
    ):
        self.gateway = gateway
        self.db = database or db
        self.customer_email_lookup = customer_email_lookup
        self.logger = get_logger(__name__)

    async def dispatch(self, event: dict) -> bool:
        """Route a verified Stripe event.

        Returns:
            True if the event type is one this service handles
        """
        event_type = event.get("type", "")
        data = event.get("data") or {}
        subscription = data.get("object") or {}

        if event_type == SUBSCRIPTION_CREATED:
            await self.handle_created(subscription)
        elif event_type == SUBSCRIPTION_DELETED:
            await self.handle_deleted(subscription)
        elif event_type == SUBSCRIPTION_UPDATED:
            await self.handle_updated(subscription, data.get("previous_attributes") or {})
        else:
            self.logger.info("stripe_event_ignored", event_type=event_type)
            return False
        return True

    def _leader_email(self, subscription: dict) -> str | None:
        customer = subscription.get("customer")
        if isinstance(customer, dict) and customer.get("email"):
            return customer["email"]
        customer_id = _id_of(customer)
        if not customer_id:
            return None
        return self.customer_email_lookup(customer_id)

    async def handle_created(self, subscription: dict, converted: bool = False) -> int | None:
        """Create the team for a new team-product subscription.

        Returns:
            The new team id, or None when nothing was created
        """
        subscription_id = subscription.get("id")
        product_id = subscription_product(subscription.get("items"))
        if product_id != settings.teams_product_id:
            self.logger.debug("subscription_not_team_product", subscription_id=subscription_id, product_id=product_id)
            return None

        if subscription.get("status") in ENDED_STATUSES:
            self.logger.info("subscription_already_ended", subscription_id=subscription_id, status=subscription["status"])
            return None

        with self.db.session() as session:
            if is_cancelled(session, subscription_id):
                self.logger.info("subscription_already_cancelled", subscription_id=subscription_id)
                return None
            # Any team, revoked included, means this subscription was already handled
            existing = MembershipLedger(session).get_team_by_subscription(subscription_id)
            if existing:
                self.logger.info("team_already_exists", subscription_id=subscription_id, team_id=existing.id)
                return None

        leader_email = self._leader_email(subscription)
        if not leader_email:
            self.logger.error("team_leader_email_missing", subscription_id=subscription_id)
            return None

        try:
            with self.db.session() as session:
                team, _ = MembershipLedger(session).create_team(
                    leader_email=leader_email,
                    stripe_subscription_id=subscription_id,
                    stripe_customer_id=_id_of(subscription.get("customer")),
                    converted_from_individual=converted,
                    **team_options(subscription),
                )
                team_id = team.id
        except IntegrityError:
            # A concurrent delivery of the same event created it first
            self.logger.info("team_already_exists", subscription_id=subscription_id)
            return None

        await self._tag_leader(leader_email, team_id)

        self.logger.info(
            "team_subscription_started",
            team_id=team_id,
            subscription_id=subscription_id,
            converted=converted,
        )
        return team_id

    async def _tag_leader(self, leader_email: str, team_id: int) -> None:
        lookup = await self.gateway.find_member_by_email(leader_email)
        if not lookup.found:
            self.logger.warning("team_leader_not_in_circle", team_id=team_id, outcome=lookup.outcome.value)
            return
        outcome = await self.gateway.add_tags(lookup.member, [settings.teams_leader_tag_id])
        if outcome != Outcome.OK:
            self.logger.warning("team_leader_tag_deferred", team_id=team_id, outcome=outcome.value)

    async def handle_deleted(self, subscription: dict) -> int | None:
        """Revoke the team and every member for a cancelled subscription.

        Circle downgrades are best effort; the ledger revocation always
        happens. Returns the number of members revoked, or None when no
        active team exists for the subscription.
        """
        subscription_id = subscription.get("id")
        if not subscription_id:
            return None

        self._record_cancellation(subscription_id)

        with self.db.session() as session:
            team = MembershipLedger(session).get_active_team_by_subscription(subscription_id)
            if team is None:
                self.logger.info("team_not_found_for_deletion", subscription_id=subscription_id)
                return None
            team_id, access_type = team.id, team.access_type
            members = [
                (m.member_email, m.circle_member_id)
                for m in MembershipLedger(session).list_seated_members(team.id)
            ]

        degraded = 0
        for email, circle_member_id in members:
            try:
                outcome = await degrade_access(self.gateway, email, access_type, circle_member_id)
            except Exception as e:
                self.logger.warning("member_downgrade_failed", team_id=team_id, error=str(e))
                continue
            if outcome == Outcome.OK:
                degraded += 1

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            team = ledger.get_team(team_id, lock=True)
            revoked = ledger.revoke_team(team) if team.is_active else 0

        self.logger.info(
            "team_subscription_ended",
            team_id=team_id,
            members_revoked=revoked,
            members_downgraded=degraded,
        )
        return revoked

    def _record_cancellation(self, subscription_id: str) -> None:
        try:
            with self.db.session() as session:
                if not is_cancelled(session, subscription_id):
                    session.add(CancelledSubscription(stripe_subscription_id=subscription_id))
        except IntegrityError:
            self.logger.info("subscription_cancellation_already_recorded", subscription_id=subscription_id)

    async def handle_updated(self, subscription: dict, previous_attributes: dict) -> int | None:
        """Create a team when an individual subscription is upgraded in place.

        Only fires when the current product is the team product, the
        previous product was not, and the subscription has no team yet.
        """
        product_id = subscription_product(subscription.get("items"))
        if product_id != settings.teams_product_id:
            return None

        previous_product = subscription_product(previous_attributes.get("items"))
        if previous_product is None or previous_product == settings.teams_product_id:
            return None

        self.logger.info(
            "subscription_upgraded_to_team",
            subscription_id=subscription.get("id"),
            previous_product=previous_product,
        )
        return await self.handle_created(subscription, converted=True)
