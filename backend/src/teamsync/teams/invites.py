"""Invite lifecycle: viewing an invite link, admitting members, revoking seats.

invite_status moves invited -> viewed -> opened -> active; revoked can be
reached from any state and is terminal.

Ordering against Circle differs by direction. Admission writes the ledger
first and tags afterwards: a seated member without a tag is an under-grant
the sync job can repair. Revocation degrades Circle access first and then
writes the ledger, so a revoked row never hides lingering paid access.
"""

from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from teamsync.circle.gateway import Outcome, TagGateway
from teamsync.errors import (
    DuplicateMember,
    InvalidToken,
    MemberNotFound,
    SeatsFull,
    TeamInactive,
    ValidationError,
)
from teamsync.logging_config import get_logger
from teamsync.storage.db import Database, db
from teamsync.teams.access import degrade_access, member_tag_for
from teamsync.teams.ledger import MembershipLedger, normalize_email
from teamsync.teams.models import InviteMode, InviteStatus, TeamMember, can_advance

logger = get_logger(__name__)


@dataclass
class AdmissionResult:
    """Outcome of a successful admission."""
    team_id: int
    member_id: int
    member_email: str
    invite_status: InviteStatus
    circle_member_id: int | None
    gateway_outcome: Outcome


def clean_email(email: str | None) -> str:
    """Validate and normalize an email address.

    Raises:
        ValidationError: if missing or malformed
    """
    if not email or not email.strip():
        raise ValidationError("Email is required")
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email address: {e}")
    return normalize_email(email)


class InviteService:
    """Service driving the invite state machine."""

    def __init__(self, gateway: TagGateway, database: Database | None = None):
        self.gateway = gateway
        self.db = database or db
        self.logger = get_logger(__name__)

    def record_view(self, token: str) -> int:
        """Mark every ``invited`` member of the token's team as ``viewed``.

        The token does not say which prospective member clicked, so all of
        the team's pending invitees advance together.

        Returns:
            Number of members updated
        """
        if not token:
            raise ValidationError("Token is required")

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            invite = ledger.get_token(token)
            if not invite:
                raise InvalidToken("Invalid token")

            updated = ledger.mark_invited_as_viewed(invite.team_id)

        self.logger.info("invite_viewed", team_id=invite.team_id, updated=updated)
        return updated

    async def admit(
        self,
        token: str,
        email: str,
        added_by_leader: bool = False,
    ) -> AdmissionResult:
        """Admit ``email`` into the team behind ``token``.

        Args:
            token: Invite token
            email: Email of the joining member
            added_by_leader: True when the leader typed the email in on the
                member's behalf; the member then starts as ``invited``

        Returns:
            AdmissionResult

        Raises:
            ValidationError, InvalidToken, TeamInactive, SeatsFull, DuplicateMember
        """
        if not token:
            raise ValidationError("Token and email are required")
        email = clean_email(email)

        initial_status = InviteStatus.INVITED if added_by_leader else InviteStatus.ACTIVE

        try:
            with self.db.session() as session:
                ledger = MembershipLedger(session)

                invite = ledger.get_token(token)
                if not invite or invite.used:
                    raise InvalidToken()

                team = ledger.get_team(invite.team_id, lock=True)
                if team is None or not team.is_active:
                    raise TeamInactive()

                if not ledger.has_free_seat(team):
                    raise SeatsFull()

                if ledger.find_seated_member(team.id, email):
                    raise DuplicateMember()

                member = ledger.add_member(team, email, invite_status=initial_status)
                if member is None:
                    raise SeatsFull()

                if team.invite_mode == InviteMode.SINGLE_USE:
                    ledger.consume_token(invite)

                team_id, member_id, access_type = team.id, member.id, team.access_type
        except IntegrityError:
            # A concurrent admission won the partial unique index
            raise DuplicateMember()

        result = AdmissionResult(
            team_id=team_id,
            member_id=member_id,
            member_email=email,
            invite_status=initial_status,
            circle_member_id=None,
            gateway_outcome=Outcome.UNREACHABLE,
        )

        await self._grant_access(result, access_type)

        self.logger.info(
            "member_admitted",
            team_id=team_id,
            member_id=member_id,
            invite_status=result.invite_status.value,
            added_by_leader=added_by_leader,
            gateway_outcome=result.gateway_outcome.value,
        )
        return result

    async def _grant_access(self, result: AdmissionResult, access_type) -> None:
        """Invite or fetch the member in Circle and apply the team tag.

        Failures are logged and left for the status sync to repair.
        """
        invite = await self.gateway.invite_or_fetch_member(result.member_email)
        result.gateway_outcome = invite.outcome
        if invite.outcome != Outcome.OK or invite.member is None:
            self.logger.warning(
                "admission_gateway_deferred",
                team_id=result.team_id,
                member_id=result.member_id,
                outcome=invite.outcome.value,
            )
            return

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            member = session.get(TeamMember, result.member_id)
            ledger.set_circle_member_id(member, invite.member.id)
            # An existing community account needs no onboarding
            if invite.already_existed and can_advance(member.invite_status, InviteStatus.ACTIVE):
                ledger.set_invite_status(member, InviteStatus.ACTIVE)
            result.invite_status = member.invite_status
            result.circle_member_id = invite.member.id

        tag_id = member_tag_for(access_type)
        if tag_id is None:
            result.gateway_outcome = Outcome.UNREACHABLE
            self.logger.error("member_tag_not_configured", team_id=result.team_id, access_type=access_type.value)
            return

        tag_outcome = await self.gateway.add_tags(invite.member, [tag_id])
        if tag_outcome != Outcome.OK:
            result.gateway_outcome = tag_outcome
            self.logger.warning(
                "admission_tag_deferred",
                team_id=result.team_id,
                member_id=result.member_id,
                outcome=tag_outcome.value,
            )

    async def revoke(self, team_id: int, email: str) -> None:
        """Remove a member from a team.

        Circle access is degraded first (best effort), then the seat is
        released in the ledger.

        Raises:
            ValidationError, MemberNotFound
        """
        if not team_id:
            raise ValidationError("Team ID and member email are required")
        email = clean_email(email)

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            member = ledger.find_seated_member(team_id, email)
            if member is None:
                raise MemberNotFound()
            team = ledger.get_team(team_id)
            access_type, circle_member_id = team.access_type, member.circle_member_id

        outcome = await degrade_access(self.gateway, email, access_type, circle_member_id)
        if outcome != Outcome.OK:
            self.logger.warning("revoke_gateway_deferred", team_id=team_id, outcome=outcome.value)

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            member = ledger.find_seated_member(team_id, email)
            if member is not None:
                ledger.revoke_member(member)

        self.logger.info("member_revoked", team_id=team_id)
