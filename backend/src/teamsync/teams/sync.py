"""Invite status sync against Circle.

Circle does not send webhooks when an invited member confirms their
account, so pending members are polled on demand and their invite_status
is advanced from what Circle reports.
"""

from teamsync.circle.gateway import MemberRef, Outcome, TagGateway
from teamsync.errors import TeamNotFound, ValidationError
from teamsync.logging_config import get_logger
from teamsync.storage.db import Database, db
from teamsync.teams.ledger import MembershipLedger
from teamsync.teams.models import InviteStatus, TeamMember, can_advance

logger = get_logger(__name__)


def classify(member: MemberRef) -> InviteStatus | None:
    """Map Circle's view of a member onto the local funnel.

    Returns:
        ``active`` for a confirmed account, ``opened`` when the invitation
        was accepted but the profile is incomplete, None when Circle shows
        no signal yet.
    """
    if member.confirmed:
        return InviteStatus.ACTIVE
    if member.accepted_invitation:
        return InviteStatus.OPENED
    return None


class StatusSyncService:
    """Reconciles recorded invite status with Circle membership state."""

    def __init__(self, gateway: TagGateway, database: Database | None = None):
        self.gateway = gateway
        self.db = database or db
        self.logger = get_logger(__name__)

    async def sync_team(self, team_id: int) -> int:
        """Advance invite_status for the team's pending members.

        Members are processed one by one; a failed lookup skips that member
        and the run carries on. Re-running is always safe.

        Returns:
            Number of members whose invite_status advanced
        """
        if not team_id:
            raise ValidationError("Team ID required")

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            if ledger.get_team(team_id) is None:
                raise TeamNotFound()
            pending = [
                (m.id, m.member_email)
                for m in ledger.list_members_pending_activation(team_id)
            ]

        updated = 0
        for member_id, email in pending:
            try:
                if await self._sync_member(member_id, email):
                    updated += 1
            except Exception as e:
                self.logger.warning(
                    "status_sync_member_failed",
                    team_id=team_id,
                    member_id=member_id,
                    error=str(e),
                )

        self.logger.info("status_sync_complete", team_id=team_id, checked=len(pending), updated=updated)
        return updated

    async def _sync_member(self, member_id: int, email: str) -> bool:
        lookup = await self.gateway.find_member_by_email(email)
        if lookup.outcome == Outcome.UNREACHABLE:
            self.logger.warning("status_sync_lookup_unreachable", member_id=member_id)
            return False
        if not lookup.found:
            return False

        target = classify(lookup.member)

        with self.db.session() as session:
            ledger = MembershipLedger(session)
            member = session.get(TeamMember, member_id)
            if member is None:
                return False
            if member.circle_member_id != lookup.member.id:
                ledger.set_circle_member_id(member, lookup.member.id)
            if target is None or not can_advance(member.invite_status, target):
                return False
            previous = member.invite_status
            ledger.set_invite_status(member, target)

        self.logger.info(
            "invite_status_advanced",
            member_id=member_id,
            previous=previous.value,
            current=target.value,
        )
        return True
