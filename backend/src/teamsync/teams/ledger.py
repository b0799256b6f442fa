"""Membership ledger: data access for teams, members and invite tokens.

Seat and duplicate checks are read-then-write. On PostgreSQL the team row is
locked with ``SELECT ... FOR UPDATE`` for the duration of the admitting
transaction, which serializes concurrent admissions to the same team, and the
partial unique index on (team_id, member_email) rejects a second live row for
the same email. SQLite ignores ``FOR UPDATE``; there the seat check keeps a
small check-then-insert window, accepted for human-driven admission traffic.
"""

import secrets
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from teamsync.logging_config import get_logger
from teamsync.teams.models import (
    AccessType,
    InviteMode,
    InviteStatus,
    InviteToken,
    MemberStatus,
    Team,
    TeamMember,
    TeamStatus,
)

logger = get_logger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_token() -> str:
    """Random urlsafe invite token."""
    return secrets.token_urlsafe(16)


class MembershipLedger:
    """Repository for Team, TeamMember and InviteToken rows.

    Methods flush but never commit; the caller owns the transaction
    (``Database.session()`` commits on exit).
    """

    def __init__(self, session: Session):
        self.session = session

    # ── Teams ──────────────────────────────────────────────────────────

    def create_team(
        self,
        leader_email: str,
        stripe_subscription_id: str,
        stripe_customer_id: str | None = None,
        access_type: AccessType = AccessType.SUBSCRIPTION,
        seat_limit: int = 5,
        invite_mode: InviteMode = InviteMode.SHAREABLE,
        course_space_id: str | None = None,
        converted_from_individual: bool = False,
    ) -> tuple[Team, InviteToken]:
        """Create a team together with its invite token.

        Returns:
            (team, invite_token)
        """
        if seat_limit <= 0:
            raise ValueError("seat_limit must be positive")

        team = Team(
            leader_email=normalize_email(leader_email),
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            access_type=access_type,
            course_space_id=course_space_id,
            seat_limit=seat_limit,
            invite_mode=invite_mode,
            status=TeamStatus.ACTIVE,
            converted_from_individual=converted_from_individual,
            converted_at=datetime.utcnow() if converted_from_individual else None,
        )
        self.session.add(team)
        self.session.flush()  # Get team ID

        token = InviteToken(team_id=team.id, token=generate_token())
        self.session.add(token)
        self.session.flush()

        logger.info(
            "team_created",
            team_id=team.id,
            subscription_id=stripe_subscription_id,
            seat_limit=seat_limit,
            invite_mode=invite_mode.value,
        )
        return team, token

    def get_team(self, team_id: int, lock: bool = False) -> Team | None:
        stmt = select(Team).where(Team.id == team_id)
        if lock:
            stmt = stmt.with_for_update()
        return self.session.scalar(stmt)

    def get_team_by_subscription(self, stripe_subscription_id: str) -> Team | None:
        """Most recent team for the subscription, revoked included."""
        return self.session.scalar(
            select(Team)
            .where(Team.stripe_subscription_id == stripe_subscription_id)
            .order_by(Team.id.desc())
            .limit(1)
        )

    def get_active_team_by_subscription(self, stripe_subscription_id: str) -> Team | None:
        return self.session.scalar(
            select(Team).where(
                Team.stripe_subscription_id == stripe_subscription_id,
                Team.status != TeamStatus.REVOKED,
            )
        )

    def list_active_teams_for_leader(self, leader_email: str) -> list[Team]:
        return list(self.session.scalars(
            select(Team)
            .where(
                Team.leader_email == normalize_email(leader_email),
                Team.status == TeamStatus.ACTIVE,
            )
            .order_by(Team.created_at)
        ))

    def revoke_team(self, team: Team) -> int:
        """Revoke a team and every member still holding a seat.

        Returns:
            Number of members revoked
        """
        now = datetime.utcnow()
        result = self.session.execute(
            update(TeamMember)
            .where(
                TeamMember.team_id == team.id,
                TeamMember.status != MemberStatus.REVOKED,
            )
            .values(
                status=MemberStatus.REVOKED,
                invite_status=InviteStatus.REVOKED,
                revoked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session="fetch")
        )
        team.status = TeamStatus.REVOKED
        team.updated_at = now
        self.session.flush()

        logger.info("team_revoked", team_id=team.id, members_revoked=result.rowcount)
        return result.rowcount

    # ── Members ────────────────────────────────────────────────────────

    def count_seated_members(self, team_id: int) -> int:
        """Count members with status != revoked."""
        return self.session.scalar(
            select(func.count(TeamMember.id)).where(
                TeamMember.team_id == team_id,
                TeamMember.status != MemberStatus.REVOKED,
            )
        ) or 0

    def has_free_seat(self, team: Team) -> bool:
        return self.count_seated_members(team.id) < team.seat_limit

    def find_seated_member(self, team_id: int, email: str) -> TeamMember | None:
        """Find the non-revoked member for (team, email)."""
        return self.session.scalar(
            select(TeamMember).where(
                TeamMember.team_id == team_id,
                TeamMember.member_email == normalize_email(email),
                TeamMember.status != MemberStatus.REVOKED,
            )
        )

    def list_seated_members(self, team_id: int) -> list[TeamMember]:
        return list(self.session.scalars(
            select(TeamMember)
            .where(
                TeamMember.team_id == team_id,
                TeamMember.status != MemberStatus.REVOKED,
            )
            .order_by(TeamMember.id)
        ))

    def list_members_pending_activation(self, team_id: int) -> list[TeamMember]:
        """Non-revoked members whose invite_status has not reached active."""
        return [
            m for m in self.list_seated_members(team_id)
            if m.invite_status not in (InviteStatus.ACTIVE, InviteStatus.REVOKED)
        ]

    def add_member(
        self,
        team: Team,
        email: str,
        invite_status: InviteStatus,
        circle_member_id: int | None = None,
    ) -> TeamMember | None:
        """Insert a member if a seat is available.

        Returns:
            The new member, or None when the team is full
        """
        if not self.has_free_seat(team):
            return None

        member = TeamMember(
            team_id=team.id,
            member_email=normalize_email(email),
            circle_member_id=circle_member_id,
            status=MemberStatus.ACTIVE,
            invite_status=invite_status,
            joined_at=datetime.utcnow(),
        )
        self.session.add(member)
        self.session.flush()

        logger.info(
            "team_member_added",
            team_id=team.id,
            member_id=member.id,
            invite_status=invite_status.value,
        )
        return member

    def set_invite_status(self, member: TeamMember, invite_status: InviteStatus) -> None:
        member.invite_status = invite_status
        member.updated_at = datetime.utcnow()
        self.session.flush()

    def set_circle_member_id(self, member: TeamMember, circle_member_id: int) -> None:
        member.circle_member_id = circle_member_id
        member.updated_at = datetime.utcnow()
        self.session.flush()

    def revoke_member(self, member: TeamMember) -> None:
        now = datetime.utcnow()
        member.status = MemberStatus.REVOKED
        member.invite_status = InviteStatus.REVOKED
        member.revoked_at = now
        member.updated_at = now
        self.session.flush()

        logger.info("team_member_revoked", team_id=member.team_id, member_id=member.id)

    def mark_invited_as_viewed(self, team_id: int) -> int:
        """Move every ``invited`` member of the team to ``viewed``."""
        result = self.session.execute(
            update(TeamMember)
            .where(
                TeamMember.team_id == team_id,
                TeamMember.status != MemberStatus.REVOKED,
                TeamMember.invite_status == InviteStatus.INVITED,
            )
            .values(invite_status=InviteStatus.VIEWED, updated_at=datetime.utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    # ── Invite tokens ──────────────────────────────────────────────────

    def get_token(self, token: str) -> InviteToken | None:
        return self.session.scalar(select(InviteToken).where(InviteToken.token == token))

    def get_current_token(self, team_id: int) -> InviteToken | None:
        """Most recent unused token for a team."""
        return self.session.scalar(
            select(InviteToken)
            .where(InviteToken.team_id == team_id, InviteToken.used == False)  # noqa: E712
            .order_by(InviteToken.id.desc())
        )

    def consume_token(self, invite: InviteToken) -> None:
        invite.used = True
        invite.used_at = datetime.utcnow()
        self.session.flush()
