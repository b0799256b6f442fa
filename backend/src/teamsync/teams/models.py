"""Team subscription database models."""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import relationship

from teamsync.storage.db import Base


def _enum_column(enum_cls: type[Enum], **kwargs) -> Column:
    """Enum column stored by value, so raw SQL predicates can use the lowercase names."""
    return Column(
        SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e], native_enum=False, length=20),
        **kwargs,
    )


class AccessType(str, Enum):
    """What a team seat grants in the community."""
    SUBSCRIPTION = "subscription"
    COURSE = "course"


class TeamStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class InviteMode(str, Enum):
    """Invite-token policy for a team."""
    SHAREABLE = "shareable"    # One link for every seat, never marked used
    SINGLE_USE = "single_use"  # Consumed by the first successful admission


class MemberStatus(str, Enum):
    """Coarse membership flag. Drives seat counting."""
    ACTIVE = "active"
    REVOKED = "revoked"


class InviteStatus(str, Enum):
    """Onboarding funnel state, independent of MemberStatus."""
    INVITED = "invited"
    VIEWED = "viewed"
    OPENED = "opened"
    ACTIVE = "active"
    REVOKED = "revoked"


# Funnel order; REVOKED sits outside it and is terminal.
INVITE_STATUS_RANK = {
    InviteStatus.INVITED: 0,
    InviteStatus.VIEWED: 1,
    InviteStatus.OPENED: 2,
    InviteStatus.ACTIVE: 3,
}


def can_advance(current: InviteStatus, target: InviteStatus) -> bool:
    """Whether moving from ``current`` to ``target`` is a forward step."""
    if current == InviteStatus.REVOKED:
        return False
    if target == InviteStatus.REVOKED:
        return True
    return INVITE_STATUS_RANK[target] > INVITE_STATUS_RANK[current]


class Team(Base):
    """A seat-limited group tied to one paying Stripe subscription."""
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True)

    # Leader
    leader_email = Column(String(255), nullable=False, index=True)

    # Billing references
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=False, index=True)

    # Access
    access_type = _enum_column(AccessType, nullable=False, default=AccessType.SUBSCRIPTION)
    course_space_id = Column(String(100), nullable=True)
    seat_limit = Column(Integer, nullable=False, default=5)
    invite_mode = _enum_column(InviteMode, nullable=False, default=InviteMode.SHAREABLE)

    # Status
    status = _enum_column(TeamStatus, nullable=False, default=TeamStatus.ACTIVE)
    converted_from_individual = Column(Boolean, nullable=False, default=False)
    converted_at = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    members = relationship("TeamMember", back_populates="team", order_by="TeamMember.id")
    invite_tokens = relationship("InviteToken", back_populates="team", order_by="InviteToken.id")

    __table_args__ = (
        # One live team per subscription
        Index(
            "uq_teams_active_subscription",
            "stripe_subscription_id",
            unique=True,
            sqlite_where=text("status != 'revoked'"),
            postgresql_where=text("status != 'revoked'"),
        ),
    )

    @property
    def is_active(self) -> bool:
        return self.status == TeamStatus.ACTIVE

    def __repr__(self):
        return f"<Team(id={self.id}, leader={self.leader_email}, status={self.status})>"


class TeamMember(Base):
    """One admission of an email into a team.

    Revocation flips ``status`` instead of deleting the row, so the audit
    history of every seat survives.
    """
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)

    member_email = Column(String(255), nullable=False, index=True)
    circle_member_id = Column(Integer, nullable=True)

    status = _enum_column(MemberStatus, nullable=False, default=MemberStatus.ACTIVE)
    invite_status = _enum_column(InviteStatus, nullable=False, default=InviteStatus.INVITED)

    # Timestamps
    joined_at = Column(DateTime, default=datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    team = relationship("Team", back_populates="members")

    __table_args__ = (
        Index(
            "uq_team_members_live_email",
            "team_id",
            "member_email",
            unique=True,
            sqlite_where=text("status != 'revoked'"),
            postgresql_where=text("status != 'revoked'"),
        ),
    )

    def __repr__(self):
        return f"<TeamMember(team={self.team_id}, email={self.member_email}, status={self.status})>"


class InviteToken(Base):
    """Capability string granting join rights to one team."""
    __tablename__ = "invite_tokens"

    id = Column(Integer, primary_key=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    team = relationship("Team", back_populates="invite_tokens")

    def __repr__(self):
        return f"<InviteToken(team={self.team_id}, used={self.used})>"
