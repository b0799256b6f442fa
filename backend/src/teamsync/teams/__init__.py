"""Team subscriptions module.

Seat-limited teams sold as a Stripe subscription:
- Membership ledger (teams, members, invite tokens)
- Invite lifecycle (view, admit, revoke)
- Invite status sync against Circle
- Leader dashboard
"""

from teamsync.teams.dashboard import DashboardService
from teamsync.teams.invites import AdmissionResult, InviteService
from teamsync.teams.ledger import MembershipLedger
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
from teamsync.teams.sync import StatusSyncService

__all__ = [
    "AccessType",
    "AdmissionResult",
    "DashboardService",
    "InviteMode",
    "InviteService",
    "InviteStatus",
    "InviteToken",
    "MemberStatus",
    "MembershipLedger",
    "StatusSyncService",
    "Team",
    "TeamMember",
    "TeamStatus",
]
