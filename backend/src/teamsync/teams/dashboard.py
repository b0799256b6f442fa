"""Read-only leader dashboard."""

from typing import Any

from teamsync.errors import TeamNotFound
from teamsync.settings import settings
from teamsync.storage.db import Database, db
from teamsync.teams.ledger import MembershipLedger
from teamsync.teams.models import MemberStatus


def invite_link(token: str | None) -> str | None:
    if not token:
        return None
    return f"{settings.site_url.rstrip('/')}/join?token={token}"


class DashboardService:
    """Builds the team overview shown to a team leader."""

    def __init__(self, database: Database | None = None):
        self.db = database or db

    def teams_for_leader(self, leader_email: str) -> list[dict[str, Any]]:
        """Active teams led by ``leader_email`` with seat usage and members.

        Raises:
            TeamNotFound: if the leader has no active team
        """
        with self.db.session() as session:
            ledger = MembershipLedger(session)
            teams = ledger.list_active_teams_for_leader(leader_email)
            if not teams:
                raise TeamNotFound("No active teams found for this email")

            result = []
            for team in teams:
                seated = [m for m in team.members if m.status == MemberStatus.ACTIVE]
                token = ledger.get_current_token(team.id)
                result.append({
                    "id": team.id,
                    "access_type": team.access_type.value,
                    "course_space_id": team.course_space_id,
                    "seat_limit": team.seat_limit,
                    "seats_used": len(seated),
                    "seats_remaining": max(team.seat_limit - len(seated), 0),
                    "status": team.status.value,
                    "invite_mode": team.invite_mode.value,
                    "invite_link": invite_link(token.token if token else None),
                    "converted_from_individual": team.converted_from_individual,
                    "created_at": team.created_at.isoformat() if team.created_at else None,
                    "members": [
                        {
                            "email": m.member_email,
                            "invite_status": m.invite_status.value,
                            "joined_at": m.joined_at.isoformat() if m.joined_at else None,
                        }
                        for m in seated
                    ],
                })
            return result
