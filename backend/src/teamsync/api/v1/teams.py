"""Team membership API endpoints."""

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from teamsync.api.deps import (
    get_dashboard_service,
    get_invite_service,
    get_sync_service,
)
from teamsync.api.rate_limit import ADMIT_LIMIT, INVITE_VIEW_LIMIT, limiter
from teamsync.logging_config import get_logger
from teamsync.teams.dashboard import DashboardService
from teamsync.teams.invites import InviteService
from teamsync.teams.sync import StatusSyncService

router = APIRouter(prefix="/teams", tags=["teams"])
logger = get_logger(__name__)


# ─── Request/Response Models ─────────────────────────────────────────────────

class AdmitRequest(BaseModel):
    """Request to join a team with an invite token."""
    token: str = Field(..., min_length=1, max_length=64)
    member_email: str = Field(..., min_length=3, max_length=255)
    added_by_leader: bool = False


class AdmitResponse(BaseModel):
    success: bool
    message: str
    team_id: int
    invite_status: str


class InviteViewRequest(BaseModel):
    """Invite link was opened."""
    token: str = Field(..., min_length=1, max_length=64)


class RemoveMemberRequest(BaseModel):
    """Request to remove a member from a team."""
    team_id: int = Field(..., gt=0)
    member_email: str = Field(..., min_length=3, max_length=255)


class SyncRequest(BaseModel):
    """Request to sync invite status with Circle."""
    team_id: int = Field(..., gt=0)


class TeamMemberView(BaseModel):
    email: str
    invite_status: str
    joined_at: str | None


class TeamView(BaseModel):
    """Team as shown on the leader dashboard."""
    id: int
    access_type: str
    course_space_id: str | None
    seat_limit: int
    seats_used: int
    seats_remaining: int
    status: str
    invite_mode: str
    invite_link: str | None
    converted_from_individual: bool
    created_at: str | None
    members: list[TeamMemberView]


class DashboardResponse(BaseModel):
    teams: list[TeamView]


# ─── Endpoints ───────────────────────────────────────────────────────────────

@router.post("/invite", response_model=AdmitResponse)
@limiter.limit(ADMIT_LIMIT)
async def admit_member(
    request: Request,
    body: AdmitRequest,
    service: InviteService = Depends(get_invite_service),
):
    """Join a team using an invite token."""
    result = await service.admit(
        token=body.token,
        email=body.member_email,
        added_by_leader=body.added_by_leader,
    )
    return AdmitResponse(
        success=True,
        message="You have been added to the team!",
        team_id=result.team_id,
        invite_status=result.invite_status.value,
    )


@router.post("/invite/view")
@limiter.limit(INVITE_VIEW_LIMIT)
async def record_invite_view(
    request: Request,
    body: InviteViewRequest,
    service: InviteService = Depends(get_invite_service),
):
    """Record that an invite link was opened."""
    updated = service.record_view(body.token)
    return {"success": True, "updated": updated}


@router.post("/members/remove")
async def remove_member(
    body: RemoveMemberRequest,
    service: InviteService = Depends(get_invite_service),
):
    """Remove a member and release their seat."""
    await service.revoke(body.team_id, body.member_email)
    return {"success": True}


@router.post("/sync")
async def sync_invite_status(
    body: SyncRequest,
    service: StatusSyncService = Depends(get_sync_service),
):
    """Pull invite status for the team's pending members from Circle."""
    updated = await service.sync_team(body.team_id)
    return {"updated": updated}


@router.get("/dashboard", response_model=DashboardResponse)
async def leader_dashboard(
    email: str = Query(..., min_length=3, max_length=255),
    service: DashboardService = Depends(get_dashboard_service),
):
    """List the active teams led by ``email``."""
    return DashboardResponse(teams=service.teams_for_leader(email))
