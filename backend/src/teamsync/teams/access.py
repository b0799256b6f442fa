"""Community access policy: which tag a seat grants and how a seat is taken away.

Every flow that ends a seat (member removal, subscription cancellation)
goes through ``degrade_access`` so the downgrade strategy is the same at
every call site. The strategy is chosen once, by ``settings.downgrade_policy``:

- ``free_access``: replace all of the member's tags with the free-access tag.
  Circle's "Team Member Removed" workflow reacts to that tag by dropping the
  Teams access group and moving the member to the free tier.
- ``remove_team_tag``: remove only the team's member tag and leave every
  other tag in place.
"""

from teamsync.circle.gateway import MemberRef, Outcome, TagGateway
from teamsync.logging_config import get_logger
from teamsync.settings import settings
from teamsync.teams.models import AccessType

logger = get_logger(__name__)


def member_tag_for(access_type: AccessType) -> int | None:
    """Circle tag id applied to admitted members of a team."""
    if access_type == AccessType.COURSE:
        return settings.course_member_tag_id
    return settings.subscription_member_tag_id


async def resolve_member(
    gateway: TagGateway,
    email: str,
    circle_member_id: int | None = None,
) -> tuple[Outcome, MemberRef | None]:
    """Prefer the stored Circle id, fall back to lookup by email."""
    if circle_member_id:
        return Outcome.OK, MemberRef(id=circle_member_id, email=email)
    lookup = await gateway.find_member_by_email(email)
    return lookup.outcome, lookup.member


async def degrade_access(
    gateway: TagGateway,
    email: str,
    access_type: AccessType,
    circle_member_id: int | None = None,
) -> Outcome:
    """Take away the community access a team seat granted.

    Returns the gateway outcome; callers treat anything but OK as
    "not confirmed" and carry on.
    """
    outcome, member = await resolve_member(gateway, email, circle_member_id)
    if member is None:
        logger.info("degrade_skipped_member_not_found", email=email, outcome=outcome.value)
        return outcome

    if settings.downgrade_policy == "remove_team_tag":
        tag_id = member_tag_for(access_type)
        if tag_id is None:
            # Nothing to remove means access was not confirmed gone
            logger.error("member_tag_not_configured", access_type=access_type.value)
            return Outcome.UNREACHABLE
        outcome = await gateway.remove_tag(member, tag_id)
    else:
        outcome = await gateway.replace_all_tags(member, [settings.free_access_tag_id])

    logger.info(
        "member_access_degraded",
        member_id=member.id,
        policy=settings.downgrade_policy,
        outcome=outcome.value,
    )
    return outcome
