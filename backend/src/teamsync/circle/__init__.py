"""Circle community integration."""

from teamsync.circle.gateway import (
    CircleGateway,
    InviteOutcome,
    MemberLookup,
    MemberRef,
    Outcome,
    TagGateway,
)

__all__ = [
    "CircleGateway",
    "InviteOutcome",
    "MemberLookup",
    "MemberRef",
    "Outcome",
    "TagGateway",
]
