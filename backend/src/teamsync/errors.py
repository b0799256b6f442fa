"""Error taxonomy for team membership operations.

Every error carries the HTTP status it maps to and a stable machine code,
so routers can render them without per-endpoint branching.
"""


class TeamError(Exception):
    """Team operation error."""

    status_code = 400
    code = "team_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(TeamError):
    """Missing or malformed input. Never retried."""

    code = "validation_error"


class NotFound(TeamError):
    """Token, member or team absent."""

    status_code = 404
    code = "not_found"


class InvalidToken(NotFound):
    code = "invalid_token"

    def __init__(self, message: str = "Invalid or expired invite token"):
        super().__init__(message)


class TeamNotFound(NotFound):
    code = "team_not_found"

    def __init__(self, message: str = "Team not found"):
        super().__init__(message)


class MemberNotFound(NotFound):
    code = "member_not_found"

    def __init__(self, message: str = "Member not found"):
        super().__init__(message)


class Conflict(TeamError):
    """Request conflicts with current membership state."""

    status_code = 409
    code = "conflict"


class SeatsFull(Conflict):
    code = "seats_full"

    def __init__(self, message: str = "seats full"):
        super().__init__(message)


class DuplicateMember(Conflict):
    code = "duplicate_member"

    def __init__(self, message: str = "This email is already a member of this team"):
        super().__init__(message)


class InactiveResource(TeamError):
    """Resource exists but has been revoked."""

    status_code = 410
    code = "inactive_resource"


class TeamInactive(InactiveResource):
    code = "team_inactive"

    def __init__(self, message: str = "This team subscription is no longer active"):
        super().__init__(message)


class UpstreamUnavailable(TeamError):
    """Circle or Stripe call failed on a critical path."""

    status_code = 503
    code = "upstream_unavailable"


class AuthenticationFailure(TeamError):
    """Inbound billing event failed signature verification."""

    code = "authentication_failure"
