"""Rate limiting for the public invite endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from teamsync.settings import settings

# Per-client budgets for unauthenticated, token-bearing routes
ADMIT_LIMIT = "20/minute"
INVITE_VIEW_LIMIT = "60/minute"

# Enforced in production only; tests and local runs share one client address
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["200/minute"],
    storage_uri="memory://",
    enabled=settings.env == "production",
)
