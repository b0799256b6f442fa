"""Application settings and configuration."""

import sys
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "teamsync"
    env: str = "development"
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    allowed_origins: str = "http://localhost:3000"
    site_url: str = "http://localhost:3000"  # Base URL for invite links

    # Database
    database_url: str = "sqlite:///./teamsync.db"

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_tolerance: int = 300  # Seconds a signed payload stays valid
    teams_product_id: str = "prod_U2vN9o0joPvgXD"
    webhook_event_retention_days: int = 30

    # Circle community platform
    circle_api_url: str = "https://app.circle.so/api/admin/v2"
    circle_api_token: str | None = None
    circle_community_id: int | None = None
    circle_timeout_seconds: float = 15.0
    circle_max_attempts: int = 3  # Total attempts per call, including the first

    # Circle tag ids
    teams_leader_tag_id: int = 227715
    free_access_tag_id: int = 228295  # Triggers Circle "Team Member Removed" automation
    subscription_member_tag_id: int | None = None
    course_member_tag_id: int | None = None

    # Team policy
    default_seat_limit: int = Field(default=5, gt=0)
    default_invite_mode: Literal["shareable", "single_use"] = "shareable"
    downgrade_policy: Literal["free_access", "remove_team_tag"] = "free_access"

    @property
    def circle_enabled(self) -> bool:
        return bool(self.circle_api_token and self.circle_community_id)

    @model_validator(mode="after")
    def require_member_tags(self) -> "Settings":
        """Admission and removal tag members, so a live Circle needs both tag ids."""
        if self.circle_enabled:
            missing = [
                name.upper()
                for name in ("subscription_member_tag_id", "course_member_tag_id")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(f"Circle is configured but {', '.join(missing)} is not set")
        return self


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if not settings.stripe_webhook_secret:
        print(
            "\n❌  FATAL: STRIPE_WEBHOOK_SECRET is not set.\n"
            "   Billing events cannot be verified without it.\n",
            file=sys.stderr,
        )
        sys.exit(1)
