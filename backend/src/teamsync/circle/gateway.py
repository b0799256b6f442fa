"""Circle community gateway.

Wraps the Circle Admin API v2 member and tag endpoints behind one
normalized contract (``TagGateway``). Circle answers the same question in
different shapes depending on the endpoint and API revision; every shape is
folded into ``MemberRef`` here so callers never inspect raw payloads.

API Documentation: https://api.circle.so/apis/admin-api

No public method raises on upstream failure. Each returns an ``Outcome``;
``UNREACHABLE`` means "could not confirm, retry later".
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from teamsync.logging_config import get_logger
from teamsync.settings import settings

logger = get_logger(__name__)


class Outcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class MemberRef:
    """A community member as seen by Circle, normalized."""
    id: int
    email: str | None = None
    tag_ids: frozenset[int] = field(default_factory=frozenset)
    confirmed: bool = False             # Account fully set up
    accepted_invitation: bool = False   # Joined, profile possibly incomplete


@dataclass(frozen=True)
class MemberLookup:
    outcome: Outcome
    member: MemberRef | None = None

    @property
    def found(self) -> bool:
        return self.outcome == Outcome.OK and self.member is not None


@dataclass(frozen=True)
class InviteOutcome:
    outcome: Outcome
    member: MemberRef | None = None
    already_existed: bool = False


class TagGateway(Protocol):
    """Capability contract for member lookup and tag mutation."""

    async def find_member_by_email(self, email: str) -> MemberLookup: ...

    async def add_tags(self, member: MemberRef, tag_ids: Iterable[int]) -> Outcome: ...

    async def remove_tag(self, member: MemberRef, tag_id: int) -> Outcome: ...

    async def replace_all_tags(self, member: MemberRef, tag_ids: Iterable[int]) -> Outcome: ...

    async def invite_or_fetch_member(self, email: str) -> InviteOutcome: ...

    async def delete_member(self, member: MemberRef) -> Outcome: ...

    async def list_tags(self) -> list[dict[str, Any]] | None: ...


class CircleError(Exception):
    """Error from Circle API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class CircleTransientError(CircleError):
    """Retryable failure: transport error, rate limit or server error."""


# ── Response normalization ───────────────────────────────────────────────

def extract_member_list(payload: Any) -> list[dict]:
    """Member search results arrive as ``records`` (v2) or ``community_members``."""
    if not isinstance(payload, dict):
        return []
    for key in ("records", "community_members"):
        value = payload.get(key)
        if isinstance(value, list):
            return [m for m in value if isinstance(m, dict)]
    return []


def extract_tag_ids(raw: dict) -> frozenset[int]:
    """Tags arrive as ``member_tags`` objects or a bare ``member_tag_ids`` list."""
    ids: set[int] = set()
    for tag in raw.get("member_tags") or []:
        if isinstance(tag, dict) and tag.get("id") is not None:
            ids.add(int(tag["id"]))
    for tag_id in raw.get("member_tag_ids") or []:
        ids.add(int(tag_id))
    return frozenset(ids)


def normalize_member(raw: dict) -> MemberRef | None:
    """Fold a raw Circle member object into a MemberRef."""
    if not isinstance(raw, dict):
        return None
    # Create responses wrap the member
    if isinstance(raw.get("community_member"), dict):
        raw = raw["community_member"]
    if raw.get("id") is None:
        return None

    confirmed = bool(raw.get("confirmed_at") or raw.get("profile_confirmed_at"))
    accepted = bool(raw.get("accepted_invitation") or raw.get("last_seen_at")) or confirmed

    return MemberRef(
        id=int(raw["id"]),
        email=(raw.get("email") or "").lower() or None,
        tag_ids=extract_tag_ids(raw),
        confirmed=confirmed,
        accepted_invitation=accepted,
    )


# ── Circle client ────────────────────────────────────────────────────────

class CircleGateway:
    """TagGateway backed by the Circle Admin API.

    Circle's PATCH of ``member_tag_ids`` replaces the member's whole tag
    set, so additive and subtractive tag changes read the current set first
    and write back the merged result.
    """

    def __init__(
        self,
        api_token: str | None = None,
        community_id: int | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_token = api_token or settings.circle_api_token
        self.community_id = community_id or settings.circle_community_id
        self.base_url = (base_url or settings.circle_api_url).rstrip("/")
        self.timeout = timeout or settings.circle_timeout_seconds
        self.max_attempts = max_attempts or settings.circle_max_attempts
        self._transport = transport
        self.enabled = bool(self.api_token and self.community_id)
        self.logger = get_logger(__name__)

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """Make an authenticated request to Circle, retrying transient failures.

        Raises:
            CircleError: on a non-retryable error response
            CircleTransientError: when retries are exhausted
        """
        if not self.enabled:
            raise CircleError("Circle integration is not configured")

        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(CircleTransientError),
            reraise=True,
        ):
            with attempt:
                try:
                    async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                        response = await client.request(
                            method,
                            url,
                            headers=headers,
                            json=json_data,
                            params=params,
                        )
                except httpx.HTTPError as e:
                    raise CircleTransientError(f"Transport error: {e}") from e

                if response.status_code == 429 or response.status_code >= 500:
                    raise CircleTransientError(
                        f"API error: {response.status_code}", response.status_code
                    )
                if response.status_code >= 400:
                    raise CircleError(f"API error: {response.text}", response.status_code)

                if response.content:
                    return response.json()
                return {}
        return {}  # pragma: no cover  (AsyncRetrying always yields at least once)

    def _failure(self, operation: str, error: CircleError, **context) -> Outcome:
        if error.status_code == 404:
            self.logger.info("circle_not_found", operation=operation, **context)
            return Outcome.NOT_FOUND
        self.logger.warning(
            "circle_unreachable",
            operation=operation,
            error=error.message,
            status_code=error.status_code,
            **context,
        )
        return Outcome.UNREACHABLE

    async def find_member_by_email(self, email: str) -> MemberLookup:
        """Look up a community member by email."""
        try:
            data = await self._request(
                "GET",
                "community_members",
                params={"email": email, "community_id": self.community_id},
            )
        except CircleError as e:
            return MemberLookup(self._failure("find_member_by_email", e))

        wanted = email.strip().lower()
        for raw in extract_member_list(data):
            member = normalize_member(raw)
            # Search endpoints can match loosely; insist on the exact address when present
            if member and (member.email is None or member.email == wanted):
                return MemberLookup(Outcome.OK, member)
        return MemberLookup(Outcome.NOT_FOUND)

    async def _fetch_member(self, member_id: int) -> MemberRef | None:
        data = await self._request("GET", f"community_members/{member_id}")
        return normalize_member(data)

    async def _write_tags(self, member_id: int, tag_ids: Iterable[int]) -> None:
        await self._request(
            "PATCH",
            f"community_members/{member_id}",
            json_data={
                "community_id": self.community_id,
                "member_tag_ids": sorted(set(tag_ids)),
            },
        )

    async def add_tags(self, member: MemberRef, tag_ids: Iterable[int]) -> Outcome:
        """Add tags without touching the member's other tags."""
        wanted = set(tag_ids)
        try:
            current = await self._fetch_member(member.id)
            if current is None:
                return Outcome.NOT_FOUND
            if wanted <= current.tag_ids:
                self.logger.debug("circle_tags_already_present", member_id=member.id, tag_ids=sorted(wanted))
                return Outcome.OK
            await self._write_tags(member.id, current.tag_ids | wanted)
        except CircleError as e:
            return self._failure("add_tags", e, member_id=member.id)

        self.logger.info("circle_tags_added", member_id=member.id, tag_ids=sorted(wanted))
        return Outcome.OK

    async def remove_tag(self, member: MemberRef, tag_id: int) -> Outcome:
        """Remove one tag, keeping every other tag."""
        try:
            current = await self._fetch_member(member.id)
            if current is None:
                return Outcome.NOT_FOUND
            if tag_id not in current.tag_ids:
                return Outcome.OK
            await self._write_tags(member.id, current.tag_ids - {tag_id})
        except CircleError as e:
            return self._failure("remove_tag", e, member_id=member.id)

        self.logger.info("circle_tag_removed", member_id=member.id, tag_id=tag_id)
        return Outcome.OK

    async def replace_all_tags(self, member: MemberRef, tag_ids: Iterable[int]) -> Outcome:
        """Overwrite the member's entire tag set. Destroys unrelated tags."""
        tag_ids = sorted(set(tag_ids))
        try:
            await self._write_tags(member.id, tag_ids)
        except CircleError as e:
            return self._failure("replace_all_tags", e, member_id=member.id)

        self.logger.info("circle_tags_replaced", member_id=member.id, tag_ids=tag_ids)
        return Outcome.OK

    async def invite_or_fetch_member(self, email: str) -> InviteOutcome:
        """Return the existing member for ``email`` or invite a new one."""
        lookup = await self.find_member_by_email(email)
        if lookup.outcome == Outcome.UNREACHABLE:
            return InviteOutcome(Outcome.UNREACHABLE)
        if lookup.found:
            return InviteOutcome(Outcome.OK, lookup.member, already_existed=True)

        try:
            data = await self._request(
                "POST",
                "community_members",
                json_data={
                    "community_id": self.community_id,
                    "email": email,
                    "skip_invitation": False,
                },
            )
        except CircleError as e:
            return InviteOutcome(self._failure("invite_member", e))

        member = normalize_member(data)
        if member is None:
            self.logger.warning("circle_invite_unexpected_response", keys=sorted(data))
            return InviteOutcome(Outcome.UNREACHABLE)

        self.logger.info("circle_member_invited", member_id=member.id)
        return InviteOutcome(Outcome.OK, member, already_existed=False)

    async def delete_member(self, member: MemberRef) -> Outcome:
        """Remove the member from the community entirely."""
        try:
            await self._request(
                "DELETE",
                f"community_members/{member.id}",
                params={"community_id": self.community_id},
            )
        except CircleError as e:
            return self._failure("delete_member", e, member_id=member.id)

        self.logger.info("circle_member_deleted", member_id=member.id)
        return Outcome.OK

    async def list_tags(self) -> list[dict[str, Any]] | None:
        """List the community's member tags, or None when Circle is unreachable."""
        try:
            data = await self._request(
                "GET",
                "member_tags",
                params={"community_id": self.community_id},
            )
        except CircleError as e:
            self._failure("list_tags", e)
            return None

        records = data.get("records") if isinstance(data, dict) else data
        return [
            {"id": t.get("id"), "name": t.get("name")}
            for t in records or []
            if isinstance(t, dict)
        ]
