"""Shared fixtures.

Environment is set before any teamsync import so the settings singleton
picks up test values.
"""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("CIRCLE_API_TOKEN", "circle-test-token")
os.environ.setdefault("CIRCLE_COMMUNITY_ID", "4242")
os.environ.setdefault("SUBSCRIPTION_MEMBER_TAG_ID", "1001")
os.environ.setdefault("COURSE_MEMBER_TAG_ID", "1002")
os.environ.setdefault("SITE_URL", "https://community.acme.io")

from typing import Any, Iterable  # noqa: E402

import pytest  # noqa: E402

from teamsync.circle.gateway import InviteOutcome, MemberLookup, MemberRef, Outcome  # noqa: E402
from teamsync.storage.db import Database  # noqa: E402
from teamsync.teams.ledger import MembershipLedger  # noqa: E402
from teamsync.teams.models import AccessType, InviteMode  # noqa: E402


class FakeGateway:
    """In-memory TagGateway that records every call."""

    def __init__(self):
        self.members: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple] = []
        self.unreachable = False
        self.failing_emails: set[str] = set()
        self._next_id = 5000

    # Test helpers

    def add_member(
        self,
        email: str,
        tag_ids: Iterable[int] = (),
        confirmed: bool = False,
        accepted_invitation: bool = False,
    ) -> int:
        self._next_id += 1
        self.members[email.lower()] = {
            "id": self._next_id,
            "tags": set(tag_ids),
            "confirmed": confirmed,
            "accepted_invitation": accepted_invitation,
        }
        return self._next_id

    def tags_of(self, email: str) -> set[int]:
        return self.members[email.lower()]["tags"]

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def _ref(self, email: str) -> MemberRef:
        rec = self.members[email]
        return MemberRef(
            id=rec["id"],
            email=email,
            tag_ids=frozenset(rec["tags"]),
            confirmed=rec["confirmed"],
            accepted_invitation=rec["accepted_invitation"] or rec["confirmed"],
        )

    def _by_id(self, member_id: int) -> dict[str, Any] | None:
        for rec in self.members.values():
            if rec["id"] == member_id:
                return rec
        return None

    # TagGateway

    async def find_member_by_email(self, email: str) -> MemberLookup:
        self.calls.append(("find_member_by_email", email))
        if email.lower() in self.failing_emails:
            raise RuntimeError("boom")
        if self.unreachable:
            return MemberLookup(Outcome.UNREACHABLE)
        if email.lower() not in self.members:
            return MemberLookup(Outcome.NOT_FOUND)
        return MemberLookup(Outcome.OK, self._ref(email.lower()))

    async def add_tags(self, member: MemberRef, tag_ids: Iterable[int]) -> Outcome:
        tag_ids = set(tag_ids)
        self.calls.append(("add_tags", member.id, tag_ids))
        if self.unreachable:
            return Outcome.UNREACHABLE
        rec = self._by_id(member.id)
        if rec is None:
            return Outcome.NOT_FOUND
        rec["tags"] |= tag_ids
        return Outcome.OK

    async def remove_tag(self, member: MemberRef, tag_id: int) -> Outcome:
        self.calls.append(("remove_tag", member.id, tag_id))
        if self.unreachable:
            return Outcome.UNREACHABLE
        rec = self._by_id(member.id)
        if rec is None:
            return Outcome.NOT_FOUND
        rec["tags"].discard(tag_id)
        return Outcome.OK

    async def replace_all_tags(self, member: MemberRef, tag_ids: Iterable[int]) -> Outcome:
        tag_ids = set(tag_ids)
        self.calls.append(("replace_all_tags", member.id, tag_ids))
        if self.unreachable:
            return Outcome.UNREACHABLE
        rec = self._by_id(member.id)
        if rec is None:
            return Outcome.NOT_FOUND
        rec["tags"] = tag_ids
        return Outcome.OK

    async def invite_or_fetch_member(self, email: str) -> InviteOutcome:
        self.calls.append(("invite_or_fetch_member", email))
        if self.unreachable:
            return InviteOutcome(Outcome.UNREACHABLE)
        email = email.lower()
        if email in self.members:
            return InviteOutcome(Outcome.OK, self._ref(email), already_existed=True)
        self.add_member(email)
        return InviteOutcome(Outcome.OK, self._ref(email), already_existed=False)

    async def delete_member(self, member: MemberRef) -> Outcome:
        self.calls.append(("delete_member", member.id))
        for email, rec in list(self.members.items()):
            if rec["id"] == member.id:
                del self.members[email]
                return Outcome.OK
        return Outcome.NOT_FOUND

    async def list_tags(self) -> list[dict[str, Any]] | None:
        self.calls.append(("list_tags",))
        return [{"id": 1001, "name": "TeamsMember"}]


@pytest.fixture
def database(tmp_path):
    """A fresh SQLite database per test."""
    database = Database(f"sqlite:///{tmp_path / 'teamsync-test.db'}")
    database.create_tables()
    yield database
    database.engine.dispose()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def make_team(database):
    """Factory creating a team and returning (team_id, token)."""

    def _make_team(
        seat_limit: int = 5,
        invite_mode: InviteMode = InviteMode.SHAREABLE,
        access_type: AccessType = AccessType.SUBSCRIPTION,
        leader_email: str = "leader@acme.io",
        subscription_id: str = "sub_team_1",
    ) -> tuple[int, str]:
        with database.session() as session:
            team, invite = MembershipLedger(session).create_team(
                leader_email=leader_email,
                stripe_subscription_id=subscription_id,
                stripe_customer_id="cus_1",
                access_type=access_type,
                seat_limit=seat_limit,
                invite_mode=invite_mode,
            )
            return team.id, invite.token

    return _make_team
