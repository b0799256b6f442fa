"""Tests for the Circle gateway against a mocked transport."""

import json

import httpx
import pytest

from teamsync.circle.gateway import (
    CircleGateway,
    MemberRef,
    Outcome,
    extract_member_list,
    extract_tag_ids,
    normalize_member,
)
from teamsync.settings import settings


class CircleStub:
    """Routes requests to canned responses and records them."""

    def __init__(self, routes):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        handler = self.routes.get(key)
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(handler):
            return handler(request)
        status, body = handler
        return httpx.Response(status, json=body)

    def bodies(self, method: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == method]


def make_gateway(stub: CircleStub, **kwargs) -> CircleGateway:
    options = {
        "api_token": "token",
        "community_id": 4242,
        "base_url": "https://circle.test/api/admin/v2",
        "max_attempts": 1,
    }
    options.update(kwargs)
    return CircleGateway(transport=httpx.MockTransport(stub), **options)


BASE = "/api/admin/v2"


def test_extract_member_list_shapes():
    assert extract_member_list({"records": [{"id": 1}]}) == [{"id": 1}]
    assert extract_member_list({"community_members": [{"id": 2}, "junk"]}) == [{"id": 2}]
    assert extract_member_list({"other": []}) == []
    assert extract_member_list(None) == []


def test_extract_tag_ids_shapes():
    assert extract_tag_ids({"member_tags": [{"id": 1}, {"id": "2"}]}) == {1, 2}
    assert extract_tag_ids({"member_tag_ids": [3, 4]}) == {3, 4}
    assert extract_tag_ids({}) == frozenset()


def test_normalize_member_signals():
    member = normalize_member({"community_member": {"id": 9, "email": "A@Acme.io", "confirmed_at": "2026-01-01"}})
    assert member.id == 9
    assert member.email == "a@acme.io"
    assert member.confirmed is True
    assert member.accepted_invitation is True

    invited = normalize_member({"id": 10, "accepted_invitation": None})
    assert invited.confirmed is False
    assert invited.accepted_invitation is False

    assert normalize_member({"email": "x@acme.io"}) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["records", "community_members"])
async def test_find_member_by_email_either_shape(key):
    stub = CircleStub({
        ("GET", f"{BASE}/community_members"): (200, {key: [
            {"id": 7, "email": "someone.else@acme.io"},
            {"id": 8, "email": "Alice@Acme.io", "member_tags": [{"id": 11}]},
        ]}),
    })

    lookup = await make_gateway(stub).find_member_by_email("alice@acme.io")

    assert lookup.found
    assert lookup.member.id == 8
    assert lookup.member.tag_ids == {11}
    request = stub.requests[0]
    assert request.url.params["email"] == "alice@acme.io"
    assert request.url.params["community_id"] == "4242"
    assert request.headers["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_find_member_not_found():
    stub = CircleStub({("GET", f"{BASE}/community_members"): (200, {"records": []})})

    lookup = await make_gateway(stub).find_member_by_email("ghost@acme.io")

    assert lookup.outcome == Outcome.NOT_FOUND
    assert not lookup.found


@pytest.mark.asyncio
async def test_add_tags_merges_with_existing_tags():
    stub = CircleStub({
        ("GET", f"{BASE}/community_members/8"): (200, {"id": 8, "member_tags": [{"id": 11}, {"id": 12}]}),
        ("PATCH", f"{BASE}/community_members/8"): (200, {"id": 8}),
    })

    outcome = await make_gateway(stub).add_tags(MemberRef(id=8), [1001])

    assert outcome == Outcome.OK
    assert stub.bodies("PATCH") == [{"community_id": 4242, "member_tag_ids": [11, 12, 1001]}]


@pytest.mark.asyncio
async def test_add_tags_already_present_skips_write():
    stub = CircleStub({
        ("GET", f"{BASE}/community_members/8"): (200, {"id": 8, "member_tag_ids": [1001, 12]}),
    })

    outcome = await make_gateway(stub).add_tags(MemberRef(id=8), [1001])

    assert outcome == Outcome.OK
    assert [r.method for r in stub.requests] == ["GET"]


@pytest.mark.asyncio
async def test_remove_tag_keeps_other_tags():
    stub = CircleStub({
        ("GET", f"{BASE}/community_members/8"): (200, {"id": 8, "member_tag_ids": [11, 1001]}),
        ("PATCH", f"{BASE}/community_members/8"): (200, {}),
    })

    outcome = await make_gateway(stub).remove_tag(MemberRef(id=8), 1001)

    assert outcome == Outcome.OK
    assert stub.bodies("PATCH") == [{"community_id": 4242, "member_tag_ids": [11]}]


@pytest.mark.asyncio
async def test_replace_all_tags_overwrites():
    stub = CircleStub({("PATCH", f"{BASE}/community_members/8"): (200, {})})

    outcome = await make_gateway(stub).replace_all_tags(MemberRef(id=8), [228295])

    assert outcome == Outcome.OK
    assert stub.bodies("PATCH") == [{"community_id": 4242, "member_tag_ids": [228295]}]
    assert [r.method for r in stub.requests] == ["PATCH"]


@pytest.mark.asyncio
async def test_invite_or_fetch_returns_existing_member():
    stub = CircleStub({
        ("GET", f"{BASE}/community_members"): (200, {"records": [{"id": 8, "email": "bob@acme.io"}]}),
    })

    result = await make_gateway(stub).invite_or_fetch_member("bob@acme.io")

    assert result.outcome == Outcome.OK
    assert result.already_existed is True
    assert result.member.id == 8
    assert stub.bodies("POST") == []


@pytest.mark.asyncio
async def test_invite_or_fetch_invites_new_member():
    stub = CircleStub({
        ("GET", f"{BASE}/community_members"): (200, {"records": []}),
        ("POST", f"{BASE}/community_members"): (201, {"community_member": {"id": 31, "email": "new@acme.io"}}),
    })

    result = await make_gateway(stub).invite_or_fetch_member("new@acme.io")

    assert result.outcome == Outcome.OK
    assert result.already_existed is False
    assert result.member.id == 31
    assert stub.bodies("POST") == [{"community_id": 4242, "email": "new@acme.io", "skip_invitation": False}]


@pytest.mark.asyncio
async def test_invite_or_fetch_unreachable_does_not_invite():
    stub = CircleStub({("GET", f"{BASE}/community_members"): (503, {})})

    result = await make_gateway(stub).invite_or_fetch_member("new@acme.io")

    assert result.outcome == Outcome.UNREACHABLE
    assert stub.bodies("POST") == []


@pytest.mark.asyncio
async def test_server_error_is_unreachable():
    stub = CircleStub({("PATCH", f"{BASE}/community_members/8"): (500, {"error": "boom"})})

    assert await make_gateway(stub).replace_all_tags(MemberRef(id=8), [1]) == Outcome.UNREACHABLE


@pytest.mark.asyncio
async def test_missing_member_is_not_found():
    stub = CircleStub({})

    assert await make_gateway(stub).add_tags(MemberRef(id=99), [1]) == Outcome.NOT_FOUND
    assert await make_gateway(stub).delete_member(MemberRef(id=99)) == Outcome.NOT_FOUND


@pytest.mark.asyncio
async def test_transport_error_is_unreachable():
    def explode(request):
        raise httpx.ConnectError("connection refused", request=request)

    stub = CircleStub({("GET", f"{BASE}/community_members"): explode})

    lookup = await make_gateway(stub).find_member_by_email("a@acme.io")

    assert lookup.outcome == Outcome.UNREACHABLE


@pytest.mark.asyncio
async def test_unconfigured_gateway_is_unreachable_without_requests(monkeypatch):
    monkeypatch.setattr(settings, "circle_api_token", None)
    stub = CircleStub({})
    gateway = CircleGateway(api_token=None, community_id=4242, transport=httpx.MockTransport(stub))

    assert gateway.enabled is False
    assert (await gateway.find_member_by_email("a@acme.io")).outcome == Outcome.UNREACHABLE
    assert stub.requests == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried():
    responses = iter([
        httpx.Response(429, json={}),
        httpx.Response(200, json={"records": [{"id": 5, "email": "a@acme.io"}]}),
    ])
    stub = CircleStub({("GET", f"{BASE}/community_members"): lambda request: next(responses)})

    lookup = await make_gateway(stub, max_attempts=2).find_member_by_email("a@acme.io")

    assert lookup.found
    assert len(stub.requests) == 2


@pytest.mark.asyncio
async def test_client_error_is_not_retried():
    stub = CircleStub({("PATCH", f"{BASE}/community_members/8"): (422, {"message": "bad"})})

    outcome = await make_gateway(stub, max_attempts=3).replace_all_tags(MemberRef(id=8), [1])

    assert outcome == Outcome.UNREACHABLE
    assert len(stub.requests) == 1


@pytest.mark.asyncio
async def test_delete_member():
    stub = CircleStub({("DELETE", f"{BASE}/community_members/8"): (200, {})})

    assert await make_gateway(stub).delete_member(MemberRef(id=8)) == Outcome.OK
    assert stub.requests[0].url.params["community_id"] == "4242"


@pytest.mark.asyncio
async def test_list_tags():
    stub = CircleStub({
        ("GET", f"{BASE}/member_tags"): (200, {"records": [
            {"id": 227715, "name": "TeamsLeader", "color": "blue"},
            {"id": 228295, "name": "FreeAccess"},
        ]}),
    })

    assert await make_gateway(stub).list_tags() == [
        {"id": 227715, "name": "TeamsLeader"},
        {"id": 228295, "name": "FreeAccess"},
    ]


@pytest.mark.asyncio
async def test_list_tags_unreachable():
    stub = CircleStub({("GET", f"{BASE}/member_tags"): (502, {})})

    assert await make_gateway(stub).list_tags() is None
