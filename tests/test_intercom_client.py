"""Tests for the Intercom REST client."""

import json
from datetime import UTC, datetime

import httpx
import pytest

from src.errors import IntercomError
from src.intercom.client import IntercomClient

# -- Helpers -----------------------------------------------------------------


class _Recorder:
    """MockTransport handler that replays canned responses per (method, path)."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response | Exception]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.routes.get((request.method, request.url.path))
        if result is None:
            return httpx.Response(404, json={"type": "error.list"})
        if isinstance(result, Exception):
            raise result
        return result

    def body(self, index: int) -> dict:
        return json.loads(self.requests[index].content)


def _client(routes) -> tuple[IntercomClient, _Recorder]:
    recorder = _Recorder(routes)
    client = IntercomClient(
        "tok-123",
        base_url="https://intercom.test",
        version="2.11",
        timeout=5,
        transport=httpx.MockTransport(recorder),
    )
    return client, recorder


PROFILE = {"name": "Ada", "username": "ada", "group_id": "-100", "group_name": "Acme"}


# -- Request basics ----------------------------------------------------------


async def test_sends_auth_and_version_headers() -> None:
    client, rec = _client({("GET", "/conversations/c1"): httpx.Response(200, json={"id": "c1"})})

    assert await client.get_conversation("c1") == {"id": "c1"}

    headers = rec.requests[0].headers
    assert headers["Authorization"] == "Bearer tok-123"
    assert headers["Intercom-Version"] == "2.11"
    assert headers["Accept"] == "application/json"
    await client.aclose()


async def test_error_status_raises_with_body() -> None:
    client, _ = _client(
        {("GET", "/conversations/c1"): httpx.Response(500, json={"errors": ["boom"]})}
    )

    with pytest.raises(IntercomError) as excinfo:
        await client.get_conversation("c1")

    assert excinfo.value.status == 500
    assert excinfo.value.body == {"errors": ["boom"]}


async def test_network_failure_raises_without_status() -> None:
    client, _ = _client({("GET", "/conversations/c1"): httpx.ConnectTimeout("timed out")})

    with pytest.raises(IntercomError) as excinfo:
        await client.get_conversation("c1")

    assert excinfo.value.status is None


# -- Contacts ----------------------------------------------------------------


async def test_creates_contact() -> None:
    client, rec = _client({("POST", "/contacts"): httpx.Response(200, json={"id": "ct-1"})})

    assert await client.resolve_or_create_contact("42", PROFILE) == "ct-1"

    body = rec.body(0)
    assert body["role"] == "user"
    assert body["external_id"] == "42"
    assert body["name"] == "Ada"
    assert body["custom_attributes"]["telegram_group_id"] == "-100"
    assert body["custom_attributes"]["telegram_username"] == "ada"


async def test_conflict_searches_and_updates() -> None:
    client, rec = _client(
        {
            ("POST", "/contacts"): httpx.Response(409, json={"type": "error.list"}),
            ("POST", "/contacts/search"): httpx.Response(
                200, json={"total_count": 1, "data": [{"id": "ct-old"}]}
            ),
            ("PUT", "/contacts/ct-old"): httpx.Response(200, json={"id": "ct-old"}),
        }
    )

    assert await client.resolve_or_create_contact("42", PROFILE) == "ct-old"

    assert [r.method for r in rec.requests] == ["POST", "POST", "PUT"]
    search = rec.body(1)["query"]["value"]
    assert {"field": "external_id", "operator": "=", "value": "42"} in search
    assert rec.body(2)["custom_attributes"]["telegram_group_name"] == "Acme"


async def test_conflict_without_search_hit_raises() -> None:
    client, _ = _client(
        {
            ("POST", "/contacts"): httpx.Response(409, json={}),
            ("POST", "/contacts/search"): httpx.Response(200, json={"total_count": 0, "data": []}),
        }
    )

    with pytest.raises(IntercomError) as excinfo:
        await client.resolve_or_create_contact("42", PROFILE)
    assert excinfo.value.is_conflict


async def test_other_create_errors_propagate() -> None:
    client, rec = _client({("POST", "/contacts"): httpx.Response(401, json={})})

    with pytest.raises(IntercomError) as excinfo:
        await client.resolve_or_create_contact("42", PROFILE)

    assert excinfo.value.status == 401
    assert len(rec.requests) == 1


# -- Conversations -----------------------------------------------------------


async def test_create_conversation_tags_group() -> None:
    client, rec = _client(
        {
            ("POST", "/conversations"): httpx.Response(
                200, json={"conversation_id": "conv-1", "id": "msg-1"}
            ),
            ("PUT", "/conversations/conv-1"): httpx.Response(200, json={"id": "conv-1"}),
        }
    )
    started = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    conversation_id = await client.create_conversation(
        "ct-1",
        "ada",
        "first message",
        {"group_id": "-100", "group_name": "Acme", "first_message_time": started},
    )

    assert conversation_id == "conv-1"
    assert rec.body(0) == {"from": {"type": "user", "id": "ct-1"}, "body": "first message"}
    attributes = rec.body(1)["custom_attributes"]
    assert attributes["telegram_group_id"] == "-100"
    assert attributes["telegram_group_name"] == "Acme"
    assert attributes["conversation_start_time"] == started.isoformat()


async def test_create_conversation_survives_tagging_failure() -> None:
    client, _ = _client(
        {
            ("POST", "/conversations"): httpx.Response(200, json={"id": "conv-2"}),
            ("PUT", "/conversations/conv-2"): httpx.Response(400, json={}),
        }
    )

    conversation_id = await client.create_conversation(
        "ct-1", "ada", "hi", {"group_id": "-100", "group_name": "Acme"}
    )

    assert conversation_id == "conv-2"


async def test_send_reply_posts_user_comment() -> None:
    client, rec = _client(
        {("POST", "/conversations/conv-1/reply"): httpx.Response(200, json={"id": "conv-1"})}
    )

    await client.send_reply("conv-1", "hello", "ct-1")

    assert rec.body(0) == {
        "message_type": "comment",
        "type": "user",
        "intercom_user_id": "ct-1",
        "body": "hello",
    }


async def test_send_reply_not_found() -> None:
    client, _ = _client({})

    with pytest.raises(IntercomError) as excinfo:
        await client.send_reply("conv-1", "hello", "ct-1")
    assert excinfo.value.is_not_found


async def test_find_conversation_by_group_id() -> None:
    client, rec = _client(
        {
            ("POST", "/conversations/search"): httpx.Response(
                200, json={"total_count": 1, "conversations": [{"id": "conv-7"}]}
            )
        }
    )

    found = await client.find_conversation_by_group_id("-100")

    assert found == {"id": "conv-7"}
    assert rec.body(0)["query"] == {
        "field": "custom_attributes.telegram_group_id",
        "operator": "=",
        "value": "-100",
    }


async def test_find_conversation_no_match() -> None:
    client, _ = _client(
        {
            ("POST", "/conversations/search"): httpx.Response(
                200, json={"total_count": 0, "conversations": []}
            )
        }
    )
    assert await client.find_conversation_by_group_id("-100") is None


async def test_find_conversation_error_returns_none() -> None:
    client, _ = _client({("POST", "/conversations/search"): httpx.Response(503, text="down")})
    assert await client.find_conversation_by_group_id("-100") is None
