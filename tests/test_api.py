import pytest
from fastapi.testclient import TestClient

from messaging_toolkit.api.app import create_app, status_for
from messaging_toolkit.api.auth.base import USER_ID_HEADER
from messaging_toolkit.errors import (
    DuplicateMessageId,
    EmptyMessageText,
    InsightGenerationFailed,
    MessageNotFound,
    ModelTimeout,
    NotAMember,
    RateLimited,
    StoreUnavailable,
)


@pytest.fixture
def client(controller) -> TestClient:
    return TestClient(create_app(controller))


def as_user(user_id: str) -> dict[str, str]:
    return {USER_ID_HEADER: user_id}


def create_direct(client: TestClient) -> str:
    response = client.post(
        "/conversations", json={"type": "direct", "member_ids": ["alice", "bob"]}, headers=as_user("alice")
    )
    assert response.status_code == 201
    return response.json()["conversation"]["id"]


def test_requests_without_user_are_rejected(client):
    assert client.get("/conversations").status_code == 401


def test_send_and_read_messages(client):
    conversation_id = create_direct(client)

    sent = client.post(
        f"/conversations/{conversation_id}/messages",
        json={"message_id": "m1", "text": "hello bob"},
        headers=as_user("alice"),
    )
    assert sent.status_code == 201
    assert sent.json()["delivery_status"]["bob"]["state"] == "pending"

    window = client.get(f"/conversations/{conversation_id}/messages", headers=as_user("bob"))
    assert [message["id"] for message in window.json()] == ["m1"]

    read = client.post(f"/conversations/{conversation_id}/messages/m1/read", headers=as_user("bob"))
    assert read.json()["delivery_status"]["bob"]["state"] == "read"

    [summary] = client.get("/conversations", headers=as_user("bob")).json()
    assert summary["status"]["unread_count"] == 0
    assert summary["conversation"]["last_message"]["message_id"] == "m1"


def test_create_conversation_with_first_message(client):
    response = client.post(
        "/conversations",
        json={
            "type": "group",
            "member_ids": ["alice", "bob", "carol"],
            "name": "Trip",
            "first_message": {"text": "@bob are you in?"},
        },
        headers=as_user("alice"),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["message"]["text"] == "@bob are you in?"
    assert body["conversation"]["last_message"]["message_id"] == body["message"]["id"]
    [mention] = client.get("/mentions", headers=as_user("bob")).json()
    assert mention["message_id"] == body["message"]["id"]


def test_error_status_codes(client):
    conversation_id = create_direct(client)
    messages = f"/conversations/{conversation_id}/messages"
    client.post(messages, json={"message_id": "m1", "text": "hello"}, headers=as_user("alice"))

    assert client.post(messages, json={"text": "hi"}, headers=as_user("mallory")).status_code == 403
    assert client.post(messages, json={"text": "   "}, headers=as_user("alice")).status_code == 400
    assert client.get("/conversations/missing", headers=as_user("alice")).status_code == 404
    assert client.post(f"{messages}/unknown/read", headers=as_user("bob")).status_code == 404
    assert client.patch(f"{messages}/m1", json={"text": "x"}, headers=as_user("bob")).status_code == 403

    duplicate = client.post(messages, json={"message_id": "m1", "text": "different"}, headers=as_user("alice"))
    assert duplicate.status_code == 409


def test_insight_quota_returns_retry_after(client):
    conversation_id = create_direct(client)
    insights = f"/conversations/{conversation_id}/insights"

    for _ in range(5):
        response = client.post(insights, json={"query": "what did we plan?"}, headers=as_user("alice"))
        assert response.status_code == 200
        assert response.json()["supporting_messages"] == []

    limited = client.post(insights, json={"query": "what did we plan?"}, headers=as_user("alice"))
    assert limited.status_code == 429
    assert 0 < int(limited.headers["Retry-After"]) <= 60
    assert limited.json()["retryAfter"] > 0


def test_typing_roundtrip(client):
    conversation_id = create_direct(client)
    typing = f"/conversations/{conversation_id}/typing"

    assert client.post(typing, json={"is_typing": True}, headers=as_user("bob")).status_code == 204
    assert client.get(typing, headers=as_user("alice")).json() == ["bob"]
    assert client.get(typing, headers=as_user("bob")).json() == []


def test_translate_message(client):
    conversation_id = create_direct(client)
    client.post(
        f"/conversations/{conversation_id}/messages", json={"message_id": "m1", "text": "hello"}, headers=as_user("alice")
    )

    response = client.post(
        f"/conversations/{conversation_id}/messages/m1/translate",
        json={"target_language": "es"},
        headers=as_user("bob"),
    )
    unsupported = client.post(
        f"/conversations/{conversation_id}/messages/m1/translate",
        json={"target_language": "xx"},
        headers=as_user("bob"),
    )

    assert response.json()["translated_text"] == "hola"
    assert unsupported.status_code == 400


def test_history_limit_is_validated(client):
    conversation_id = create_direct(client)
    history = f"/conversations/{conversation_id}/messages/history"
    assert client.get(history, headers=as_user("alice")).json() == []
    assert client.get(history, params={"limit": 0}, headers=as_user("alice")).status_code == 422


@pytest.mark.parametrize("top_k", [0, 21])
def test_search_top_k_is_bounded(client, top_k):
    conversation_id = create_direct(client)
    response = client.post(
        f"/conversations/{conversation_id}/search", json={"query": "dinner", "top_k": top_k}, headers=as_user("alice")
    )
    assert response.status_code == 422


def test_search_accepts_the_largest_top_k(client):
    conversation_id = create_direct(client)
    response = client.post(
        f"/conversations/{conversation_id}/search", json={"query": "dinner", "top_k": 20}, headers=as_user("alice")
    )
    assert response.status_code == 200
    assert response.json() == []


def test_unknown_mention_is_not_found(client):
    assert client.delete("/mentions/missing", headers=as_user("alice")).status_code == 404


@pytest.mark.parametrize(
    "error, status",
    [
        (NotAMember("u", "c"), 403),
        (EmptyMessageText(), 400),
        (MessageNotFound("c", "m"), 404),
        (DuplicateMessageId("c", "m"), 409),
        (RateLimited(retry_after=3), 429),
        (ModelTimeout("slow"), 504),
        (StoreUnavailable("down"), 503),
        (InsightGenerationFailed("bad output"), 502),
        (InsightGenerationFailed("wrapped", cause=StoreUnavailable("down")), 503),
    ],
)
def test_status_mapping(error, status):
    assert status_for(error) == status
