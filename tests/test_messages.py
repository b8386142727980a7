from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from app.core.errors import APIError
from app.models import Conversation, Message
from app.services import message_service
from app.services.conversation_service import summarize_content


def _register(client, email: str, name: str, password: str = "password123") -> dict[str, str]:
    response = client.post("/v1/auth/register", json={"email": email, "name": name, "password": password})
    assert response.status_code == 201
    data = response.json()["data"]
    return {"id": data["user"]["id"], "access": data["token"]["accessToken"]}


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def _conversation(client, owner: dict[str, str], participant_email: str) -> str:
    response = client.post(
        "/v1/conversations",
        json={"participantEmail": participant_email},
        headers=_auth_headers(owner["access"]),
    )
    assert response.status_code in (200, 201)
    return response.json()["data"]["id"]


def test_summarize_content_truncates_long_messages():
    assert summarize_content("short", 30) == "short"
    assert summarize_content("x" * 30, 30) == "x" * 30
    assert summarize_content("Hello there, how is training going today", 30) == "Hello there, how is training g..."


def test_counts_as_unread_skips_self_addressed_messages():
    assert message_service.counts_as_unread("a@x.com", "b@x.com")
    assert not message_service.counts_as_unread("a@x.com", "a@x.com")


def test_resolve_timestamp_trusts_client_within_skew():
    received_at = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    skew = timedelta(minutes=5)

    near = received_at - timedelta(seconds=30)
    assert message_service.resolve_timestamp(
        client_timestamp=near, received_at=received_at, last_message_time=None, max_skew=skew
    ) == near

    far = received_at - timedelta(days=2)
    assert message_service.resolve_timestamp(
        client_timestamp=far, received_at=received_at, last_message_time=None, max_skew=skew
    ) == received_at

    assert message_service.resolve_timestamp(
        client_timestamp=None, received_at=received_at, last_message_time=None, max_skew=skew
    ) == received_at


def test_resolve_timestamp_never_moves_before_last_message():
    received_at = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
    last_message_time = received_at + timedelta(seconds=10)

    resolved = message_service.resolve_timestamp(
        client_timestamp=received_at - timedelta(seconds=5),
        received_at=received_at,
        last_message_time=last_message_time.replace(tzinfo=None),
        max_skew=timedelta(minutes=5),
    )
    assert resolved == last_message_time


def test_create_message_updates_conversation_summary(client, session_factory):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    conversation_id = _conversation(client, alice, "b@x.com")
    sent_at = datetime.now(UTC).replace(microsecond=0) + timedelta(seconds=5)

    with session_factory() as db:
        message = message_service.create_message(
            db,
            conversation_id=conversation_id,
            sender="a@x.com",
            receiver="b@x.com",
            content="Hello there, how is training going today",
            client_timestamp=sent_at,
            received_at=sent_at + timedelta(seconds=1),
        )

    assert message["conversationId"] == conversation_id
    assert message["seq"] == 1
    assert message["read"] is False
    assert datetime.fromisoformat(message["timestamp"].replace("Z", "+00:00")) == sent_at

    with session_factory() as db:
        conversation = db.get(Conversation, conversation_id)
        assert conversation is not None
        assert conversation.last_message == "Hello there, how is training g..."
        assert conversation.last_message_time.replace(tzinfo=UTC) == sent_at
        assert conversation.unread_count == 1

    listing = client.get("/v1/conversations", headers=_auth_headers(alice["access"])).json()["data"]
    assert listing[0]["lastMessage"] == "Hello there, how is training g..."
    assert listing[0]["unreadCount"] == 1


def test_self_addressed_message_is_not_counted_unread(client, session_factory):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    conversation_id = _conversation(client, alice, "b@x.com")

    with session_factory() as db:
        message_service.create_message(
            db,
            conversation_id=conversation_id,
            sender="a@x.com",
            receiver="a@x.com",
            content="note to self",
        )

    with session_factory() as db:
        conversation = db.get(Conversation, conversation_id)
        assert conversation is not None
        assert conversation.last_message == "note to self"
        assert conversation.unread_count == 0


def test_create_message_rejects_outside_parties(client, session_factory):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    _register(client, "c@x.com", "Carol")
    conversation_id = _conversation(client, alice, "b@x.com")

    with session_factory() as db:
        with pytest.raises(APIError) as sender_error:
            message_service.create_message(
                db,
                conversation_id=conversation_id,
                sender="c@x.com",
                receiver="b@x.com",
                content="hi",
            )
        assert sender_error.value.code == "forbidden_conversation"

        with pytest.raises(APIError) as missing_error:
            message_service.create_message(
                db,
                conversation_id="missing",
                sender="a@x.com",
                receiver="b@x.com",
                content="hi",
            )
        assert missing_error.value.code == "conversation_not_found"

    with session_factory() as db:
        assert db.query(Message).count() == 0


def test_mark_conversation_read_is_idempotent(client, session_factory):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    conversation_id = _conversation(client, alice, "b@x.com")

    with session_factory() as db:
        for content in ("one", "two"):
            message_service.create_message(
                db,
                conversation_id=conversation_id,
                sender="a@x.com",
                receiver="b@x.com",
                content=content,
            )

    with session_factory() as db:
        assert message_service.mark_conversation_read(db, conversation_id=conversation_id, reader="b@x.com") == 2
    with session_factory() as db:
        assert message_service.mark_conversation_read(db, conversation_id=conversation_id, reader="b@x.com") == 0
        conversation = db.get(Conversation, conversation_id)
        assert conversation is not None
        assert conversation.unread_count == 0
        assert all(message.read for message in db.query(Message).all())


def test_message_history_is_ordered_by_sequence(client, session_factory):
    alice = _register(client, "a@x.com", "Alice")
    bob = _register(client, "b@x.com", "Bob")
    conversation_id = _conversation(client, alice, "b@x.com")

    with session_factory() as db:
        for index in range(3):
            message_service.create_message(
                db,
                conversation_id=conversation_id,
                sender="a@x.com",
                receiver="b@x.com",
                content=f"message {index}",
            )

    response = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(bob["access"]))
    assert response.status_code == 200
    messages = response.json()["data"]["messages"]
    assert [message["seq"] for message in messages] == [1, 2, 3]
    assert [message["content"] for message in messages] == ["message 0", "message 1", "message 2"]

    after = client.get(
        f"/v1/conversations/{conversation_id}/messages?after_seq=2",
        headers=_auth_headers(bob["access"]),
    ).json()["data"]["messages"]
    assert [message["seq"] for message in after] == [3]


def test_sender_acknowledging_read_keeps_unread_count(client, session_factory):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    conversation_id = _conversation(client, alice, "b@x.com")

    with session_factory() as db:
        message_service.create_message(
            db,
            conversation_id=conversation_id,
            sender="a@x.com",
            receiver="b@x.com",
            content="see you at the track",
        )

    with session_factory() as db:
        assert message_service.mark_conversation_read(db, conversation_id=conversation_id, reader="a@x.com") == 0

    with session_factory() as db:
        conversation = db.get(Conversation, conversation_id)
        assert conversation is not None
        assert conversation.unread_count == 1
        assert [message.read for message in db.query(Message).all()] == [False]

    with session_factory() as db:
        assert message_service.mark_conversation_read(db, conversation_id=conversation_id, reader="b@x.com") == 1
        conversation = db.get(Conversation, conversation_id)
        assert conversation is not None
        assert conversation.unread_count == 0
