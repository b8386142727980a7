from __future__ import annotations


def _register(client, email: str, name: str, password: str = "password123") -> dict[str, str]:
    response = client.post("/v1/auth/register", json={"email": email, "name": name, "password": password})
    assert response.status_code == 201
    data = response.json()["data"]
    return {"id": data["user"]["id"], "access": data["token"]["accessToken"]}


def _auth_headers(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def test_create_conversation_lists_participants_in_order(client):
    alice = _register(client, "a@x.com", "Alice")
    bob = _register(client, "b@x.com", "Bob")

    create_response = client.post(
        "/v1/conversations",
        json={"participantEmail": "b@x.com"},
        headers=_auth_headers(alice["access"]),
    )
    assert create_response.status_code == 201
    created = create_response.json()["data"]

    assert [participant["email"] for participant in created["participants"]] == ["a@x.com", "b@x.com"]
    assert [participant["userId"] for participant in created["participants"]] == [alice["id"], bob["id"]]
    assert created["lastMessage"] == ""
    assert created["unreadCount"] == 0
    assert created["archived"] is False

    list_response = client.get("/v1/conversations", headers=_auth_headers(bob["access"]))
    assert list_response.status_code == 200
    rows = list_response.json()["data"]
    assert [row["id"] for row in rows] == [created["id"]]


def test_create_conversation_reuses_existing_pair(client):
    alice = _register(client, "a@x.com", "Alice")
    bob = _register(client, "b@x.com", "Bob")

    first = client.post("/v1/conversations", json={"participantEmail": "b@x.com"}, headers=_auth_headers(alice["access"]))
    second = client.post("/v1/conversations", json={"participantEmail": "a@x.com"}, headers=_auth_headers(bob["access"]))

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["data"]["id"] == second.json()["data"]["id"]


def test_create_conversation_rejects_self_and_unknown_participant(client):
    alice = _register(client, "a@x.com", "Alice")

    with_self = client.post("/v1/conversations", json={"participantEmail": "a@x.com"}, headers=_auth_headers(alice["access"]))
    assert with_self.status_code == 400
    assert with_self.json()["error"]["code"] == "invalid_participant"

    unknown = client.post("/v1/conversations", json={"participantEmail": "ghost@x.com"}, headers=_auth_headers(alice["access"]))
    assert unknown.status_code == 404
    assert unknown.json()["error"]["code"] == "participant_not_found"


def test_archive_toggles_and_is_participant_only(client):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    carol = _register(client, "c@x.com", "Carol")

    conversation_id = client.post(
        "/v1/conversations",
        json={"participantEmail": "b@x.com"},
        headers=_auth_headers(alice["access"]),
    ).json()["data"]["id"]

    archived = client.put(f"/v1/conversations/{conversation_id}/archive", headers=_auth_headers(alice["access"]))
    assert archived.status_code == 200
    assert archived.json()["data"]["archived"] is True

    restored = client.put(f"/v1/conversations/{conversation_id}/archive", headers=_auth_headers(alice["access"]))
    assert restored.json()["data"]["archived"] is False

    outsider = client.put(f"/v1/conversations/{conversation_id}/archive", headers=_auth_headers(carol["access"]))
    assert outsider.status_code == 403
    assert outsider.json()["error"]["code"] == "forbidden_conversation"

    missing = client.put("/v1/conversations/does-not-exist/archive", headers=_auth_headers(alice["access"]))
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "conversation_not_found"


def test_message_history_requires_participation(client):
    alice = _register(client, "a@x.com", "Alice")
    _register(client, "b@x.com", "Bob")
    carol = _register(client, "c@x.com", "Carol")

    conversation_id = client.post(
        "/v1/conversations",
        json={"participantEmail": "b@x.com"},
        headers=_auth_headers(alice["access"]),
    ).json()["data"]["id"]

    own = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(alice["access"]))
    assert own.status_code == 200
    assert own.json()["data"]["messages"] == []

    outsider = client.get(f"/v1/conversations/{conversation_id}/messages", headers=_auth_headers(carol["access"]))
    assert outsider.status_code == 403


def test_conversation_routes_require_a_token(client):
    response = client.get("/v1/conversations")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "no_token"
