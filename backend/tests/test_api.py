from fastapi.testclient import TestClient

from conftest import wait_for
from groupchat.config import Settings
from groupchat.main import create_app


def _create_group(client, headers, name="Team"):
    res = client.post("/api/groups", json={"name": name, "description": "d"}, headers=headers)
    assert res.status_code == 201
    return res.json()


def _wait_for_members(app, room_id, count):
    wait_for(lambda: len(app.state.directory.members_of(room_id)) == count)


def test_healthcheck(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "connections": 0, "rooms": 0}


def test_requests_need_a_token(client):
    assert client.get("/api/groups").status_code == 401
    assert client.get("/api/groups", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_sign_up_and_fetch_current_user(client):
    res = client.post("/api/auth/sign-up", json={"email": "Ada@Example.com", "password": "correct horse"})
    assert res.status_code == 201
    body = res.json()
    assert body["user"]["email"] == "ada@example.com"

    headers = {"Authorization": f"Bearer {body['token']}"}
    me = client.get("/api/auth/user", headers=headers)
    assert me.status_code == 200
    assert me.json()["username"] == "ada"
    assert client.get("/api/me", headers=headers).json()["id"] == body["user"]["id"]

    again = client.post("/api/auth/sign-in", json={"email": "ada@example.com", "password": "correct horse"})
    assert again.status_code == 200
    wrong = client.post("/api/auth/sign-in", json={"email": "ada@example.com", "password": "wrong pass"})
    assert wrong.status_code == 401


def test_group_lifecycle(client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    guest = make_user("guest@example.com")
    group = _create_group(client, auth_headers(owner))
    assert group["avatarUrl"] is None
    assert "createdAt" in group

    detail = client.get(f"/api/groups/{group['id']}", headers=auth_headers(guest)).json()
    assert [(m["userId"], m["isAdmin"]) for m in detail["members"]] == [(owner.id, True)]

    first = client.post(f"/api/groups/{group['id']}/join", headers=auth_headers(guest))
    second = client.post(f"/api/groups/{group['id']}/join", headers=auth_headers(guest))
    assert first.json() == {"message": "Joined group"}
    assert second.json() == {"message": "Already a member"}

    listed = client.get("/api/groups", headers=auth_headers(guest)).json()
    assert [g["id"] for g in listed] == [group["id"]]


def test_missing_group_is_404(client, make_user, auth_headers):
    user = make_user("u@example.com")
    assert client.get("/api/groups/999", headers=auth_headers(user)).status_code == 404
    assert client.post("/api/groups/999/join", headers=auth_headers(user)).status_code == 404


def test_messages_require_membership(client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    outsider = make_user("outsider@example.com")
    group = _create_group(client, auth_headers(owner))

    url = f"/api/groups/{group['id']}/messages"
    assert client.get(url, headers=auth_headers(outsider)).status_code == 403
    assert client.post(url, json={"content": "hi"}, headers=auth_headers(outsider)).status_code == 403
    assert client.get(url, headers=auth_headers(owner)).json() == []


def test_non_member_with_bad_body_is_still_403(client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    outsider = make_user("outsider@example.com")
    group = _create_group(client, auth_headers(owner))
    url = f"/api/groups/{group['id']}/messages"

    res = client.post(url, json={"content": 5}, headers=auth_headers(outsider))
    assert res.status_code == 403
    assert client.get(url, headers=auth_headers(owner)).json() == []


def test_invalid_message_body_is_400(client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    group = _create_group(client, auth_headers(owner))
    url = f"/api/groups/{group['id']}/messages"

    assert client.post(url, json={"text": "hi"}, headers=auth_headers(owner)).status_code == 400
    assert client.post(url, json={"content": 5}, headers=auth_headers(owner)).status_code == 400
    assert client.post(url, content=b"not json", headers=auth_headers(owner)).status_code == 400


def test_send_and_history(client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    group = _create_group(client, auth_headers(owner))
    url = f"/api/groups/{group['id']}/messages"

    res = client.post(url, json={"content": "hello", "imageUrl": "https://img/x.png"}, headers=auth_headers(owner))
    assert res.status_code == 201
    sent = res.json()
    assert sent["content"] == "hello"
    assert sent["imageUrl"] == "https://img/x.png"
    assert sent["senderId"] == owner.id

    client.post(url, json={"content": "world"}, headers=auth_headers(owner))
    history = client.get(url, headers=auth_headers(owner)).json()
    assert [m["content"] for m in history] == ["hello", "world"]
    assert history[0]["sender"]["email"] == "owner@example.com"


def test_live_delivery_scenario(app, client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    headers = auth_headers(owner)
    seven = _create_group(client, headers, "seven")
    nine = _create_group(client, headers, "nine")

    with client.websocket_connect("/ws") as ws_a, client.websocket_connect("/ws") as ws_b, client.websocket_connect(
        "/ws"
    ) as ws_c:
        ws_a.send_json({"type": "joinRoom", "groupId": seven["id"]})
        ws_b.send_json({"type": "joinRoom", "payload": {"groupId": seven["id"]}})
        ws_c.send_json({"type": "joinRoom", "groupId": nine["id"]})
        _wait_for_members(app, seven["id"], 2)
        _wait_for_members(app, nine["id"], 1)

        res = client.post(f"/api/groups/{seven['id']}/messages", json={"content": "hi"}, headers=headers)
        assert res.status_code == 201

        for ws in (ws_a, ws_b):
            frame = ws.receive_json()
            assert frame["type"] == "message"
            assert frame["data"]["id"] == res.json()["id"]
            assert frame["data"]["content"] == "hi"
            assert frame["data"]["sender"]["id"] == owner.id

        client.post(f"/api/groups/{nine['id']}/messages", json={"content": "nine only"}, headers=headers)
        # the first thing C ever sees is room nine's message
        assert ws_c.receive_json()["data"]["content"] == "nine only"


def test_switching_rooms_stops_old_feed(app, client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    headers = auth_headers(owner)
    seven = _create_group(client, headers, "seven")
    eight = _create_group(client, headers, "eight")

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "joinRoom", "groupId": seven["id"]})
        _wait_for_members(app, seven["id"], 1)
        ws.send_json({"type": "joinRoom", "groupId": eight["id"]})
        _wait_for_members(app, eight["id"], 1)
        assert app.state.directory.members_of(seven["id"]) == frozenset()

        client.post(f"/api/groups/{seven['id']}/messages", json={"content": "old"}, headers=headers)
        client.post(f"/api/groups/{eight['id']}/messages", json={"content": "new"}, headers=headers)
        assert ws.receive_json()["data"]["content"] == "new"


def test_closed_socket_is_forgotten(app, client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    headers = auth_headers(owner)
    group = _create_group(client, headers)

    with client.websocket_connect("/ws") as stays:
        stays.send_json({"type": "joinRoom", "groupId": group["id"]})
        with client.websocket_connect("/ws") as leaves:
            leaves.send_json({"type": "joinRoom", "groupId": group["id"]})
            _wait_for_members(app, group["id"], 2)
        _wait_for_members(app, group["id"], 1)
        wait_for(lambda: len(app.state.registry) == 1)

        res = client.post(f"/api/groups/{group['id']}/messages", json={"content": "still here"}, headers=headers)
        assert res.status_code == 201
        assert stays.receive_json()["data"]["content"] == "still here"


def test_malformed_frames_keep_connection(app, client, make_user, auth_headers):
    owner = make_user("owner@example.com")
    headers = auth_headers(owner)
    group = _create_group(client, headers)

    with client.websocket_connect("/ws") as ws:
        ws.send_text("{{{")
        ws.send_bytes(b"\x00\x01")
        ws.send_json({"type": "unknown"})
        ws.send_json({"type": "joinRoom", "groupId": group["id"]})
        _wait_for_members(app, group["id"], 1)

        client.post(f"/api/groups/{group['id']}/messages", json={"content": "ok"}, headers=headers)
        assert ws.receive_json()["data"]["content"] == "ok"


def test_membership_guard_when_enabled(settings, session_factory, make_user, auth_headers):
    guarded = create_app(
        settings.model_copy(update={"ws_require_membership": True}),
        session_factory,
    )
    owner = make_user("owner@example.com")
    outsider = make_user("outsider@example.com")
    headers = auth_headers(owner)
    token = headers["Authorization"].split(" ", 1)[1]
    outsider_token = auth_headers(outsider)["Authorization"].split(" ", 1)[1]

    with TestClient(guarded) as client:
        group = _create_group(client, headers)
        with client.websocket_connect(f"/ws?token={outsider_token}") as denied, client.websocket_connect(
            f"/ws?token={token}"
        ) as allowed:
            denied.send_json({"type": "joinRoom", "groupId": group["id"]})
            allowed.send_json({"type": "joinRoom", "groupId": group["id"]})
            _wait_for_members(guarded, group["id"], 1)
            member = next(iter(guarded.state.directory.members_of(group["id"])))
            assert member.user_id == owner.id
