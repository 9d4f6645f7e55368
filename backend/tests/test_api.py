from watchparty.utils.security import create_access_token


def _create_room(client, auth_headers, user_id="host", **body):
    response = client.post("/api/v1/rooms", json={"name": "Movie night", **body}, headers=auth_headers(user_id))
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["store"]["backend"] == "memory"


def test_rooms_require_token(client):
    response = client.get("/api/v1/rooms")
    assert response.status_code == 401
    assert response.json()["error"] == "AUTH_003"


def test_rooms_reject_invalid_token(client):
    response = client.get("/api/v1/rooms", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["error"] == "AUTH_001"


def test_token_from_cookie(client):
    client.cookies.set("authToken", create_access_token("host"))
    response = client.get("/api/v1/rooms")
    client.cookies.clear()
    assert response.status_code == 200


def test_create_and_fetch_room(client, auth_headers):
    room = _create_room(client, auth_headers, mediaUrl="https://cdn/x.mp4", maxParticipants=4)
    assert room["hostId"] == "host"
    assert room["maxParticipants"] == 4
    assert room["isPublic"] is True

    response = client.get(f"/api/v1/rooms/{room['roomId']}", headers=auth_headers("alice"))
    assert response.status_code == 200
    details = response.json()
    assert details["members"] == ["host"]
    assert details["playbackState"]["mediaUrl"] == "https://cdn/x.mp4"
    assert details["playbackState"]["playbackSpeed"] == 1.0

    response = client.get(f"/api/v1/rooms/{room['roomId']}/playback", headers=auth_headers("alice"))
    assert response.status_code == 200
    assert response.json()["lastUpdatedBy"] == "host"


def test_list_rooms(client, auth_headers):
    room = _create_room(client, auth_headers)

    response = client.get("/api/v1/rooms", headers=auth_headers("alice"))
    assert response.status_code == 200
    assert [(item["roomId"], item["currentMembers"]) for item in response.json()] == [(room["roomId"], 1)]


def test_missing_room(client, auth_headers):
    response = client.get("/api/v1/rooms/nope", headers=auth_headers("alice"))
    assert response.status_code == 404
    assert response.json()["error"] == "ROOM_001"
    assert response.json()["success"] is False


def test_create_room_validation(client, auth_headers):
    response = client.post(
        "/api/v1/rooms", json={"name": "Movie night", "maxParticipants": 51}, headers=auth_headers("host")
    )
    assert response.status_code == 422
    assert response.json()["error"] == "VAL_001"


# ==================== WebSocket ====================

def _ws_url(room_id: str, user_id: str) -> str:
    return f"/api/v1/rooms/{room_id}/ws?token={create_access_token(user_id)}"


def test_websocket_rejects_invalid_token(client, auth_headers):
    room = _create_room(client, auth_headers)

    with client.websocket_connect(f"/api/v1/rooms/{room['roomId']}/ws?token=bad") as ws:
        frame = ws.receive_json()
    assert frame == {"type": "ERROR", "payload": {"message": "Invalid token", "code": "WS_003"}}


def test_websocket_unknown_room(client):
    with client.websocket_connect(_ws_url("nope", "alice")) as ws:
        frame = ws.receive_json()
    assert frame["payload"]["code"] == "ROOM_001"


def test_websocket_session(client, auth_headers):
    room = _create_room(client, auth_headers)
    room_id = room["roomId"]

    with client.websocket_connect(_ws_url(room_id, "host")) as ws:
        assert ws.receive_json() == {"type": "USER_JOINED", "payload": {"userId": "host", "memberCount": 1}}

        ws.send_text("{broken")
        error = ws.receive_json()
        assert error["type"] == "ERROR"
        assert error["payload"]["code"] == "WS_002"

        ws.send_json({"type": "UPDATE_PLAYBACK", "payload": {"isPlaying": True, "currentTime": 5}})
        update = ws.receive_json()
        assert update["type"] == "PLAYBACK_UPDATED"
        assert update["payload"]["isPlaying"] is True
        assert update["payload"]["currentTime"] == 5.0

        ws.send_json({"type": "SYNC_REQUEST"})
        sync = ws.receive_json()
        assert sync["type"] == "SYNC_FULL_STATE"
        assert sync["payload"]["roomId"] == room_id
        assert sync["payload"]["playbackState"]["isPlaying"] is True

    # Host was the only member, closing the socket removes the room
    response = client.get(f"/api/v1/rooms/{room_id}", headers=auth_headers("alice"))
    assert response.status_code == 404


def test_websocket_leave_and_host_change(client, auth_headers):
    room = _create_room(client, auth_headers)
    room_id = room["roomId"]

    with client.websocket_connect(_ws_url(room_id, "alice")) as alice:
        assert alice.receive_json()["payload"] == {"userId": "alice", "memberCount": 2}

        with client.websocket_connect(_ws_url(room_id, "host")) as host:
            assert host.receive_json()["payload"] == {"userId": "host", "memberCount": 2}
            assert alice.receive_json()["payload"] == {"userId": "host", "memberCount": 2}

        response = client.get(f"/api/v1/rooms/{room_id}", headers=auth_headers("alice"))
        assert response.status_code == 200
        assert response.json()["hostId"] == "alice"
        assert response.json()["members"] == ["alice"]
