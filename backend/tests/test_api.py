"""HTTP and WebSocket route tests against the real app."""

from contextlib import ExitStack


def _create_room(client, code="abcd12", creator="Host", personality="funny"):
    r = client.post("/api/games", json={
        "roomCode": code, "createdBy": creator, "aiPersonality": personality,
    })
    assert r.status_code == 201, r.text
    return r.json()


def _fill(client, code, names):
    players = []
    for name in names:
        r = client.post(f"/api/games/{code}/join", json={"name": name})
        assert r.status_code == 200, r.text
        players.append(r.json()["player"])
    return players


def _started_room(client):
    game = _create_room(client)
    players = _fill(client, "abcd12", ["Host", "Ann", "Bob", "Cid"])
    r = client.post(f"/api/games/{game['id']}/start", params={"requestedBy": "Host"})
    assert r.status_code == 200, r.text
    return r.json()["game"], players


def _next_of_type(ws, event_type, limit=10):
    for _ in range(limit):
        event = ws.receive_json()
        if event["type"] == event_type:
            return event
    raise AssertionError(f"no {event_type} event received")


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_create_room(client):
    game = _create_room(client)
    assert game["roomCode"] == "ABCD12"
    assert game["status"] == "lobby"
    assert game["createdBy"] == "Host"
    assert game["aiPersonality"] == "funny"
    assert game["aiPlayerId"] is None


def test_create_room_validation(client):
    _create_room(client)
    r = client.post("/api/games", json={"roomCode": "ABCD12", "createdBy": "Other"})
    assert r.status_code == 409
    r = client.post("/api/games", json={"roomCode": "a-b", "createdBy": "Host"})
    assert r.status_code == 422
    r = client.post("/api/games", json={"roomCode": "WXYZ", "createdBy": ""})
    assert r.status_code == 422
    r = client.post("/api/games", json={"roomCode": "WXYZ", "createdBy": "Host", "aiPersonality": "pirate"})
    assert r.status_code == 422


def test_join_room(client):
    game = _create_room(client)
    r = client.post("/api/games/AbCd12/join", json={"name": "  Ann "})
    assert r.status_code == 200
    body = r.json()
    assert body["game"]["id"] == game["id"]
    assert body["player"]["name"] == "Ann"
    assert body["player"]["isAI"] is False
    assert body["player"]["vote"] is None


def test_join_errors(client):
    r = client.post("/api/games/NOPE99/join", json={"name": "Ann"})
    assert r.status_code == 404
    _create_room(client)
    _fill(client, "abcd12", [f"P{i}" for i in range(8)])
    r = client.post("/api/games/abcd12/join", json={"name": "Ninth"})
    assert r.status_code == 400
    assert r.json()["detail"] == "Game room is full"
    r = client.post("/api/games/abcd12/join", json={"name": "   "})
    assert r.status_code == 422


def test_start_rules(client):
    game = _create_room(client)
    _fill(client, "abcd12", ["Host", "Ann", "Bob"])
    url = f"/api/games/{game['id']}/start"

    r = client.post(url, params={"requestedBy": "Host"})
    assert r.status_code == 400
    assert client.get(f"/api/games/{game['id']}").json()["game"]["status"] == "lobby"

    _fill(client, "abcd12", ["Cid"])
    assert client.post(url, params={"requestedBy": "Ann"}).status_code == 403
    assert client.post(url).status_code == 422
    assert client.post("/api/games/missing/start", params={"requestedBy": "Host"}).status_code == 404

    r = client.post(url, params={"requestedBy": "Host"})
    assert r.status_code == 200
    body = r.json()
    assert body["game"]["status"] == "discussion"
    assert body["game"]["discussionEndsAt"] is not None
    ai = [p for p in body["players"] if p["isAI"]]
    assert len(ai) == 1
    assert len(body["players"]) == 5
    assert body["game"]["aiPlayerId"] == ai[0]["id"]

    assert client.post(url, params={"requestedBy": "Host"}).status_code == 409


def test_get_game_state(client):
    assert client.get("/api/games/nonexistent-id").status_code == 404
    game = _create_room(client)
    _fill(client, "abcd12", ["Host"])
    r = client.get(f"/api/games/{game['id']}")
    assert r.status_code == 200
    body = r.json()
    assert body["game"]["id"] == game["id"]
    assert [p["name"] for p in body["players"]] == ["Host"]
    assert body["messages"] == []
    assert body["results"] is None


def test_personalities(client):
    r = client.get("/api/personalities")
    assert r.status_code == 200
    assert {p["id"] for p in r.json()} == {"casual", "funny", "serious", "shy"}


# ── WebSocket ──────────────────────────────────────────────────────────────────

def test_ws_errors_go_to_sender_only(client):
    game, players = _started_room(client)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "sendMessage", "content": "hi"})
        assert ws.receive_json()["code"] == "NOT_JOINED"

        ws.send_text("{not json")
        assert ws.receive_json()["code"] == "PARSE_ERROR"

        ws.send_json({"type": "dance"})
        assert ws.receive_json()["code"] == "UNKNOWN_TYPE"

        ws.send_json({"type": "join", "gameId": "missing", "playerId": players[0]["id"]})
        assert ws.receive_json()["code"] == "NOT_FOUND"

        ws.send_json({"type": "join", "gameId": game["id"]})
        assert ws.receive_json()["code"] == "INVALID_INPUT"

        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}

    with client.websocket_connect("/ws") as a, client.websocket_connect("/ws") as b:
        a.send_json({"type": "join", "gameId": game["id"], "playerId": players[0]["id"]})
        assert a.receive_json()["type"] == "gameState"
        b.send_json({"type": "join", "gameId": game["id"], "playerId": players[1]["id"]})
        assert b.receive_json()["type"] == "gameState"

        b.send_json({"type": "vote", "targetPlayerId": game["aiPlayerId"]})
        error = b.receive_json()
        assert error["type"] == "error"
        assert error["code"] == "WRONG_PHASE"

        # nothing was queued for the other connection
        a.send_json({"type": "ping"})
        assert a.receive_json() == {"type": "pong"}


def test_ws_full_game(client, api_registry):
    game, players = _started_room(client)
    session = api_registry.get(game["id"])

    with ExitStack() as stack:
        sockets = [stack.enter_context(client.websocket_connect("/ws")) for _ in players]
        for ws, player in zip(sockets, players):
            ws.send_json({"type": "join", "gameId": game["id"], "playerId": player["id"]})
            state = ws.receive_json()
            assert state["type"] == "gameState"
            assert state["game"]["status"] == "discussion"
            assert len(state["players"]) == 5

        sockets[0].send_json({"type": "sendMessage", "content": "so who's the bot"})
        for ws in sockets:
            first = _next_of_type(ws, "message")
            assert first["message"]["content"] == "so who's the bot"
            assert first["player"]["id"] == players[0]["id"]
            reply = _next_of_type(ws, "message")
            assert reply["message"]["content"] == "just vibing"
            assert reply["player"]["isAI"] is True

        client.portal.call(session.advance)
        for ws in sockets:
            changed = _next_of_type(ws, "gamePhaseChanged")
            assert changed["game"]["status"] == "voting"
            assert changed["game"]["votingEndsAt"] is not None

        ai_id = game["aiPlayerId"]
        sockets[0].send_json({"type": "vote", "targetPlayerId": ai_id})
        sockets[1].send_json({"type": "vote", "targetPlayerId": ai_id})
        sockets[2].send_json({"type": "vote", "targetPlayerId": players[3]["id"]})
        sockets[3].send_json({"type": "vote", "targetPlayerId": players[3]["id"]})

        for ws in sockets:
            ended = _next_of_type(ws, "gameEnded")
            results = ended["results"]
            assert results["aiWins"] is False
            assert results["aiPlayer"]["id"] == ai_id
            counts = {r["player"]["id"]: r["votes"] for r in results["voteResults"]}
            assert counts[ai_id] == 2
            assert counts[players[3]["id"]] == 2

    state = client.get(f"/api/games/{game['id']}").json()
    assert state["game"]["status"] == "ended"
    assert state["results"]["aiWins"] is False
    assert [m["content"] for m in state["messages"]] == ["so who's the bot", "just vibing"]


def test_ws_rejoin_restores_full_state(client):
    game, players = _started_room(client)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "join", "gameId": game["id"], "playerId": players[1]["id"]})
        ws.receive_json()
        ws.send_json({"type": "sendMessage", "content": "brb"})
        _next_of_type(ws, "message")
        _next_of_type(ws, "message")  # AI reply

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "join", "gameId": game["id"], "playerId": players[1]["id"]})
        state = _next_of_type(ws, "gameState")
        snapshot = client.get(f"/api/games/{game['id']}").json()
        state.pop("type")
        assert state == snapshot
        assert [m["content"] for m in state["messages"]] == ["brb", "just vibing"]
        me = next(p for p in state["players"] if p["id"] == players[1]["id"])
        assert me["isConnected"] is True


def test_ws_bad_rejoin_keeps_existing_binding(client):
    game, players = _started_room(client)
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "join", "gameId": game["id"], "playerId": players[0]["id"]})
        assert ws.receive_json()["type"] == "gameState"

        ws.send_json({"type": "join", "gameId": game["id"], "playerId": "who-dis"})
        assert ws.receive_json()["code"] == "NOT_FOUND"

        ws.send_json({"type": "sendMessage", "content": "still here"})
        event = _next_of_type(ws, "message")
        assert event["player"]["id"] == players[0]["id"]
        _next_of_type(ws, "message")  # AI reply
