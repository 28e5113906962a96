"""
WebSocket integration tests using FastAPI TestClient.
Tests: host connection, join admission, early joins, role claims, game actions,
redaction, resync, reconnection and host grace.
"""
import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from fastapi.testclient import TestClient
from main import app, registry, _rate_limit_store
import config


@pytest.fixture(autouse=True)
def clear_state():
    _rate_limit_store.clear()
    registry.rooms.clear()
    yield
    _rate_limit_store.clear()
    registry.rooms.clear()


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(config, "WS_RATE_LIMIT_PER_SEC", 1000)
    # One event loop for the whole test so timers and waits span connections
    with TestClient(app) as c:
        yield c


def create_room(client):
    """Create a room via HTTP and return (room_code, host_token)."""
    res = client.post("/rooms")
    assert res.status_code == 200
    data = res.json()
    return data["room_code"], data["host_token"]


def recv_until(ws, msg_type, max_messages=50):
    """Receive WS messages until we get the expected type."""
    for _ in range(max_messages):
        data = ws.receive_json()
        if data.get("type") == msg_type:
            return data
    raise TimeoutError(f"Never received {msg_type} after {max_messages} messages")


def host_url(room_code, token, client_id="tv"):
    return f"/ws/{room_code}/{client_id}?host=true&token={token}"


# =====================================================================
# Host connection
# =====================================================================

class TestHostConnection:
    def test_host_receives_full_snapshot(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as ws:
            snap = ws.receive_json()
            assert snap["type"] == "SNAPSHOT"
            assert snap["room_code"] == room_code
            assert snap["view"] == "host"
            assert snap["revision"] == 1
            assert len(snap["state"]["cards"]) == config.BOARD_SIZE
            assert all("type" in c for c in snap["state"]["cards"])

    def test_invalid_token_rejected(self, client):
        room_code, _ = create_room(client)
        with client.websocket_connect(host_url(room_code, "wrong-token")) as ws:
            msg = ws.receive_json()
            assert msg["type"] == "ERROR"
            assert msg["code"] == "INVALID_HOST_TOKEN"

    def test_no_token_rejected(self, client):
        room_code, _ = create_room(client)
        with client.websocket_connect(f"/ws/{room_code}/tv?host=true&token=") as ws:
            assert ws.receive_json()["code"] == "INVALID_HOST_TOKEN"

    def test_room_status_after_host_connects(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as ws:
            ws.receive_json()
            data = client.get(f"/rooms/{room_code}").json()
            assert data["host_connected"] is True
            assert data["ready"] is True
            assert data["revision"] == 1


# =====================================================================
# Player admission
# =====================================================================

class TestPlayerJoin:
    def test_nonexistent_room_errors_instead_of_hanging(self, client):
        with client.websocket_connect("/ws/ZZZZZZ/p1") as ws:
            msg = ws.receive_json()
            assert msg["type"] == "ERROR"
            assert msg["code"] == "ROOM_NOT_FOUND"
            assert "doesn't exist" in msg["message"]

    def test_join_with_role(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            host_ws.receive_json()
            with client.websocket_connect(f"/ws/{room_code}/p1?role=red_spymaster") as p_ws:
                snap = p_ws.receive_json()
                assert snap["type"] == "SNAPSHOT"
                assert snap["you"]["slot"] == "red_spymaster"
                roles = recv_until(host_ws, "ROLES")
                assert roles["roles"]["red_spymaster"]["client_id"] == "p1"

    def test_lowercase_code_with_trailing_space(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            host_ws.receive_json()
            with client.websocket_connect(f"/ws/{room_code.lower()}%20/p1") as p_ws:
                snap = p_ws.receive_json()
                assert snap["type"] == "SNAPSHOT"
                assert snap["room_code"] == room_code

    def test_second_player_same_slot(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            host_ws.receive_json()
            with client.websocket_connect(f"/ws/{room_code}/p1?role=red_spymaster") as p1:
                p1.receive_json()
                with client.websocket_connect(f"/ws/{room_code}/p2?role=red_spymaster") as p2:
                    snap = p2.receive_json()
                    assert snap["you"]["slot"] is None
                    err = p2.receive_json()
                    assert err["code"] == "SLOT_UNAVAILABLE"
                    assert err["slot"] == "red_spymaster"
                    assert set(err["open_slots"]) == {
                        "blue_spymaster", "red_operative", "blue_operative",
                    }
                    p2.send_json({"type": "CLAIM_ROLE", "slot": "blue_spymaster"})
                    claimed = recv_until(p2, "ROLE_CLAIMED")
                    assert claimed["slot"] == "blue_spymaster"

    def test_spectator(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            host_ws.receive_json()
            with client.websocket_connect(f"/ws/{room_code}/s1?spectator=true") as s_ws:
                snap = s_ws.receive_json()
                assert snap["view"] == "spectator"
                assert all("type" not in c for c in snap["state"]["cards"])


# =====================================================================
# Joining before the host
# =====================================================================

class TestEarlyJoin:
    def test_player_waits_for_host_then_gets_snapshot(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(f"/ws/{room_code}/p1?role=blue_operative") as p_ws:
            waiting = p_ws.receive_json()
            assert waiting["type"] == "WAITING_FOR_HOST"
            assert waiting["timeout"] == config.ADMISSION_TIMEOUT_SECONDS
            with client.websocket_connect(host_url(room_code, token)) as host_ws:
                host_ws.receive_json()
                snap = p_ws.receive_json()
                assert snap["type"] == "SNAPSHOT"
                assert snap["state"]["board_ready"] is True
                assert len(snap["state"]["cards"]) == config.BOARD_SIZE
                assert snap["you"]["slot"] == "blue_operative"

    def test_leaving_while_waiting_frees_role(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(f"/ws/{room_code}/ghost?role=red_spymaster") as g_ws:
            assert g_ws.receive_json()["type"] == "WAITING_FOR_HOST"
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            assert host_ws.receive_json()["type"] == "SNAPSHOT"
            with client.websocket_connect(f"/ws/{room_code}/p2?role=red_spymaster") as p_ws:
                snap = recv_until(p_ws, "SNAPSHOT")
                assert snap["you"]["slot"] == "red_spymaster"
        room = registry.get(room_code)
        assert "ghost" not in room.player_grace_tasks
        room.cancel_timers()

    def test_room_not_ready_after_timeout(self, client, monkeypatch):
        monkeypatch.setattr(config, "ADMISSION_TIMEOUT_SECONDS", 0.2)
        room_code, _ = create_room(client)
        with client.websocket_connect(f"/ws/{room_code}/p1?role=red_spymaster") as p_ws:
            assert p_ws.receive_json()["type"] == "WAITING_FOR_HOST"
            err = p_ws.receive_json()
            assert err["type"] == "ERROR"
            assert err["code"] == "ROOM_NOT_READY"
            assert err["retry_after"] == 0.2
        room = registry.get(room_code)
        assert len(room.roles.open_slots()) == 4
        assert room.clients == {}


# =====================================================================
# Game flow
# =====================================================================

class TestGameFlow:
    def _setup_table(self, client):
        room_code, token = create_room(client)
        host_ws = client.websocket_connect(host_url(room_code, token)).__enter__()
        host_snap = host_ws.receive_json()
        players = {}
        for slot in ("red_spymaster", "red_operative", "blue_spymaster", "blue_operative"):
            ws = client.websocket_connect(f"/ws/{room_code}/{slot}?role={slot}").__enter__()
            recv_until(ws, "SNAPSHOT")
            players[slot] = ws
        return room_code, host_ws, host_snap, players

    def _cleanup(self, host_ws, players):
        for ws in players.values():
            ws.__exit__(None, None, None)
        host_ws.__exit__(None, None, None)

    def test_operative_snapshot_redacted(self, client):
        room_code, host_ws, _, players = self._setup_table(client)
        try:
            players["red_operative"].send_json({"type": "RESYNC"})
            op_snap = recv_until(players["red_operative"], "SNAPSHOT")
            assert all("type" not in c for c in op_snap["state"]["cards"])
            players["blue_spymaster"].send_json({"type": "RESYNC"})
            spy_snap = recv_until(players["blue_spymaster"], "SNAPSHOT")
            assert all("type" in c for c in spy_snap["state"]["cards"])
        finally:
            self._cleanup(host_ws, players)

    def test_clue_and_reveal_broadcast(self, client):
        room_code, host_ws, host_snap, players = self._setup_table(client)
        try:
            team = host_snap["state"]["turn"]
            spymaster = players[f"{team}_spymaster"]
            operative = players[f"{team}_operative"]

            spymaster.send_json({"type": "GIVE_CLUE", "word": "zebrafish", "number": 1})
            for ws in [host_ws] + list(players.values()):
                state = recv_until(ws, "STATE")
                assert state["revision"] == 2
                assert state["state"]["phase"] == "guess"
                assert state["state"]["clue"]["word"] == "ZEBRAFISH"

            own_index = next(i for i, c in enumerate(host_snap["state"]["cards"])
                             if c["type"] == team)
            operative.send_json({"type": "REVEAL_CARD", "index": own_index})
            for ws in [host_ws] + list(players.values()):
                state = recv_until(ws, "STATE")
                assert state["revision"] == 3
                card = state["state"]["cards"][own_index]
                assert card["revealed"] is True
                assert card["type"] == team
        finally:
            self._cleanup(host_ws, players)

    def test_out_of_turn_rejected_to_sender_only(self, client):
        room_code, host_ws, host_snap, players = self._setup_table(client)
        try:
            team = host_snap["state"]["turn"]
            other = "blue" if team == "red" else "red"
            players[f"{other}_spymaster"].send_json(
                {"type": "GIVE_CLUE", "word": "nope", "number": 1})
            err = recv_until(players[f"{other}_spymaster"], "ERROR")
            assert err["code"] == "ACTION_REJECTED"
            assert err["reason"] == "not_your_turn"

            host_ws.send_json({"type": "PING"})
            pong = recv_until(host_ws, "PONG")
            assert pong["revision"] == 1
        finally:
            self._cleanup(host_ws, players)

    def test_host_ends_turn(self, client):
        room_code, host_ws, host_snap, players = self._setup_table(client)
        try:
            team = host_snap["state"]["turn"]
            players[f"{team}_spymaster"].send_json({"type": "GIVE_CLUE", "word": "x", "number": 1})
            recv_until(host_ws, "STATE")
            host_ws.send_json({"type": "END_TURN"})
            state = recv_until(host_ws, "STATE")
            assert state["revision"] == 3
            assert state["state"]["turn"] != team
            assert state["state"]["phase"] == "clue"
        finally:
            self._cleanup(host_ws, players)

    def test_new_game(self, client):
        room_code, host_ws, _, players = self._setup_table(client)
        try:
            host_ws.send_json({"type": "NEW_GAME"})
            state = recv_until(players["red_operative"], "STATE")
            assert state["revision"] == 2
            assert state["last_action"]["action"] == "new_game"
        finally:
            self._cleanup(host_ws, players)


# =====================================================================
# Malformed input
# =====================================================================

class TestMalformedMessages:
    def test_invalid_json(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as ws:
            ws.receive_json()
            ws.send_text("not json")
            assert recv_until(ws, "ERROR")["code"] == "BAD_MESSAGE"

    def test_non_object_json(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as ws:
            ws.receive_json()
            ws.send_text("[1, 2]")
            assert recv_until(ws, "ERROR")["code"] == "BAD_MESSAGE"

    def test_message_too_large(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as ws:
            ws.receive_json()
            ws.send_text("x" * (config.MAX_WS_MESSAGE_SIZE + 1))
            assert recv_until(ws, "ERROR")["code"] == "MESSAGE_TOO_LARGE"

    def test_rate_limited(self, client, monkeypatch):
        monkeypatch.setattr(config, "WS_RATE_LIMIT_PER_SEC", 2)
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as ws:
            ws.receive_json()
            for _ in range(3):
                ws.send_json({"type": "PING"})
            assert recv_until(ws, "ERROR")["code"] == "RATE_LIMITED"


# =====================================================================
# Reconnection
# =====================================================================

class TestReconnection:
    def test_player_reconnects_to_same_slot(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            host_ws.receive_json()
            with client.websocket_connect(f"/ws/{room_code}/p1?role=red_spymaster") as p_ws:
                p_ws.receive_json()
            with client.websocket_connect(f"/ws/{room_code}/p1") as p_ws:
                snap = recv_until(p_ws, "SNAPSHOT")
                assert snap["you"]["slot"] == "red_spymaster"
                assert snap["view"] == "spymaster"

    def test_rapid_navigation(self, client):
        room_code, token = create_room(client)
        with client.websocket_connect(host_url(room_code, token)) as host_ws:
            host_ws.receive_json()
            for _ in range(3):
                with client.websocket_connect(f"/ws/{room_code}/p1") as p_ws:
                    assert recv_until(p_ws, "SNAPSHOT")["room_code"] == room_code
            with client.websocket_connect(f"/ws/{room_code}/p1?role=red_spymaster") as p_ws:
                snap = recv_until(p_ws, "SNAPSHOT")
                assert snap["you"]["slot"] == "red_spymaster"

    def test_host_grace_expiry_closes_room(self, client, monkeypatch):
        monkeypatch.setattr(config, "HOST_GRACE_SECONDS", 0.2)
        room_code, token = create_room(client)
        host_ws = client.websocket_connect(host_url(room_code, token)).__enter__()
        host_ws.receive_json()
        with client.websocket_connect(f"/ws/{room_code}/p1") as p_ws:
            p_ws.receive_json()
            host_ws.__exit__(None, None, None)
            assert recv_until(p_ws, "HOST_DISCONNECTED")["grace_seconds"] == 0.2
            closed = recv_until(p_ws, "ROOM_CLOSED")
            assert closed["reason"] == "host_left"
        assert client.get(f"/join/{room_code}").status_code == 404

    def test_host_reconnects_within_grace(self, client, monkeypatch):
        monkeypatch.setattr(config, "HOST_GRACE_SECONDS", 5)
        room_code, token = create_room(client)
        host_ws = client.websocket_connect(host_url(room_code, token)).__enter__()
        host_ws.receive_json()
        with client.websocket_connect(f"/ws/{room_code}/p1") as p_ws:
            p_ws.receive_json()
            host_ws.__exit__(None, None, None)
            recv_until(p_ws, "HOST_DISCONNECTED")
            with client.websocket_connect(host_url(room_code, token)) as host_ws2:
                snap = host_ws2.receive_json()
                assert snap["revision"] == 1
                assert recv_until(p_ws, "HOST_RECONNECTED")["revision"] == 1
