"""End-to-end tests through the FastAPI app: websocket protocol and HTTP routes."""

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import RedisStatsBackend


def receive_event(ws, event: str):
    """Read frames until ``event`` arrives and return its data."""
    for _ in range(20):
        frame = ws.receive_json()
        if frame["event"] == event:
            return frame["data"]
    raise AssertionError(f"no '{event}' frame received")


def connect(client):
    ws = client.websocket_connect("/ws")
    session = ws.__enter__()
    connection_id = receive_event(session, "connected")["connectionId"]
    return ws, session, connection_id


@pytest.fixture
def client():
    with TestClient(create_app(static_dir=None)) as test_client:
        yield test_client


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "online_count": 0}


def test_stats_without_cluster_backend(client) -> None:
    response = client.get("/stats")

    assert response.status_code == 200
    assert response.json() == {
        "online_count": 0,
        "waiting_count": 0,
        "paired_count": 0,
        "matches_total": 0,
        "cluster": None,
    }


def test_connect_announces_id_and_online_count(client) -> None:
    with client.websocket_connect("/ws") as ws:
        connected = ws.receive_json()
        count = ws.receive_json()

        assert connected["event"] == "connected"
        assert connected["data"]["connectionId"]
        assert count == {"event": "online_count", "data": 1}


def test_full_session(client) -> None:
    ws_x, x, x_id = connect(client)
    ws_y, y, y_id = connect(client)
    try:
        x.send_json({"event": "join_queue", "data": {"interests": ["Music", "art"]}})
        y.send_json({"event": "join_queue", "data": {"interests": ["art", "travel"]}})

        assert receive_event(x, "matched") == {"partnerId": y_id, "commonInterests": ["art"]}
        assert receive_event(y, "matched") == {"partnerId": x_id, "commonInterests": ["art"]}

        x.send_json({"event": "typing", "data": True})
        assert receive_event(y, "partner_typing") is True

        x.send_json({"event": "send_message", "data": {"text": "hello stranger"}})
        assert receive_event(y, "message") == {"text": "hello stranger"}

        offer = {"type": "offer", "sdp": "v=0\r\ns=-\r\n"}
        x.send_json({"event": "signal", "data": {"target": y_id, "signal": {"type": "offer", "payload": offer}}})
        assert receive_event(y, "signal") == {"type": "offer", "payload": offer}

        stats = client.get("/stats").json()
        assert stats["online_count"] == 2
        assert stats["paired_count"] == 2
        assert stats["matches_total"] == 1
    finally:
        ws_y.__exit__(None, None, None)

    assert receive_event(x, "partner_disconnected") == {}
    assert receive_event(x, "online_count") == 1
    ws_x.__exit__(None, None, None)

    assert client.get("/health").json()["online_count"] == 0


def test_malformed_frames_get_error_and_keep_socket_open(client) -> None:
    with client.websocket_connect("/ws") as ws:
        receive_event(ws, "connected")

        ws.send_text("not json")
        assert receive_event(ws, "error")["detail"] == "malformed frame"

        ws.send_json({"event": "join_queue", "data": {"interests": "music"}})
        assert receive_event(ws, "error")["event"] == "join_queue"

        ws.send_json({"event": "join_queue", "data": {"interests": []}})
        ws.send_json({"event": "teleport"})
        assert receive_event(ws, "error")["event"] == "teleport"
        assert client.get("/stats").json()["waiting_count"] == 1


def test_binary_and_deeply_nested_frames_keep_socket_open(client) -> None:
    with client.websocket_connect("/ws") as ws:
        receive_event(ws, "connected")

        ws.send_bytes(b"\x00\x01binary")
        assert receive_event(ws, "error")["detail"] == "malformed frame"

        ws.send_text("[" * 100000 + "]" * 100000)
        assert receive_event(ws, "error")["detail"] == "malformed frame"

        ws.send_json({"event": "teleport"})
        assert receive_event(ws, "error")["event"] == "teleport"
        assert client.get("/health").json()["online_count"] == 1


def test_stats_include_cluster_numbers() -> None:
    redis_client = MagicMock()
    values = {"chat:online:web-1": "5", "chat:online:web-2": "2", "chat:stats:matches_total": "9"}
    redis_client.scan_iter.return_value = ["chat:online:web-1", "chat:online:web-2"]
    redis_client.get.side_effect = values.get
    redis_client.zrevrange.return_value = [("music", 4.0)]
    backend = RedisStatsBackend(redis_client=redis_client, instance_id="web-1")

    with TestClient(create_app(stats_backend=backend, static_dir=None)) as test_client:
        response = test_client.get("/stats")

    assert response.status_code == 200
    assert response.json()["cluster"] == {
        "instance_id": "web-1",
        "online_count": 7,
        "matches_total": 9,
        "top_interests": [{"tag": "music", "matches": 4}],
    }
    redis_client.delete.assert_called_once_with("chat:online:web-1")


def test_static_client_with_index_fallback(tmp_path) -> None:
    (tmp_path / "index.html").write_text("<html>chat</html>")
    (tmp_path / "favicon.svg").write_text("<svg/>")

    with TestClient(create_app(static_dir=str(tmp_path))) as test_client:
        assert test_client.get("/").text == "<html>chat</html>"
        assert test_client.get("/some/client/route").text == "<html>chat</html>"
        assert test_client.get("/favicon.svg").text == "<svg/>"
        assert test_client.get("/health").json()["status"] == "ok"
