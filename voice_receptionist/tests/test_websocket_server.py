"""
Telnyx media stream endpoint tests with fake speech providers.
"""

import pytest
from fastapi.testclient import TestClient

from voice_receptionist.src.audio_utils import base64_decode, base64_encode
from voice_receptionist.src.websocket_server import app, init_session_manager

START = {
    "event": "start",
    "stream_id": "stream-1",
    "start": {"call_control_id": "cc-1", "from": "+15550001111", "to": "+18045550100"},
}


@pytest.fixture
def client(manager):
    init_session_manager(manager)
    with TestClient(app) as client:
        yield client
    app.state.session_manager = None


def _drain_until_mark(ws) -> list[dict]:
    outbound = []
    while True:
        message = ws.receive_json()
        outbound.append(message)
        if message["event"] == "mark":
            return outbound


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "active_calls": 0}


def test_media_stream_lifecycle(client, manager, stt_instances):
    inbound = bytes([0xFF]) * 160

    with client.websocket_connect("/telnyx") as ws:
        ws.send_json({"event": "connected"})
        ws.send_json(START)
        outbound = _drain_until_mark(ws)

        calls = client.get("/calls").json()["calls"]
        assert [c["call_id"] for c in calls] == ["cc-1"]
        assert calls[0]["phone_number"] == "+15550001111"

        ws.send_json({"event": "media", "stream_id": "stream-1", "media": {"track": "outbound", "payload": base64_encode(b"\x00" * 160)}})
        ws.send_json({"event": "media", "stream_id": "stream-1", "media": {"track": "inbound", "payload": base64_encode(inbound)}})
        ws.send_json({"event": "stop", "stream_id": "stream-1"})

    media = [m for m in outbound if m["event"] == "media"]
    assert len(media) == 8
    assert all(m["stream_id"] == "stream-1" for m in media)
    assert len(base64_decode(media[0]["media"]["payload"])) == 800
    assert outbound[-1] == {"event": "mark", "stream_id": "stream-1", "mark": {"name": "response-1"}}

    assert stt_instances[0].sent == [inbound]
    assert manager.list_active_calls() == []


def test_hangup_webhook_ends_call(client, manager):
    with client.websocket_connect("/telnyx") as ws:
        ws.send_json(START)
        _drain_until_mark(ws)

        response = client.post("/webhook", json={
            "data": {"event_type": "call.hangup", "payload": {"call_control_id": "cc-1"}},
        })

        assert response.json() == {"status": "ok"}
        assert manager.get_active_call("cc-1") is None


def test_webhook_ignores_other_events(client):
    response = client.post("/webhook", json={"data": {"event_type": "call.answered", "payload": {}}})
    assert response.json() == {"status": "ok"}
