"""Tests for the FastAPI webhook server.

WHY: LINE disables webhooks that answer slowly or with errors, so the
endpoints must always answer 200 and only schedule work for requests
that pass the signature and body checks.

HOW: fastapi.testclient.TestClient drives the app without its lifespan
(no credentials needed). The bridge and the transcriber are replaced
with AsyncMocks through app.dependency_overrides; module-level settings
are patched with monkeypatch.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import AsyncExitStack
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from line_drive_bridge import __version__
from line_drive_bridge.core.bridge import MessageBridge
from line_drive_bridge.core.signature import sign
from line_drive_bridge.server import app as app_module
from line_drive_bridge.server.app import app, get_bridge, get_transcriber
from line_drive_bridge.transcription.service import VoiceTranscriber

from conftest import media_event_dict, text_event_dict

SECRET = "channel-secret"


@pytest.fixture
def bridge(monkeypatch):
    monkeypatch.setattr(app_module, "LINE_CHANNEL_SECRET", SECRET)
    monkeypatch.setattr(app_module, "ALLOW_UNSIGNED_WEBHOOKS", False)
    mock = AsyncMock(spec=MessageBridge)
    mock.handle_events.return_value = []
    app.dependency_overrides[get_bridge] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


@pytest.fixture
def transcriber(monkeypatch):
    monkeypatch.setattr(app_module, "VOICE_LINE_CHANNEL_SECRET", SECRET)
    monkeypatch.setattr(app_module, "ALLOW_UNSIGNED_WEBHOOKS", False)
    mock = AsyncMock(spec=VoiceTranscriber)
    mock.handle_events.return_value = []
    app.dependency_overrides[get_transcriber] = lambda: mock
    yield mock
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


def _body(*events) -> bytes:
    return json.dumps({"destination": "Ubot", "events": list(events)}).encode("utf-8")


def _post(client, path, body, secret=SECRET):
    headers = {"content-type": "application/json"}
    if secret is not None:
        headers["x-line-signature"] = sign(body, secret)
    return client.post(path, content=body, headers=headers)


# ---------------------------------------------------------------------------
# POST /webhook
# ---------------------------------------------------------------------------


class TestWebhook:
    def test_signed_request_schedules_events(self, client, bridge):
        body = _body(text_event_dict("hi"), media_event_dict("image"))
        resp = _post(client, "/webhook", body)

        assert resp.status_code == 200
        data = resp.json()
        assert data["message"] == "OK"
        assert data["receivedEvents"] == 2
        assert "timestamp" in data

        bridge.handle_events.assert_awaited_once()
        events = bridge.handle_events.await_args.args[0]
        assert [e.message.type for e in events] == ["text", "image"]

    def test_bad_signature_rejected_with_200(self, client, bridge):
        resp = _post(client, "/webhook", _body(text_event_dict()), secret="wrong")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Invalid signature"
        assert resp.json()["receivedEvents"] == 0
        bridge.handle_events.assert_not_awaited()

    def test_missing_signature_rejected(self, client, bridge):
        resp = _post(client, "/webhook", _body(text_event_dict()), secret=None)
        assert resp.json()["message"] == "Invalid signature"
        bridge.handle_events.assert_not_awaited()

    def test_unsigned_allowed_when_configured(self, client, bridge, monkeypatch):
        monkeypatch.setattr(app_module, "ALLOW_UNSIGNED_WEBHOOKS", True)
        resp = _post(client, "/webhook", _body(text_event_dict()), secret=None)
        assert resp.json()["message"] == "OK"
        bridge.handle_events.assert_awaited_once()

    def test_invalid_json(self, client, bridge):
        resp = _post(client, "/webhook", b"{not json")
        assert resp.status_code == 200
        assert resp.json()["message"] == "Invalid JSON"
        bridge.handle_events.assert_not_awaited()

    def test_schema_violation(self, client, bridge):
        body = json.dumps({"events": [{"type": "message", "timestamp": 1}]}).encode("utf-8")
        resp = _post(client, "/webhook", body)
        assert resp.json()["message"] == "Invalid payload"
        bridge.handle_events.assert_not_awaited()

    def test_missing_events_key(self, client, bridge):
        resp = _post(client, "/webhook", b'{"destination": "U1"}')
        assert resp.json()["message"] == "Invalid payload"

    def test_empty_events_is_ok(self, client, bridge):
        resp = _post(client, "/webhook", _body())
        assert resp.json() == {
            "message": "OK",
            "receivedEvents": 0,
            "timestamp": resp.json()["timestamp"],
        }
        bridge.handle_events.assert_not_awaited()

    def test_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(app_module, "LINE_CHANNEL_SECRET", SECRET)
        app.dependency_overrides[get_bridge] = lambda: None
        try:
            resp = _post(client, "/webhook", _body(text_event_dict()))
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 200
        assert resp.json()["message"] == "Not configured"

    def test_bridge_failure_still_200(self, client, bridge):
        bridge.handle_events.side_effect = RuntimeError("drive down")
        resp = _post(client, "/webhook", _body(text_event_dict()))
        assert resp.status_code == 200
        assert resp.json()["message"] == "OK"

    def test_get_status(self, client):
        resp = client.get("/webhook")
        assert resp.status_code == 200
        assert resp.json()["status"] == "OK"


# ---------------------------------------------------------------------------
# POST /voice-webhook
# ---------------------------------------------------------------------------


class TestVoiceWebhook:
    def test_signed_audio_is_scheduled(self, client, transcriber):
        resp = _post(client, "/voice-webhook", _body(media_event_dict("audio")))
        assert resp.json()["receivedEvents"] == 1
        transcriber.handle_events.assert_awaited_once()

    def test_bad_signature(self, client, transcriber):
        resp = _post(client, "/voice-webhook", _body(media_event_dict("audio")), secret="nope")
        assert resp.json()["message"] == "Invalid signature"
        transcriber.handle_events.assert_not_awaited()

    def test_get_status(self, client):
        assert client.get("/voice-webhook").json()["status"] == "OK"


# ---------------------------------------------------------------------------
# Health and debug endpoints
# ---------------------------------------------------------------------------


class TestHealth:
    def test_reports_configuration(self, client, bridge):
        app.dependency_overrides[get_transcriber] = lambda: None
        data = client.get("/health").json()
        assert data == {
            "status": "ok",
            "version": __version__,
            "storage_configured": True,
            "voice_configured": False,
        }


class TestDebugLogs:
    def test_disabled_by_default(self, client, monkeypatch):
        monkeypatch.setattr(app_module, "ENABLE_DEBUG_ENDPOINTS", False)
        assert client.get("/debug/logs").status_code == 404
        assert client.delete("/debug/logs").status_code == 404

    def test_lists_and_clears_records(self, client, bridge, monkeypatch):
        monkeypatch.setattr(app_module, "ENABLE_DEBUG_ENDPOINTS", True)
        app.state.log_buffer.clear()

        _post(client, "/webhook", _body(text_event_dict()), secret="wrong")

        data = client.get("/debug/logs").json()
        assert data["capacity"] == app.state.log_buffer.capacity
        messages = [entry["message"] for entry in data["entries"]]
        assert any("invalid signature" in m for m in messages)
        assert {"timestamp", "level", "logger", "message"} <= set(data["entries"][0])

        cleared = client.delete("/debug/logs").json()["cleared"]
        assert cleared >= len(data["entries"]) >= 1
        assert client.get("/debug/logs").json()["entries"] == []


class TestStorageSelection:
    def _open(self):
        async def run():
            async with AsyncExitStack() as stack:
                bridge = await app_module._open_bridge(stack)
                return bridge, await bridge.handle_events([])

        return asyncio.run(run())

    def test_local_backend(self, tmp_path, monkeypatch):
        archive = tmp_path / "saved"
        monkeypatch.setenv("LINE_CHANNEL_ACCESS_TOKEN", "token")
        monkeypatch.setattr(app_module, "STORAGE_BACKEND", "local")
        monkeypatch.setattr(app_module, "LOCAL_STORAGE_DIR", str(archive))

        bridge, outcomes = self._open()
        assert isinstance(bridge, MessageBridge)
        assert outcomes == []
        assert archive.is_dir()

    def test_unknown_backend_rejected(self, monkeypatch):
        monkeypatch.setattr(app_module, "STORAGE_BACKEND", "s3")
        with pytest.raises(ValueError, match="STORAGE_BACKEND"):
            self._open()
