"""Tests for the playback HTTP and WebSocket endpoints."""

import time

import pytest
from fastapi.testclient import TestClient

from conftest import FakeProvider, ScriptedSink, make_settings
from readaloud.app import create_app


@pytest.fixture
def sink():
    return ScriptedSink()


@pytest.fixture
def client(sink):
    app = create_app(settings=make_settings(), provider=FakeProvider(), sink=sink)
    with TestClient(app) as test_client:
        yield test_client


def wait_for_state(client, state, attempts=100):
    for _ in range(attempts):
        body = client.get("/api/playback/status").json()
        if body["state"] == state:
            return body
        time.sleep(0.01)
    raise AssertionError(f"playback never reached {state}")


class TestStatus:
    def test_initial_status_is_idle(self, client):
        response = client.get("/api/playback/status")

        assert response.status_code == 200
        body = response.json()
        assert body["state"] == "idle"
        assert body["window"]["max_window_seconds"] == 90.0
        assert body["playlist"]["items"] == 0

    def test_health(self, client):
        response = client.get("/health")
        assert response.json()["playback_state"] == "idle"


class TestControls:
    def test_play_pause_resume_stop(self, client):
        response = client.post("/api/playback/play", json={"text": "Hello there."})
        assert response.status_code == 200
        assert response.json()["state"] in ("loading", "playing")

        wait_for_state(client, "playing")

        paused = client.post("/api/playback/pause")
        assert paused.status_code == 200
        assert paused.json()["state"] == "paused"

        resumed = client.post("/api/playback/resume")
        assert resumed.json()["state"] == "playing"

        stopped = client.post("/api/playback/stop")
        assert stopped.json()["state"] == "idle"

    def test_invalid_transition_is_conflict(self, client):
        response = client.post("/api/playback/pause")

        assert response.status_code == 409
        assert "idle" in response.json()["detail"]

        assert client.post("/api/playback/seek", json={"position": 1.0}).status_code == 409

    def test_speed_validation(self, client):
        assert client.post("/api/playback/speed", json={"rate": 10}).status_code == 422

        response = client.post("/api/playback/speed", json={"rate": 1.25})
        assert response.status_code == 200
        assert response.json()["speed"] == 1.25

    def test_seek_while_playing(self, client, sink):
        client.post("/api/playback/play", json={"text": "Hello there."})
        wait_for_state(client, "playing")

        response = client.post("/api/playback/seek", json={"position": 0.5})

        assert response.status_code == 200
        assert response.json()["position"] <= sink.buffered_end


class TestPlaylist:
    def test_playlist_from_page_text(self, client):
        page = (
            "The first paragraph is long enough to keep.\n\n"
            "Nav\n\n"
            "The second paragraph is also long enough."
        )
        response = client.post("/api/playback/playlist", json={"text": page})

        assert response.status_code == 200
        playlist = response.json()["playlist"]
        assert playlist["items"] == 2
        assert playlist["current_index"] == 0
        assert playlist["active"] is True

    def test_empty_playlist_rejected(self, client):
        response = client.post("/api/playback/playlist", json={"segments": []})
        assert response.status_code == 422

    def test_start_index_out_of_range(self, client):
        response = client.post(
            "/api/playback/playlist", json={"segments": ["One."], "start_index": 4}
        )
        assert response.status_code == 422


class TestVoices:
    def test_lists_provider_voices(self, client):
        response = client.get("/api/playback/voices")

        assert response.status_code == 200
        assert response.json()[0]["name"] == "Rachel"


class TestEvents:
    def test_events_stream_state_changes(self, client):
        with client.websocket_connect("/api/playback/events") as websocket:
            snapshot = websocket.receive_json()
            assert snapshot["type"] == "status"
            assert snapshot["state"] == "idle"

            client.post("/api/playback/play", json={"text": "Hello there."})

            event = websocket.receive_json()
            assert event["type"] == "state_changed"
            assert event["previous"] == "idle"
            assert event["current"] == "loading"
