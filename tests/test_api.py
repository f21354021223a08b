import pytest
from fastapi.testclient import TestClient

from conftest import FakeEngine
from transcriber.errors import EngineEnvironmentError
from transcriber.job_queue import TranscriptionQueue
from transcriber.main import create_app


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def client(engine):
    app = create_app(TranscriptionQueue(engine))
    with TestClient(app) as client:
        yield client


class TestService:
    def test_health_after_startup(self, client, engine):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "initialized": True}
        assert engine.init_count == 1

    def test_transcribe(self, client, engine):
        resp = client.post("/transcribe", params={"context": "system design"}, content=b"hello world")
        assert resp.status_code == 200
        data = resp.json()
        assert data["text"] == "hello world"
        assert data["language"] == "en"
        assert 'Additional context: "system design"' in engine.calls[0][1]

    def test_empty_body_rejected(self, client):
        resp = client.post("/transcribe", content=b"")
        assert resp.status_code == 400

    def test_engine_failure_maps_to_502(self, client):
        resp = client.post("/transcribe", content=b"fail")
        assert resp.status_code == 502
        assert "boom" in resp.json()["detail"]

    def test_stats_and_clear_context(self, client):
        client.post("/transcribe", content=b"first answer")
        stats = client.get("/stats").json()
        assert stats["total_processed"] == 1
        assert stats["context_size"] == 1
        assert stats["is_initialized"] is True

        assert client.post("/context/clear").json() == {"status": "cleared"}
        assert client.get("/stats").json()["context_size"] == 0

    def test_events_stream(self, client):
        with client.websocket_connect("/events") as ws:
            client.post("/transcribe", content=b"streamed text")
            event = ws.receive_json()
        assert event["type"] == "final"
        assert event["text"] == "streamed text"


def test_startup_fails_when_engine_unavailable():
    engine = FakeEngine(init_error=EngineEnvironmentError("Engine runtime not found"))
    app = create_app(TranscriptionQueue(engine))
    with pytest.raises(EngineEnvironmentError):
        with TestClient(app):
            pass
