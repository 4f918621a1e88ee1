import pytest

pytest.importorskip("fastapi")

from fastapi.testclient import TestClient  # noqa: E402

from ticket_agent.config import settings  # noqa: E402
from ticket_agent.main import BatchTracker, create_app  # noqa: E402
from ticket_agent.services.jobs import BatchEvent, BatchScheduler, BatchSnapshot  # noqa: E402
from ticket_agent.services.pipeline import TicketPipeline  # noqa: E402


@pytest.fixture
def client(text_recognizer):
    pipeline = TicketPipeline(recognizer=text_recognizer, enable_preprocessing=False)
    app = create_app(BatchScheduler(pipeline, workers=2))
    with TestClient(app) as c:
        yield c


def _files(*payloads):
    return [("files", (f"t{i}.png", data, "image/png")) for i, data in enumerate(payloads)]


def test_health(client):
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["running"] is True
    assert body["workers"] == 2


def test_batch_round_trip(client):
    resp = client.post("/batches", files=_files(b"ok", b"bad"))
    assert resp.status_code == 202
    batch_id = resp.json()["batch_id"]

    assert client.app.state.scheduler.wait_idle(10.0)
    body = client.get(f"/batches/{batch_id}").json()
    assert body["status"] == "drained"
    ok, bad = body["items"]
    assert ok["status"] == "completed"
    assert ok["result"]["fields"]["ticket_number"]["value"] == "TK-2024-001"
    assert ok["result"]["fields"]["dispatcher"]["needs_review"] is True
    assert bad["status"] == "failed"
    assert bad["error"] == "unreadable image"


def test_empty_upload_rejected(client):
    assert client.post("/batches").status_code == 400


def test_too_many_files_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "BATCH_MAX_FILES", 2)
    assert client.post("/batches", files=_files(b"ok", b"ok", b"ok")).status_code == 413


def test_unknown_batch(client):
    assert client.get("/batches/batch_missing").status_code == 404
    resp = client.delete("/batches/batch_missing")
    assert resp.status_code == 202
    assert resp.json()["cancelled"] is False


def test_extract_returns_audit_trail(client):
    resp = client.post("/extract", files={"file": ("t.png", b"ok", "image/png")})
    assert resp.status_code == 200
    body = resp.json()
    assert body["fields"]["weight"]["value"] == "25.50"
    assert body["ticket_type"] == "bauxite"
    assert "TK-2024-001" in body["text"]
    assert body["pattern_candidates"]["ticket_number"]["source"] == "pattern"
    assert body["heuristic_candidates"]


def test_extract_unreadable_image(client):
    resp = client.post("/extract", files={"file": ("t.png", b"bad", "image/png")})
    assert resp.status_code == 422


def test_templates(client):
    body = client.get("/templates").json()
    assert [t["key"] for t in body] == ["bauxite", "alumina", "generic"]


def test_batch_history_keeps_most_recent():
    tracker = BatchTracker(max_batches=2)
    for batch_id in ("b1", "b2", "b3"):
        tracker(BatchEvent("completed", BatchSnapshot(batch_id, "drained", ())))
    tracker(BatchEvent("failed", BatchSnapshot("b2", "failed", ()), error="scheduler shut down"))
    tracker(BatchEvent("completed", BatchSnapshot("b4", "drained", ())))

    assert len(tracker) == 2
    assert tracker.get("b1") is None
    assert tracker.get("b3") is None
    snap, error = tracker.get("b2")
    assert snap.status == "failed"
    assert error == "scheduler shut down"
    assert tracker.get("b4")[1] is None
