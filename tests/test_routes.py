from types import SimpleNamespace
import uuid

import pytest
from fastapi.testclient import TestClient

import main
from shared.storage.dependencies import get_ticket_store
from shared.utils.qr_generator import build_payload, new_token
from shared.utils.rate_limiter import limiter
from services.ticket_generation.routes import generation as generation_routes
from services.ticket_validation.routes import validation as validation_routes
from tests.doubles import make_record


@pytest.fixture
def cache(monkeypatch):
    data = {}

    async def fake_get(key):
        return data.get(key)

    async def fake_set(key, value, expire=3600):
        data[key] = value

    monkeypatch.setattr(validation_routes, "cache_get", fake_get)
    monkeypatch.setattr(validation_routes, "cache_set", fake_set)
    return data


@pytest.fixture
def client(store, cache, monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    main.app.dependency_overrides[get_ticket_store] = lambda: store
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def seeded(store):
    payloads = []
    for n in range(1, 4):
        payload = build_payload(new_token())
        payloads.append(payload)
        record = make_record(payload, reference=f"ref{n:05d}", sequence_number=n)
        record.id = str(uuid.uuid4())
        store.tickets[payload] = record
    return payloads


def test_validate_first_then_duplicate(client, seeded, cache):
    body = {"payload": seeded[0], "inspector_id": "puerta-1"}

    first = client.post("/api/v1/tickets/validate", json=body).json()
    second = client.post("/api/v1/tickets/validate", json=body).json()

    assert first["kind"] == "first_valid"
    assert first["valid"] is True
    assert first["count"] == 1
    assert first["beeps"] == 1
    assert first["feedback"] == "success"
    assert first["first_validated_at"] is not None
    assert first["stats"] == {"event_name": "Concierto", "event_date": "2024-05-18",
                              "total": 3, "scanned": 1, "remaining": 2}

    assert second["kind"] == "duplicate"
    assert second["valid"] is False
    assert second["count"] == 2
    assert second["first_validated_at"] == first["first_validated_at"]
    assert second["stats"]["scanned"] == 1
    assert cache["control:state:puerta-1"]["count"] == 2


def test_validate_malformed_scan_skips_store(client, store):
    response = client.post("/api/v1/tickets/validate", json={"payload": "hola", "inspector_id": "p"})

    assert response.status_code == 200
    assert response.json()["kind"] == "malformed_scan"
    assert store.total_calls == 0


def test_validate_store_unavailable(client, store):
    store.fail = True

    data = client.post("/api/v1/tickets/validate",
                       json={"payload": build_payload(new_token()), "inspector_id": "p"}).json()

    assert data["kind"] == "store_unavailable"
    assert data["message"].startswith("Error:")


def test_switch_scope(client, seeded, cache):
    response = client.put("/api/v1/tickets/control/puerta-2/scope", params={"name": "Concierto"})

    assert response.status_code == 200
    assert response.json()["total"] == 3
    assert cache["control:state:puerta-2"]["stats"]["event_name"] == "Concierto"


def test_get_ticket(client, store, seeded):
    ticket_id = store.tickets[seeded[1]].id

    response = client.get(f"/api/v1/tickets/{ticket_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["reference"] == "ref00002"
    assert "payload" not in data and "token" not in data
    assert client.get("/api/v1/tickets/00000000-0000-0000-0000-000000000000").status_code == 404


def test_event_stats_and_tickets(client, seeded):
    client.post("/api/v1/tickets/validate", json={"payload": seeded[2], "inspector_id": "p"})

    stats = client.get("/api/v1/events/stats", params={"name": "Concierto", "date": "2024-05-18"}).json()
    tickets = client.get("/api/v1/events/tickets", params={"name": "Concierto"}).json()

    assert (stats["total"], stats["scanned"], stats["remaining"]) == (3, 1, 2)
    assert [t["sequence_number"] for t in tickets["tickets"]] == [1, 2, 3]
    assert [t["control_count"] for t in tickets["tickets"]] == [0, 0, 1]


def test_event_stats_store_down(client, store):
    store.fail = True
    assert client.get("/api/v1/events/stats", params={"name": "Concierto"}).status_code == 503


class FakeTask:
    def __init__(self):
        self.calls = []

    def delay(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(id="task-123")


def test_generate_enqueues_task(client, monkeypatch):
    task = FakeTask()
    monkeypatch.setattr(generation_routes, "generate_ticket_batch_task", task)
    event = {"name": "Gala", "date": "2024-06-01", "start": "20:00", "end": "23:00", "place": "Sala", "quantity": 100}

    response = client.post("/api/v1/generation/tickets", json={"event": event, "save_to_cloud": True})

    assert response.status_code == 202
    assert response.json() == {"task_id": "task-123", "status": "queued"}
    assert task.calls == [{"event": event, "save_to_cloud": True}]


def test_generate_rejects_zero_quantity(client):
    event = {"name": "Gala", "date": "2024-06-01", "start": "20:00", "end": "23:00", "place": "Sala", "quantity": 0}
    assert client.post("/api/v1/generation/tickets", json={"event": event}).status_code == 422


def test_roster_upload(client, monkeypatch):
    task = FakeTask()
    monkeypatch.setattr(generation_routes, "import_ticket_roster_task", task)
    roster = "ref;nombre;fecha;inicio;fin;lugar\nA1;Gala;2024-06-01;20:00;23:00;Sala\n"

    response = client.post("/api/v1/generation/roster", files={"file": ("roster.csv", roster.encode(), "text/csv")})

    assert response.status_code == 202
    assert task.calls == [{"roster_text": roster, "save_to_cloud": False}]


def test_roster_must_be_utf8(client, monkeypatch):
    monkeypatch.setattr(generation_routes, "import_ticket_roster_task", FakeTask())

    response = client.post("/api/v1/generation/roster", files={"file": ("r.csv", b"\xff\xfe\x00", "text/csv")})

    assert response.status_code == 400


@pytest.mark.parametrize("state,info,expected", [
    ("PENDING", None, {"state": "PENDING", "processed": 0, "status": None}),
    ("PROGRESS", {"processed": 25, "total": 100, "progress": 0.25}, {"processed": 25, "progress": 0.25}),
    ("SUCCESS", {"status": "cancelled", "kind": "cancelled", "processed": 40, "total": 100, "message": "Cancelado"},
     {"status": "cancelled", "kind": "cancelled", "progress": 0.4}),
    ("FAILURE", RuntimeError("boom"), {"status": "failed", "message": "boom"}),
])
def test_generation_status(client, monkeypatch, state, info, expected):
    monkeypatch.setattr(generation_routes, "AsyncResult", lambda task_id, app=None: SimpleNamespace(state=state, info=info))

    data = client.get("/api/v1/generation/task-123").json()

    assert data["task_id"] == "task-123"
    for key, value in expected.items():
        assert data[key] == value


def test_cancel_generation(client, monkeypatch):
    cancelled = []

    async def fake_cancel(task_id):
        cancelled.append(task_id)

    monkeypatch.setattr(generation_routes, "request_cancel", fake_cancel)

    response = client.post("/api/v1/generation/task-123/cancel")

    assert response.status_code == 202
    assert response.json()["status"] == "cancelling"
    assert cancelled == ["task-123"]


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"
