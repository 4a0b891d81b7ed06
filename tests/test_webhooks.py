"""Tests for webhook CRUD and import event delivery."""
import asyncio

from fastapi.testclient import TestClient

from app.main import app
from app.models.webhook import Webhook
from app.services import webhook_service

client = TestClient(app)


def test_create_and_list_webhooks(test_db):
    """Test creating a webhook and listing it."""
    response = client.post(
        "/api/webhooks",
        json={"url": "https://hooks.test/done", "event_type": "import.completed", "vector_set_name": "movies"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["event_type"] == "import.completed"
    assert data["vector_set_name"] == "movies"
    assert data["enabled"] is True

    response = client.get("/api/webhooks")
    assert response.status_code == 200
    assert [w["id"] for w in response.json()] == [data["id"]]


def test_create_webhook_unsupported_event(test_db):
    """Test that unknown event types are rejected."""
    response = client.post(
        "/api/webhooks", json={"url": "https://hooks.test/x", "event_type": "vectors.exploded"}
    )
    assert response.status_code == 422


def test_update_and_delete_webhook(test_db):
    """Test updating and deleting a webhook."""
    webhook_id = client.post(
        "/api/webhooks", json={"url": "https://hooks.test/a", "event_type": "import.failed"}
    ).json()["id"]

    response = client.put(f"/api/webhooks/{webhook_id}", json={"enabled": False, "event_type": "import.cancelled"})
    assert response.status_code == 200
    assert response.json()["enabled"] is False
    assert response.json()["event_type"] == "import.cancelled"

    response = client.put(f"/api/webhooks/{webhook_id}", json={"event_type": "nope"})
    assert response.status_code == 422

    response = client.delete(f"/api/webhooks/{webhook_id}")
    assert response.status_code == 204
    assert client.get(f"/api/webhooks/{webhook_id}").status_code == 404


def test_webhook_test_endpoint(test_db, monkeypatch):
    """Test that the test endpoint sends an import-shaped sample payload."""
    sent = []

    async def fake_send(url, payload):
        sent.append((url, payload))
        return {"success": True, "status_code": 200, "response_time": 0.01}

    monkeypatch.setattr("app.api.webhooks.test_webhook", fake_send)
    webhook_id = client.post(
        "/api/webhooks", json={"url": "https://hooks.test/t", "event_type": "import.started"}
    ).json()["id"]

    response = client.post(f"/api/webhooks/{webhook_id}/test")
    assert response.status_code == 200
    assert response.json()["success"] is True
    url, payload = sent[0]
    assert url == "https://hooks.test/t"
    assert payload["event"] == "import.started"
    assert payload["test"] is True
    assert "job_id" in payload["data"]


def test_trigger_filters_by_event_and_vector_set(test_db, monkeypatch):
    """Test that only matching, enabled subscriptions are notified."""
    db = test_db()
    db.add_all(
        [
            Webhook(url="https://hooks.test/all", event_type="import.completed"),
            Webhook(url="https://hooks.test/movies", event_type="import.completed", vector_set_name="movies"),
            Webhook(url="https://hooks.test/books", event_type="import.completed", vector_set_name="books"),
            Webhook(url="https://hooks.test/off", event_type="import.completed", enabled=False),
            Webhook(url="https://hooks.test/failed", event_type="import.failed"),
        ]
    )
    db.commit()

    sent = []

    async def fake_send(http_client, url, payload):
        sent.append(url)

    monkeypatch.setattr(webhook_service, "_send_webhook", fake_send)
    payload = {"event": "import.completed", "data": {"job_id": "j1", "vector_set_name": "movies"}}

    asyncio.run(webhook_service.trigger_webhooks("import.completed", payload, db))
    db.close()

    assert sorted(sent) == ["https://hooks.test/all", "https://hooks.test/movies"]


def test_notifier_runs_trigger(test_db, monkeypatch):
    """Test that the synchronous notifier delivers through trigger_webhooks."""
    db = test_db()
    calls = []

    async def fake_trigger(event_type, payload, session):
        calls.append((event_type, payload["data"]["job_id"], session))

    monkeypatch.setattr(webhook_service, "trigger_webhooks", fake_trigger)
    notify = webhook_service.webhook_notifier(db)
    notify("import.started", {"event": "import.started", "data": {"job_id": "j1"}})
    db.close()

    assert calls == [("import.started", "j1", db)]


def test_list_webhooks_filters(test_db):
    """Test filtering subscriptions by event and vector set."""
    client.post("/api/webhooks", json={"url": "https://hooks.test/1", "event_type": "import.completed"})
    movies_id = client.post(
        "/api/webhooks",
        json={"url": "https://hooks.test/2", "event_type": "import.failed", "vector_set_name": "movies"},
    ).json()["id"]

    response = client.get("/api/webhooks", params={"event_type": "import.failed"})
    assert [w["id"] for w in response.json()] == [movies_id]

    response = client.get("/api/webhooks", params={"vector_set_name": "movies"})
    assert [w["id"] for w in response.json()] == [movies_id]


def test_clear_vector_set_scope(test_db):
    """Test that an empty vector set name widens a subscription to all sets."""
    webhook_id = client.post(
        "/api/webhooks",
        json={"url": "https://hooks.test/s", "event_type": "import.completed", "vector_set_name": "movies"},
    ).json()["id"]

    response = client.put(f"/api/webhooks/{webhook_id}", json={"vector_set_name": ""})
    assert response.status_code == 200
    assert response.json()["vector_set_name"] is None


def test_trigger_ignores_unknown_event(test_db, monkeypatch):
    """Test that unknown events send nothing."""
    db = test_db()
    db.add(Webhook(url="https://hooks.test/any", event_type="import.completed"))
    db.commit()
    sent = []

    async def fake_send(http_client, url, payload):
        sent.append(url)

    monkeypatch.setattr(webhook_service, "_send_webhook", fake_send)
    asyncio.run(webhook_service.trigger_webhooks("import.exploded", {"data": {}}, db))
    db.close()

    assert sent == []
