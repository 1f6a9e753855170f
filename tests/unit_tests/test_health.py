"""Tests for the /api/health endpoint."""


def test_health_returns_ok(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200

    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == "0.1.0"
    assert data["change_feed"] == "running"
    assert data["open_watches"] == 0
    assert "timestamp" in data


def test_health_counts_open_watches(client):
    with client.websocket_connect("/api/courts/c1/availability/ws?date=2026-02-11") as ws:
        ws.receive_json()
        data = client.get("/api/health").json()
    assert data["open_watches"] == 1


def test_health_degraded_without_change_feed(client):
    client.portal.call(client.app.state.store.feed.stop)

    data = client.get("/api/health").json()
    assert data["status"] == "degraded"
    assert data["change_feed"] == "stopped"
