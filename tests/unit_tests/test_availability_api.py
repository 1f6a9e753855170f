"""
Tests for the /api/courts/{court_id}/availability endpoints.

The `client` fixture runs against the seeded SQLite venue: c1 and c2
share a field, c2 has a confirmed 18:00 booking; c3 stands alone with a
completed 17:00 booking and a 19:00 block.
"""

import time

import pytest
from starlette.websockets import WebSocketDisconnect

from tests.mocks.models import WEDNESDAY

URL = "/api/courts/{court}/availability"


def _availability(data):
    return {s["start_time"]: s["is_available"] for s in data["slots"]}


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not met before timeout"
        time.sleep(0.01)


class TestGetAvailability:
    def test_sibling_booking_blocks_slot(self, client):
        resp = client.get(URL.format(court="c1"), params={"date": "2026-02-11"})
        assert resp.status_code == 200

        data = resp.json()
        assert data["court_id"] == "c1"
        assert data["date"] == "2026-02-11"
        assert data["include_completed"] is False
        assert _availability(data) == {
            "17:00:00": True,
            "18:00:00": False,
            "19:00:00": True,
        }
        taken = next(s for s in data["slots"] if s["start_time"] == "18:00:00")
        assert taken["occupied_by"]["kind"] == "booking"
        assert taken["occupied_by"]["court_id"] == "c2"

    def test_slots_carry_price(self, client):
        resp = client.get(URL.format(court="c1"), params={"date": "2026-02-11"})
        assert all(s["price"] == 40.0 for s in resp.json()["slots"])

    def test_block_reported(self, client):
        resp = client.get(URL.format(court="c3"), params={"date": "2026-02-11"})
        blocked = next(s for s in resp.json()["slots"] if s["start_time"] == "19:00:00")
        assert blocked["is_available"] is False
        assert blocked["occupied_by"] == {
            "kind": "block",
            "court_id": "c3",
            "status": None,
            "reason": "Lights repair",
            "record_id": blocked["occupied_by"]["record_id"],
        }

    def test_completed_booking_only_in_admin_view(self, client):
        public = client.get(URL.format(court="c3"), params={"date": "2026-02-11"})
        admin = client.get(
            URL.format(court="c3"),
            params={"date": "2026-02-11", "include_completed": "true"},
        )
        assert _availability(public.json())["17:00:00"] is True
        assert _availability(admin.json())["17:00:00"] is False
        assert admin.json()["include_completed"] is True

    def test_closed_day_is_empty(self, client):
        resp = client.get(URL.format(court="c1"), params={"date": "2026-02-10"})
        assert resp.status_code == 200
        assert resp.json()["slots"] == []

    def test_unknown_court_is_empty(self, client):
        resp = client.get(URL.format(court="nope"), params={"date": "2026-02-11"})
        assert resp.status_code == 200
        assert resp.json()["slots"] == []

    def test_missing_date(self, client):
        resp = client.get(URL.format(court="c1"))
        assert resp.status_code == 422

    def test_malformed_date(self, client):
        resp = client.get(URL.format(court="c1"), params={"date": "2026-13-01"})
        assert resp.status_code == 422

    def test_blank_court_id(self, client):
        resp = client.get(URL.format(court="%20"), params={"date": "2026-02-11"})
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_input"

    def test_store_failure_is_503(self, client, monkeypatch):
        async def _boom(court_id):
            raise OSError("disk I/O error")

        monkeypatch.setattr(client.app.state.store, "resolve_court_group", _boom)

        resp = client.get(URL.format(court="c1"), params={"date": "2026-02-11"})
        assert resp.status_code == 503
        detail = resp.json()["detail"]
        assert detail["error"] == "group_lookup_failed"
        assert detail["details"] == {"court_id": "c1"}


class TestVersionedQueries:
    def test_same_version_reuses_result(self, client):
        store = client.app.state.store
        params = {"date": "2026-02-11", "version": 1}

        before = client.get(URL.format(court="c1"), params=params)
        client.portal.call(store.create_booking, "c1", WEDNESDAY, "17:00", "18:00")
        cached = client.get(URL.format(court="c1"), params=params)
        fresh = client.get(URL.format(court="c1"), params={**params, "version": 2})

        assert _availability(before.json())["17:00:00"] is True
        assert _availability(cached.json())["17:00:00"] is True
        assert _availability(fresh.json())["17:00:00"] is False

    def test_no_version_always_fresh(self, client):
        store = client.app.state.store
        client.get(URL.format(court="c1"), params={"date": "2026-02-11", "version": 1})
        client.portal.call(store.create_booking, "c1", WEDNESDAY, "19:00", "20:00")

        resp = client.get(URL.format(court="c1"), params={"date": "2026-02-11"})
        assert _availability(resp.json())["19:00:00"] is False

    def test_negative_version_rejected(self, client):
        resp = client.get(URL.format(court="c1"), params={"date": "2026-02-11", "version": -1})
        assert resp.status_code == 422


class TestWatchAvailability:
    def test_snapshot_on_connect(self, client):
        with client.websocket_connect(URL.format(court="c1") + "/ws?date=2026-02-11") as ws:
            message = ws.receive_json()

        assert message["type"] == "snapshot"
        assert message["court_id"] == "c1"
        assert message["date"] == "2026-02-11"
        assert _availability(message) == {
            "17:00:00": True,
            "18:00:00": False,
            "19:00:00": True,
        }

    def test_new_booking_pushes_snapshot(self, client):
        store = client.app.state.store
        with client.websocket_connect(URL.format(court="c1") + "/ws?date=2026-02-11") as ws:
            ws.receive_json()
            # A booking on the sibling court reaches c1's watcher
            client.portal.call(store.create_booking, "c2", WEDNESDAY, "17:00", "18:00")
            message = ws.receive_json()

        assert message["type"] == "snapshot"
        assert _availability(message)["17:00:00"] is False

    def test_refresh_message_recomputes(self, client):
        with client.websocket_connect(URL.format(court="c3") + "/ws?date=2026-02-11") as ws:
            first = ws.receive_json()
            ws.send_text("refresh")
            second = ws.receive_json()

        assert second["type"] == "snapshot"
        assert second["slots"] == first["slots"]

    def test_disconnect_releases_watch(self, client):
        engine = client.app.state.engine
        with client.websocket_connect(URL.format(court="c1") + "/ws?date=2026-02-11") as ws:
            ws.receive_json()
            assert engine.open_watches == 1

        _wait_for(lambda: engine.open_watches == 0)
        _wait_for(lambda: client.app.state.store.feed.listener_count == 0)

    def test_initial_failure_sends_error_and_closes(self, client, monkeypatch):
        async def _boom(court_id):
            raise OSError("disk I/O error")

        monkeypatch.setattr(client.app.state.store, "list_templates", _boom)

        with client.websocket_connect(URL.format(court="c1") + "/ws?date=2026-02-11") as ws:
            message = ws.receive_json()
            assert message["type"] == "error"
            assert message["error"] == "template_fetch_failed"
            assert message["stale"] is False

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
            assert exc_info.value.code == 1011
