import sys
import time
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

import dashboard_app as app_module  # noqa: E402
from dashboard import Dashboard  # noqa: E402
from station_search import RecentSearches  # noqa: E402
from transit_client import TransitClient  # noqa: E402

MONITOR_RESPONSE = {
    "message": {"messageCode": 1},
    "data": {"monitors": [{"lines": [
        {"name": "13A", "towards": "Hauptbahnhof",
         "departures": {"departure": [{"departureTime": {"countdown": 4}},
                                      {"departureTime": {"countdown": 1}}]}},
    ]}]},
}


@pytest.fixture()
def dashboard_client(tmp_path, monkeypatch):
    def handler(request):
        return httpx.Response(200, json=MONITOR_RESPONSE)

    client = TransitClient(
        proxy_url="https://proxy.example.com/api/proxy",
        transport=httpx.MockTransport(handler),
    )
    dashboard = Dashboard(client, RecentSearches(tmp_path / "recent.json"), poll_interval_s=60)
    monkeypatch.setattr(app_module, "dashboard", dashboard, raising=False)
    with TestClient(app_module.app) as test_client:
        yield test_client, dashboard


def _wait_for_lines(test_client, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        view = test_client.get("/api/dashboard").json()
        if view["lines"]:
            return view
        time.sleep(0.02)
    raise AssertionError("departures never arrived")


def test_select_station_and_poll(dashboard_client):
    test_client, dashboard = dashboard_client

    resp = test_client.post("/api/station", json={"name": "60200008", "title": "Karlsplatz"})
    assert resp.status_code == 200
    assert resp.json()["title"] == "Karlsplatz"

    view = _wait_for_lines(test_client)
    assert view["lines"][0]["line"] == "13A"
    assert view["lines"][0]["countdown"] == 1
    assert view["recent_searches"] == [{"name": "60200008", "title": "Karlsplatz"}]

    toggled = test_client.post("/api/lines/13A/toggle").json()
    assert toggled == {"line": "13A", "expanded": True}
    details = test_client.get("/api/dashboard").json()["lines"][0]["details"]
    assert details == [{"towards": "Hauptbahnhof", "countdown": 4}]


def test_invalid_station_rejected(dashboard_client):
    test_client, _ = dashboard_client
    assert test_client.post("/api/station", json={"title": "no id"}).status_code == 400
    assert test_client.post("/api/search", json={"text": 5}).status_code == 400


def test_submit_without_suggestions(dashboard_client):
    test_client, _ = dashboard_client
    assert test_client.post("/api/search/submit").json() == {"station": None}


def test_push_message_becomes_notification(dashboard_client):
    test_client, dashboard = dashboard_client

    resp = test_client.post("/api/push-message", content=b'{"title": "Bus Arriving Soon", "body": "soon"}')
    assert resp.status_code == 200
    assert resp.json()["badge"] == "logo192.png"
    assert test_client.get("/api/dashboard").json()["notifications"][0]["title"] == "Bus Arriving Soon"

    assert test_client.post("/api/push-message", content=b"nope").status_code == 400
