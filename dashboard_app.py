"""
Wiener Linien departure monitor API (FastAPI)

Serves the dashboard state as JSON for the page that renders it. Outbound
requests to the transit proxy go through the offline cache, so the last
departure board stays available when the network drops.

Run
---
$ uvicorn dashboard_app:app --port 8080
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import httpx
from fastapi import Body, FastAPI, HTTPException, Request

from dashboard import Dashboard
from departures import Station
from offline_cache import CacheStorage, OfflineCacheTransport
from station_search import RECENT_SEARCHES_PATH, RecentSearches
from transit_client import TransitClient

OFFLINE_CACHE_PATH = (os.getenv("OFFLINE_CACHE_PATH") or "").strip()
OFFLINE_SHELL_BASE_URL = (os.getenv("OFFLINE_SHELL_BASE_URL") or "").strip()

cache_storage = CacheStorage(Path(OFFLINE_CACHE_PATH) if OFFLINE_CACHE_PATH else None)
offline_transport = OfflineCacheTransport(cache_storage)
transit_client = TransitClient.from_env(transport=offline_transport)
dashboard = Dashboard(transit_client, RecentSearches(RECENT_SEARCHES_PATH))

app = FastAPI(title="Wiener Linien Abfahrtsmonitor")


@app.on_event("startup")
async def init_offline_cache() -> None:
    removed = await offline_transport.activate()
    if removed:
        print(f"[startup] removed {len(removed)} outdated caches")
    if not OFFLINE_SHELL_BASE_URL:
        return
    try:
        await offline_transport.install(OFFLINE_SHELL_BASE_URL)
    except httpx.HTTPError as exc:
        print(f"[startup] offline cache install failed: {exc}")


@app.on_event("startup")
async def start_dashboard() -> None:
    dashboard.start()


@app.on_event("shutdown")
async def shutdown_dashboard() -> None:
    await dashboard.stop()
    await transit_client.aclose()


@app.get("/api/dashboard")
async def get_dashboard():
    return dashboard.view()


@app.post("/api/search")
async def set_search_text(payload: Dict[str, Any] = Body(...)):
    text = payload.get("text")
    if not isinstance(text, str):
        raise HTTPException(status_code=400, detail="Missing text")
    dashboard.set_search_text(text)
    return {"search_text": text}


@app.post("/api/search/focus")
async def focus_search():
    dashboard.focus_search()
    return dashboard.view()


@app.post("/api/search/close")
async def close_search():
    dashboard.close_dropdowns()
    return dashboard.view()


@app.post("/api/search/submit")
async def submit_search():
    station = dashboard.submit_search()
    return {"station": station.to_dict() if station else None}


@app.post("/api/station")
async def select_station(payload: Dict[str, Any] = Body(...)):
    station = Station.from_dict(payload)
    if station is None:
        raise HTTPException(status_code=400, detail="Invalid station")
    dashboard.select_station(station)
    return dashboard.view()


@app.post("/api/lines/{line_name}/toggle")
async def toggle_line(line_name: str):
    return {"line": line_name, "expanded": dashboard.toggle_line(line_name)}


@app.post("/api/push-message")
async def push_message(request: Request):
    """Show a push message ``{"title", "body"}`` as a dashboard notification."""
    body = await request.body()
    try:
        notification = await dashboard.receive_push(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid push message")
    return notification
