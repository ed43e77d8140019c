"""
Wiener Linien Push Relay (FastAPI)

Purpose
=======
Collect browser Web Push subscriptions and notify every subscriber when a
bus on the watched departure board is about to leave.

Run
---
$ uvicorn app:app --port 3000

Environment
-----------
- PORT (default 3000) when started with ``python app.py``
- VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY (a throwaway pair is generated if unset)
- PUSH_DEPARTURES_URL, PUSH_INTERVAL_S, PUSH_THRESHOLD_MIN, PUSH_COOLDOWN_S
- PUSH_SUBSCRIPTIONS_PATH (unset keeps subscriptions in memory only)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request

from notification_relay import (
    PUSH_COOLDOWN_S,
    PUSH_DEPARTURES_URL,
    PUSH_INTERVAL_S,
    PUSH_THRESHOLD_MIN,
    VAPID_SUBJECT,
    NotificationRelay,
    generate_vapid_keys,
)
from push_subscriptions import (
    FileSubscriptionStore,
    InMemorySubscriptionStore,
    SubscriptionStore,
)

# ---------------------------
# Config
# ---------------------------
PORT = int(os.getenv("PORT", "3000"))
PUSH_SUBSCRIPTIONS_PATH = (os.getenv("PUSH_SUBSCRIPTIONS_PATH") or "").strip()

VAPID_PUBLIC_KEY = (os.getenv("VAPID_PUBLIC_KEY") or "").strip()
VAPID_PRIVATE_KEY = (os.getenv("VAPID_PRIVATE_KEY") or "").strip()
if not VAPID_PUBLIC_KEY or not VAPID_PRIVATE_KEY:
    VAPID_PUBLIC_KEY, VAPID_PRIVATE_KEY = generate_vapid_keys()
    print("[relay] VAPID keys not configured, generated a temporary pair")


def build_store() -> SubscriptionStore:
    if PUSH_SUBSCRIPTIONS_PATH:
        return FileSubscriptionStore(Path(PUSH_SUBSCRIPTIONS_PATH))
    return InMemorySubscriptionStore()


relay = NotificationRelay(
    store=build_store(),
    departures_url=PUSH_DEPARTURES_URL,
    vapid_private_key=VAPID_PRIVATE_KEY,
    vapid_subject=VAPID_SUBJECT,
    threshold_min=PUSH_THRESHOLD_MIN,
    interval_s=PUSH_INTERVAL_S,
    cooldown_s=PUSH_COOLDOWN_S,
)

# ---------------------------
# App
# ---------------------------
app = FastAPI(title="Wiener Linien Push Relay")


@app.on_event("startup")
async def start_departure_checks() -> None:
    relay.start()
    print(f"[relay] checking departures every {relay.interval_s:.0f}s")


@app.on_event("shutdown")
async def stop_departure_checks() -> None:
    await relay.stop()


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")


async def _read_descriptor(request: Request) -> Dict[str, Any]:
    data = await _read_json(request)
    if not isinstance(data, dict) or not data.get("endpoint"):
        raise HTTPException(status_code=400, detail="Invalid subscription data")
    return data


@app.post("/subscribe", status_code=201)
async def subscribe(request: Request):
    """Register a push subscription descriptor."""
    data = await _read_descriptor(request)
    try:
        await relay.subscribe(data, user_agent=request.headers.get("user-agent"))
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid subscription data")
    return {}


@app.post("/unsubscribe")
async def unsubscribe(request: Request):
    """Drop every subscription with the descriptor's endpoint.

    A body without an endpoint matches nothing and is answered like any
    other unsubscribe.
    """
    data = await _read_json(request)
    endpoint = data.get("endpoint") if isinstance(data, dict) else None
    if endpoint:
        await relay.unsubscribe(str(endpoint))
    return {}


@app.get("/api/push/vapid-public-key")
async def get_vapid_public_key():
    """Return the VAPID public key for push subscription."""
    return {"publicKey": VAPID_PUBLIC_KEY}


@app.get("/api/push/status")
async def push_status():
    """Return relay status (for diagnostics)."""
    last = relay.last_sweep
    return {
        "subscription_count": await relay.store.count(),
        "threshold_min": relay.threshold_min,
        "interval_s": relay.interval_s,
        "cooldown_s": relay.cooldown_s,
        "last_sweep": last.to_dict() if last else None,
    }


@app.post("/api/push/check")
async def push_check():
    """Run one departures check right away."""
    result = await relay.check_departures()
    return result.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=PORT)
