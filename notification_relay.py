"""
Notification relay

Keeps a list of Web Push subscribers and, on a fixed timer, checks a
departures feed. When any departure is within the threshold every subscriber
gets a push message. A failed delivery is logged and the fan-out continues;
subscriptions the push service reports as gone (404/410) are dropped.

Repeated pushes for the same imminent bus are governed by ``cooldown_s``:
0 notifies on every triggering sweep, a positive value skips subscribers
that were notified less than ``cooldown_s`` seconds ago.
"""

from __future__ import annotations

import asyncio
import base64
import json
import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid
from pywebpush import WebPushException, webpush

from departures import all_countdowns
from push_subscriptions import PushSubscription, SubscriptionStore
from scheduling import PeriodicTask

PUSH_DEPARTURES_URL = os.getenv(
    "PUSH_DEPARTURES_URL",
    "https://nodejs-serverless-function-express-iota-kohl.vercel.app/api/proxy"
    "?url=%2Fws%2Fmonitor%3Fdiva%3D60200008",
)
PUSH_INTERVAL_S = float(os.getenv("PUSH_INTERVAL_S", str(60 * 60)))
PUSH_THRESHOLD_MIN = float(os.getenv("PUSH_THRESHOLD_MIN", "10"))
PUSH_COOLDOWN_S = float(os.getenv("PUSH_COOLDOWN_S", "0"))
PUSH_HTTP_TIMEOUT_S = float(os.getenv("PUSH_HTTP_TIMEOUT_S", "10"))
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:your-email@example.com")

BUS_ARRIVING_PAYLOAD = {
    "title": "Bus Arriving Soon",
    "body": "Your bus will arrive in 10 minutes or less!",
}

# Push services answer 404/410 for subscriptions that no longer exist.
GONE_STATUS_CODES = {404, 410}

SendFn = Callable[[dict, str], Any]


def generate_vapid_keys() -> Tuple[str, str]:
    """Create a throwaway VAPID pair: (public key, private key).

    Both are base64url without padding; the public key is the uncompressed
    point browsers expect as ``applicationServerKey`` and the private key is
    DER, which pywebpush accepts directly.
    """
    vapid = Vapid()
    vapid.generate_keys()
    public_raw = vapid.public_key.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.UncompressedPoint,
    )
    private_der = vapid.private_key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return _b64url(public_raw), _b64url(private_der)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def extract_countdowns(payload: Any) -> List[float]:
    """Minutes-until-departure values from a departures feed.

    Accepts a plain list of ``{"timeUntilDeparture": n}`` items or a monitor
    response (``{"data": {"monitors": [...]}}``).
    """
    if isinstance(payload, list):
        values: List[float] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            value = item.get("timeUntilDeparture")
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                values.append(value)
        return values
    if isinstance(payload, dict):
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        monitors = data.get("monitors")
        if isinstance(monitors, list):
            return [float(c) for c in all_countdowns(m for m in monitors if isinstance(m, dict))]
    return []


@dataclass
class SweepResult:
    """Outcome of one departures check."""
    checked_at: float
    countdowns: int = 0
    triggered: bool = False
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    removed: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": self.checked_at,
            "countdowns": self.countdowns,
            "triggered": self.triggered,
            "sent": self.sent,
            "failed": self.failed,
            "skipped": self.skipped,
            "removed": self.removed,
            "error": self.error,
        }


class NotificationRelay:
    """Subscriber fan-out driven by a periodic departures check."""

    def __init__(
        self,
        store: SubscriptionStore,
        departures_url: str = PUSH_DEPARTURES_URL,
        vapid_private_key: str = "",
        vapid_subject: str = VAPID_SUBJECT,
        threshold_min: float = PUSH_THRESHOLD_MIN,
        interval_s: float = PUSH_INTERVAL_S,
        cooldown_s: float = PUSH_COOLDOWN_S,
        payload: Optional[Dict[str, str]] = None,
        send_fn: Optional[SendFn] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.departures_url = departures_url
        self.threshold_min = threshold_min
        self.interval_s = interval_s
        self.cooldown_s = cooldown_s
        self.payload = dict(payload or BUS_ARRIVING_PAYLOAD)
        self._vapid_private_key = vapid_private_key
        self._vapid_subject = vapid_subject
        self._send_fn = send_fn or self._webpush
        self._transport = transport
        self._clock = clock
        self._last_sent: Dict[str, float] = {}
        self._task: Optional[PeriodicTask] = None
        self.last_sweep: Optional[SweepResult] = None

    # Subscriptions -------------------------------------------------------

    async def subscribe(self, descriptor: Any, user_agent: Optional[str] = None) -> PushSubscription:
        subscription = PushSubscription.from_descriptor(descriptor, user_agent=user_agent)
        if subscription is None:
            raise ValueError("subscription descriptor needs an endpoint")
        await self.store.add(subscription)
        return subscription

    async def unsubscribe(self, endpoint: str) -> int:
        removed = await self.store.remove(endpoint)
        if removed:
            self._last_sent.pop(endpoint, None)
        return removed

    # Sweep ---------------------------------------------------------------

    def should_notify(self, countdowns: List[float]) -> bool:
        return any(c <= self.threshold_min for c in countdowns)

    async def fetch_countdowns(self) -> List[float]:
        async with httpx.AsyncClient(timeout=PUSH_HTTP_TIMEOUT_S, transport=self._transport) as client:
            resp = await client.get(self.departures_url)
            resp.raise_for_status()
            return extract_countdowns(resp.json())

    async def check_departures(self) -> SweepResult:
        result = SweepResult(checked_at=self._clock())
        try:
            countdowns = await self.fetch_countdowns()
        except (httpx.HTTPError, ValueError) as exc:
            print(f"[relay] departures fetch failed: {exc}")
            result.error = str(exc) or exc.__class__.__name__
            self.last_sweep = result
            return result
        result.countdowns = len(countdowns)
        result.triggered = self.should_notify(countdowns)
        if result.triggered:
            await self.notify_all(self.payload, result)
        self.last_sweep = result
        return result

    async def notify_all(self, payload: Dict[str, Any], result: Optional[SweepResult] = None) -> SweepResult:
        result = result or SweepResult(checked_at=self._clock())
        subscriptions = await self.store.list()
        data = json.dumps(payload)
        now = self._clock()
        for sub in subscriptions:
            last = self._last_sent.get(sub.endpoint)
            if self.cooldown_s > 0 and last is not None and now - last < self.cooldown_s:
                result.skipped += 1
                continue
            try:
                await asyncio.to_thread(self._send_fn, sub.to_subscription_info(), data)
            except WebPushException as e:
                result.failed += 1
                status = getattr(e.response, "status_code", None) if e.response is not None else None
                if status in GONE_STATUS_CODES:
                    print("[relay] removing expired subscription")
                    result.removed += await self.store.remove(sub.endpoint)
                    self._last_sent.pop(sub.endpoint, None)
                else:
                    print(f"[relay] WebPushException: {e}")
                continue
            except Exception as push_err:
                result.failed += 1
                print(f"[relay] error sending notification: {push_err}")
                continue
            result.sent += 1
            self._last_sent[sub.endpoint] = now
        print(f"[relay] sent {result.sent}/{len(subscriptions)} notifications")
        return result

    def _webpush(self, subscription_info: dict, data: str) -> Any:
        if not self._vapid_private_key:
            raise RuntimeError("VAPID private key not configured")
        return webpush(
            subscription_info=subscription_info,
            data=data,
            vapid_private_key=self._vapid_private_key,
            vapid_claims={"sub": self._vapid_subject},
        )

    # Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self._task is None:
            self._task = PeriodicTask(
                "relay", self.interval_s, self.check_departures, run_immediately=False
            )
        self._task.start()

    async def stop(self) -> None:
        if self._task is not None:
            await self._task.aclose()
            self._task = None


__all__ = [
    "NotificationRelay",
    "SweepResult",
    "extract_countdowns",
    "generate_vapid_keys",
    "BUS_ARRIVING_PAYLOAD",
]
