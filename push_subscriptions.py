"""Push subscription storage for Web Push notifications.

The relay talks to a ``SubscriptionStore``; the in-memory store is the
default and forgets everything on restart, the file store keeps the list in
a JSON file. Subscribing the same endpoint twice keeps both entries;
unsubscribing removes every entry with that endpoint.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PushSubscription:
    """A Web Push subscription descriptor as sent by the browser."""
    endpoint: str
    keys: Dict[str, str] = field(default_factory=dict)
    expiration_time: Optional[Any] = None
    created_at: str = field(default_factory=_now_iso)
    user_agent: Optional[str] = None

    @classmethod
    def from_descriptor(
        cls, data: Any, user_agent: Optional[str] = None
    ) -> Optional["PushSubscription"]:
        if not isinstance(data, dict):
            return None
        endpoint = data.get("endpoint")
        if not endpoint or not isinstance(endpoint, str):
            return None
        keys = data.get("keys") if isinstance(data.get("keys"), dict) else {}
        return cls(
            endpoint=endpoint,
            keys={k: str(v) for k, v in keys.items()},
            expiration_time=data.get("expirationTime", data.get("expiration_time")),
            created_at=data.get("created_at") or _now_iso(),
            user_agent=user_agent or data.get("user_agent"),
        )

    def to_subscription_info(self) -> dict:
        """Return dict in the format expected by pywebpush."""
        return {"endpoint": self.endpoint, "keys": dict(self.keys)}


class SubscriptionStore(ABC):
    """Where the relay keeps its subscribers."""

    @abstractmethod
    async def add(self, subscription: PushSubscription) -> None:
        pass

    @abstractmethod
    async def remove(self, endpoint: str) -> int:
        """Remove every subscription for ``endpoint``; returns how many."""
        pass

    @abstractmethod
    async def list(self) -> List[PushSubscription]:
        pass

    async def count(self) -> int:
        return len(await self.list())


class InMemorySubscriptionStore(SubscriptionStore):
    """Process-local list of subscriptions."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._subscriptions: List[PushSubscription] = []

    async def add(self, subscription: PushSubscription) -> None:
        async with self._lock:
            self._subscriptions.append(subscription)

    async def remove(self, endpoint: str) -> int:
        async with self._lock:
            before = len(self._subscriptions)
            self._subscriptions = [s for s in self._subscriptions if s.endpoint != endpoint]
            return before - len(self._subscriptions)

    async def list(self) -> List[PushSubscription]:
        async with self._lock:
            return list(self._subscriptions)


class FileSubscriptionStore(InMemorySubscriptionStore):
    """Subscription list mirrored to a JSON file after every change."""

    def __init__(self, path: Path):
        super().__init__()
        self._path = path
        self._load_sync()

    def _load_sync(self) -> None:
        self._subscriptions.clear()
        if not self._path.exists():
            self._path.parent.mkdir(parents=True, exist_ok=True)
            return
        try:
            raw = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError):
            return
        entries = raw.get("subscriptions", []) if isinstance(raw, dict) else []
        for entry in entries:
            sub = PushSubscription.from_descriptor(entry)
            if sub is not None:
                self._subscriptions.append(sub)

    def _serialise_state(self) -> str:
        data = {
            "subscriptions": [asdict(sub) for sub in self._subscriptions],
            "updated_at": _now_iso(),
        }
        return json.dumps(data, indent=2, sort_keys=True)

    def _persist(self) -> None:
        payload = self._serialise_state()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(payload)
        tmp_path.replace(self._path)

    async def add(self, subscription: PushSubscription) -> None:
        async with self._lock:
            self._subscriptions.append(subscription)
            self._persist()

    async def remove(self, endpoint: str) -> int:
        async with self._lock:
            before = len(self._subscriptions)
            self._subscriptions = [s for s in self._subscriptions if s.endpoint != endpoint]
            removed = before - len(self._subscriptions)
            if removed:
                self._persist()
            return removed


__all__ = [
    "PushSubscription",
    "SubscriptionStore",
    "InMemorySubscriptionStore",
    "FileSubscriptionStore",
]
