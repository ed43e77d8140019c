"""
Offline cache for outbound HTTP requests.

``OfflineCacheTransport`` wraps the network transport of an
``httpx.AsyncClient`` and answers requests from two named caches:

- Data requests (URL contains ``/api/``) are network-first. A 200 answer is
  stored in the data cache under its URL; if the network is unreachable the
  last stored answer for that exact URL is returned instead.
- Everything else is cache-first: a stored answer from any cache wins,
  otherwise the request goes to the network.

``install()`` fills the static cache with the app shell in one go and stores
nothing if any of those fetches fails. ``activate()`` deletes caches whose
names are no longer current, so bumping a cache version drops its entries.
"""

from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urljoin

import httpx

STATIC_CACHE_NAME = os.getenv("STATIC_CACHE_NAME", "wiener-linien-cache-v1")
DATA_CACHE_NAME = os.getenv("DATA_CACHE_NAME", "wiener-linien-data-cache-v1")
SHELL_URLS: List[str] = ["/", "/index.html", "/manifest.json", "/favicon.ico"]
API_PATH_MARKER = "/api/"
NOTIFICATION_ICON = "logo192.png"


@dataclass
class CachedResponse:
    """Stored copy of a response. ``content`` is the decoded body."""
    status_code: int
    headers: List[Tuple[str, str]] = field(default_factory=list)
    content: bytes = b""

    def to_response(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            content=self.content,
            request=request,
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "headers": [list(pair) for pair in self.headers],
            "content": base64.b64encode(self.content).decode("ascii"),
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "CachedResponse":
        return cls(
            status_code=int(data.get("status_code", 200)),
            headers=[(str(k), str(v)) for k, v in data.get("headers", [])],
            content=base64.b64decode(data.get("content", "")),
        )


class ResponseCache:
    """One named cache: request URL -> stored response."""

    def __init__(self, name: str, on_change: Optional[Callable[[], None]] = None):
        self.name = name
        self._entries: Dict[str, CachedResponse] = {}
        self._on_change = on_change

    def match(self, url: str) -> Optional[CachedResponse]:
        return self._entries.get(url)

    def put(self, url: str, entry: CachedResponse) -> None:
        self._entries[url] = entry
        if self._on_change is not None:
            self._on_change()

    def put_many(self, entries: Sequence[Tuple[str, CachedResponse]]) -> None:
        for url, entry in entries:
            self._entries[url] = entry
        if self._on_change is not None:
            self._on_change()

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)


class CacheStorage:
    """Named response caches, optionally mirrored to a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._caches: Dict[str, ResponseCache] = {}
        self._load_sync()

    def _load_sync(self) -> None:
        self._caches.clear()
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            print(f"[offline_cache] ignoring unreadable cache file {self._path}: {exc}")
            return
        caches = raw.get("caches", {}) if isinstance(raw, dict) else {}
        for name, entries in caches.items():
            cache = ResponseCache(name, on_change=self._persist)
            for url, entry in (entries or {}).items():
                try:
                    cache._entries[url] = CachedResponse.from_json(entry)
                except (TypeError, ValueError):
                    continue
            self._caches[name] = cache

    def _persist(self) -> None:
        if self._path is None:
            return
        data = {
            "caches": {
                name: {url: cache.match(url).to_json() for url in cache.keys()}
                for name, cache in self._caches.items()
            }
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(data))
        tmp_path.replace(self._path)

    def open(self, name: str) -> ResponseCache:
        cache = self._caches.get(name)
        if cache is None:
            cache = ResponseCache(name, on_change=self._persist)
            self._caches[name] = cache
        return cache

    def has(self, name: str) -> bool:
        return name in self._caches

    def delete(self, name: str) -> bool:
        if name not in self._caches:
            return False
        del self._caches[name]
        self._persist()
        return True

    def keys(self) -> List[str]:
        return list(self._caches.keys())

    def match(self, url: str) -> Optional[CachedResponse]:
        for cache in self._caches.values():
            entry = cache.match(url)
            if entry is not None:
                return entry
        return None


# Describe the wire encoding, not the stored (decoded) body.
_WIRE_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


async def _buffer(response: httpx.Response) -> CachedResponse:
    try:
        content = await response.aread()
    finally:
        await response.aclose()
    headers = [
        (key, value)
        for key, value in response.headers.multi_items()
        if key.lower() not in _WIRE_HEADERS
    ]
    return CachedResponse(response.status_code, headers, content)


class OfflineCacheTransport(httpx.AsyncBaseTransport):
    """Serves requests from ``CacheStorage`` around a real transport."""

    def __init__(
        self,
        storage: Optional[CacheStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        static_cache_name: str = STATIC_CACHE_NAME,
        data_cache_name: str = DATA_CACHE_NAME,
        shell_urls: Sequence[str] = SHELL_URLS,
        api_marker: str = API_PATH_MARKER,
    ) -> None:
        self.storage = storage if storage is not None else CacheStorage()
        self._network = transport or httpx.AsyncHTTPTransport()
        self.static_cache_name = static_cache_name
        self.data_cache_name = data_cache_name
        self.shell_urls = list(shell_urls)
        self.api_marker = api_marker

    async def install(self, base_url: str) -> int:
        """Fetch every shell URL and store them all, or store nothing."""
        fetched: List[Tuple[str, CachedResponse]] = []
        for path in self.shell_urls:
            url = urljoin(base_url, path)
            request = httpx.Request("GET", url)
            response = await self._network.handle_async_request(request)
            entry = await _buffer(response)
            if not 200 <= entry.status_code < 300:
                raise httpx.HTTPStatusError(
                    f"install: {url} answered {entry.status_code}",
                    request=request,
                    response=entry.to_response(request),
                )
            fetched.append((url, entry))
        self.storage.open(self.static_cache_name).put_many(fetched)
        print(f"[offline_cache] installed {len(fetched)} shell resources into {self.static_cache_name}")
        return len(fetched)

    async def activate(self) -> List[str]:
        """Drop caches left over from older versions."""
        current = {self.static_cache_name, self.data_cache_name}
        removed = [name for name in self.storage.keys() if name not in current]
        for name in removed:
            self.storage.delete(name)
            print(f"[offline_cache] deleted stale cache {name}")
        return removed

    def is_data_request(self, request: httpx.Request) -> bool:
        return self.api_marker in str(request.url)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET":
            return await self._network.handle_async_request(request)
        if self.is_data_request(request):
            return await self._network_first(request)
        cached = self.storage.match(str(request.url))
        if cached is not None:
            return cached.to_response(request)
        return await self._network.handle_async_request(request)

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        cache = self.storage.open(self.data_cache_name)
        try:
            response = await self._network.handle_async_request(request)
        except httpx.TransportError as exc:
            cached = cache.match(url)
            if cached is None:
                raise
            print(f"[offline_cache] network failed ({exc.__class__.__name__}), serving cached {url}")
            return cached.to_response(request)
        if response.status_code != 200:
            return response
        entry = await _buffer(response)
        cache.put(url, entry)
        return entry.to_response(request)

    async def aclose(self) -> None:
        await self._network.aclose()


ShowNotification = Callable[[str, Dict[str, Any]], Awaitable[Any]]


async def handle_push(data: Any, show_notification: ShowNotification) -> Any:
    """Display a push message ``{"title", "body"}`` and wait until it is shown."""
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    message = json.loads(data) if isinstance(data, str) else data
    if not isinstance(message, dict):
        raise ValueError("push message must be a JSON object")
    options = {
        "body": message.get("body"),
        "icon": NOTIFICATION_ICON,
        "badge": NOTIFICATION_ICON,
    }
    return await show_notification(message.get("title") or "", options)


__all__ = [
    "CachedResponse",
    "ResponseCache",
    "CacheStorage",
    "OfflineCacheTransport",
    "handle_push",
    "STATIC_CACHE_NAME",
    "DATA_CACHE_NAME",
    "SHELL_URLS",
]
