"""Async client for the Wiener Linien realtime API behind the serverless proxy."""
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from departures import Station

TRANSIT_PROXY_URL = os.getenv(
    "TRANSIT_PROXY_URL",
    "https://nodejs-serverless-function-express-iota-kohl.vercel.app/api/proxy",
)
TRANSIT_HTTP_TIMEOUT_S = float(os.getenv("TRANSIT_HTTP_TIMEOUT_S", "10"))

MESSAGE_CODE_OK = 1


class TransitApiError(RuntimeError):
    """The API answered, but with a message code other than OK."""

    def __init__(self, message_code: Any, value: Any = None) -> None:
        self.message_code = message_code
        self.value = value
        super().__init__(f"messageCode={message_code}: {value}")


class TransitClient:
    """Station search and departure monitor lookups through the proxy."""

    def __init__(
        self,
        proxy_url: str = TRANSIT_PROXY_URL,
        timeout: float = TRANSIT_HTTP_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._proxy_url = proxy_url
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_env(cls, transport: Optional[httpx.AsyncBaseTransport] = None) -> "TransitClient":
        proxy_url = (os.getenv("TRANSIT_PROXY_URL") or TRANSIT_PROXY_URL).strip()
        return cls(proxy_url=proxy_url, timeout=TRANSIT_HTTP_TIMEOUT_S, transport=transport)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def build_url(self, path: str, **query: Any) -> str:
        """Proxy URL for an upstream ``/ws/...`` path."""
        target = f"{path}?{urlencode(query)}" if query else path
        return f"{self._proxy_url}?{urlencode({'url': target})}"

    async def _get(self, path: str, **query: Any) -> Dict[str, Any]:
        client = await self._ensure_client()
        response = await client.get(
            self.build_url(path, **query),
            headers={"Accept": "application/json", "Cache-Control": "no-cache"},
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("unexpected response body")
        message = data.get("message") or {}
        code = message.get("messageCode")
        if code != MESSAGE_CODE_OK:
            raise TransitApiError(code, message.get("value"))
        return data.get("data") or {}

    async def search_stations(self, text: str) -> List[Station]:
        """Stops whose name matches ``text``. Empty text never hits the network."""
        if not text:
            return []
        data = await self._get("/ws/location", search=text, type="stop")
        stations: List[Station] = []
        for poi in data.get("pois") or []:
            props = ((poi or {}).get("location") or {}).get("properties") or {}
            station = Station.from_dict(props)
            if station is not None:
                stations.append(station)
        return stations

    async def get_monitors(self, station_id: str) -> List[Dict[str, Any]]:
        """Raw monitor records for one station (DIVA number)."""
        data = await self._get("/ws/monitor", diva=station_id)
        monitors = data.get("monitors") or []
        return [m for m in monitors if isinstance(m, dict)]


__all__ = ["TransitClient", "TransitApiError", "TRANSIT_PROXY_URL", "MESSAGE_CODE_OK"]
