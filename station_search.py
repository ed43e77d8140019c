"""Debounced station suggestions and the persisted recent-search list."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from departures import Station
from scheduling import Debouncer, RequestSequencer
from transit_client import TransitApiError, TransitClient

SUGGEST_DEBOUNCE_S = float(os.getenv("SUGGEST_DEBOUNCE_S", "0.3"))
MAX_RECENT_SEARCHES = 5
RECENT_SEARCHES_KEY = "recentSearches"
RECENT_SEARCHES_PATH = Path(os.getenv("RECENT_SEARCHES_PATH", "data/recent_searches.json"))
SUGGEST_ERROR_MESSAGE = "Fehler beim Abrufen der Vorschläge."


class RecentSearches:
    """Most-recent-first stations, unique by ``name``, stored in a JSON file."""

    def __init__(self, path: Optional[Path] = None, limit: int = MAX_RECENT_SEARCHES):
        self._path = path
        self._limit = limit
        self._items: List[Station] = []
        self._load_sync()

    def _load_sync(self) -> None:
        self._items = []
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return
        entries = raw.get(RECENT_SEARCHES_KEY, []) if isinstance(raw, dict) else []
        for entry in entries if isinstance(entries, list) else []:
            station = Station.from_dict(entry)
            if station is not None and all(s.name != station.name for s in self._items):
                self._items.append(station)
        del self._items[self._limit:]

    def _persist(self) -> None:
        if self._path is None:
            return
        payload = json.dumps(
            {RECENT_SEARCHES_KEY: [s.to_dict() for s in self._items]},
            ensure_ascii=False,
        )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self._path)

    def add(self, station: Station) -> List[Station]:
        self._items = [station] + [s for s in self._items if s.name != station.name]
        del self._items[self._limit:]
        self._persist()
        return self.items

    @property
    def items(self) -> List[Station]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


class StationSuggester:
    """Turns search-box text into station suggestions.

    Text changes are debounced; only the newest issued query may replace the
    suggestions. An empty query clears the list without a request.
    """

    def __init__(
        self,
        client: TransitClient,
        debounce_s: float = SUGGEST_DEBOUNCE_S,
        on_change: Optional[Callable[["StationSuggester"], None]] = None,
    ) -> None:
        self._client = client
        self._on_change = on_change
        self._sequencer = RequestSequencer()
        self._debouncer = Debouncer(debounce_s, self.fetch)
        self.text = ""
        self.suggestions: List[Station] = []
        self.show_suggestions = False
        self.error = ""

    def set_text(self, text: str) -> None:
        self.text = text
        self._debouncer.call(text)

    def set_text_silently(self, text: str) -> None:
        """Mirror ``text`` into the box without scheduling a query."""
        self.text = text

    async def fetch(self, text: str) -> None:
        token = self._sequencer.issue()
        if not text:
            self.suggestions = []
            self._notify()
            return
        try:
            stations = await self._client.search_stations(text)
        except (httpx.HTTPError, TransitApiError, ValueError) as exc:
            if self._sequencer.is_current(token):
                print(f"[suggest] error searching {text!r}: {exc}")
                self.error = SUGGEST_ERROR_MESSAGE
                self._notify()
            return
        if not self._sequencer.is_current(token):
            return
        self.suggestions = stations
        self.show_suggestions = True
        self._notify()

    def close(self) -> None:
        self.show_suggestions = False

    def cancel_pending(self) -> None:
        """Drop a queued query and make any in-flight one stale."""
        self._debouncer.cancel()
        self._sequencer.issue()

    async def settle(self) -> None:
        await self._debouncer.drain()

    async def aclose(self) -> None:
        await self._debouncer.aclose()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)


__all__ = [
    "RecentSearches",
    "StationSuggester",
    "MAX_RECENT_SEARCHES",
    "RECENT_SEARCHES_KEY",
    "SUGGEST_ERROR_MESSAGE",
]
