"""Dashboard state: search box, recent stations, departure board and clock."""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from departure_poller import POLL_INTERVAL_S, DeparturePoller
from departures import LineGroup, Station
from offline_cache import handle_push
from scheduling import PeriodicTask
from station_search import SUGGEST_DEBOUNCE_S, RecentSearches, StationSuggester
from transit_client import TransitClient

NO_STATION_TITLE = "Keine Station ausgewählt"
CLOCK_INTERVAL_S = 1.0
MAX_NOTIFICATIONS = 20


class Dashboard:
    """Everything the departure monitor page renders, kept in one place.

    ``on_render`` fires whenever fetched data changes (new departures,
    new suggestions, or an error).
    """

    def __init__(
        self,
        client: TransitClient,
        recent: Optional[RecentSearches] = None,
        poll_interval_s: float = POLL_INTERVAL_S,
        debounce_s: float = SUGGEST_DEBOUNCE_S,
        clock_interval_s: float = CLOCK_INTERVAL_S,
        now_fn: Callable[[], datetime] = datetime.now,
        on_render: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> None:
        self.recent = recent if recent is not None else RecentSearches()
        self.suggester = StationSuggester(client, debounce_s, on_change=self._suggestions_changed)
        self.poller = DeparturePoller(client, poll_interval_s, on_update=self._departures_changed)
        self.selected: Optional[Station] = None
        self.error = ""
        self.show_recent = False
        self.expanded: Dict[str, bool] = {}
        self.notifications: Deque[Dict[str, Any]] = deque(maxlen=MAX_NOTIFICATIONS)
        self._now_fn = now_fn
        self.current_time = now_fn()
        self._clock = PeriodicTask("clock", clock_interval_s, self._tick)
        self._on_render = on_render

    def start(self) -> None:
        self._clock.start()

    async def stop(self) -> None:
        await self._clock.aclose()
        await self.poller.stop()
        await self.suggester.aclose()

    async def _tick(self) -> None:
        self.current_time = self._now_fn()

    # Search box --------------------------------------------------------

    def set_search_text(self, text: str) -> None:
        self.suggester.set_text(text)

    def focus_search(self) -> None:
        self.show_recent = True

    def close_dropdowns(self) -> None:
        self.suggester.close()
        self.show_recent = False

    def select_station(self, station: Station) -> None:
        self.selected = station
        # The title lands in the box without starting a new lookup.
        self.suggester.cancel_pending()
        self.suggester.set_text_silently(station.title)
        self.close_dropdowns()
        self.recent.add(station)
        self.poller.select(station.name)

    def submit_search(self) -> Optional[Station]:
        """The search button: pick the first suggestion, if there is one."""
        if not self.suggester.suggestions:
            return None
        station = self.suggester.suggestions[0]
        self.select_station(station)
        return station

    def toggle_line(self, line_name: str) -> bool:
        self.expanded[line_name] = not self.expanded.get(line_name, False)
        return self.expanded[line_name]

    # Push --------------------------------------------------------------

    async def show_notification(self, title: str, options: Dict[str, Any]) -> Dict[str, Any]:
        notification = {"title": title, **options, "shown_at": self._now_fn().isoformat()}
        self.notifications.appendleft(notification)
        print(f"[dashboard] notification: {title}")
        return notification

    async def receive_push(self, data: Any) -> Dict[str, Any]:
        return await handle_push(data, self.show_notification)

    # Rendering ---------------------------------------------------------

    def _suggestions_changed(self, suggester: StationSuggester) -> None:
        if suggester.error:
            self.error = suggester.error
            suggester.error = ""
        self._render()

    def _departures_changed(self, poller: DeparturePoller) -> None:
        self.error = poller.error
        self._render()

    def _render(self) -> None:
        if self._on_render is not None:
            self._on_render(self.view())

    def line_rows(self) -> List[Dict[str, Any]]:
        snapshot = self.poller.snapshot
        if snapshot is None:
            return []
        return [self._line_row(group) for group in snapshot.lines.values()]

    def _line_row(self, group: LineGroup) -> Dict[str, Any]:
        expanded = self.expanded.get(group.name, False)
        return {
            "line": group.name,
            "towards": group.towards,
            "countdown": group.next_countdown,
            "barrier_free": group.barrier_free,
            "realtime_supported": group.realtime_supported,
            "traffic_jam": group.traffic_jam,
            "expanded": expanded,
            "details": [
                {"towards": dep.towards, "countdown": dep.countdown}
                for dep in group.later_departures
            ] if expanded else [],
        }

    def view(self) -> Dict[str, Any]:
        suggester = self.suggester
        recent = self.recent.items
        return {
            "title": self.selected.title if self.selected else NO_STATION_TITLE,
            "station": self.selected.to_dict() if self.selected else None,
            "time": self.current_time.strftime("%H:%M:%S"),
            "date": self.current_time.strftime("%d.%m.%Y"),
            "search_text": suggester.text,
            "suggestions": [s.to_dict() for s in suggester.suggestions],
            "show_suggestions": suggester.show_suggestions and bool(suggester.suggestions),
            "recent_searches": [s.to_dict() for s in recent],
            "show_recent": self.show_recent and bool(recent) and not suggester.show_suggestions,
            "error": self.error,
            "lines": self.line_rows(),
            "notifications": list(self.notifications),
        }


__all__ = ["Dashboard", "NO_STATION_TITLE"]
