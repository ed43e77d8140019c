"""Periodic departure monitor refresh for the selected station."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from departures import LineGroup, group_departures_by_line
from scheduling import PeriodicTask, RequestSequencer
from transit_client import TransitApiError, TransitClient

POLL_INTERVAL_S = float(os.getenv("POLL_INTERVAL_S", "15"))
FETCH_ERROR_MESSAGE = "Fehler beim Abrufen der Daten."


@dataclass
class DepartureSnapshot:
    """Latest successfully fetched departure board."""
    station_id: str
    monitors: List[Dict[str, Any]] = field(default_factory=list)
    lines: Dict[str, LineGroup] = field(default_factory=dict)
    fetched_at: float = 0.0


class DeparturePoller:
    """Polls the monitor endpoint for one station at a time.

    A failed poll sets ``error`` and keeps the previous snapshot. Only the
    response to the most recently issued request is committed, so a slow
    answer for an older selection cannot overwrite newer data.
    """

    def __init__(
        self,
        client: TransitClient,
        interval_s: float = POLL_INTERVAL_S,
        on_update: Optional[Callable[["DeparturePoller"], None]] = None,
    ) -> None:
        self._client = client
        self.interval_s = interval_s
        self._on_update = on_update
        self._sequencer = RequestSequencer()
        self._task: Optional[PeriodicTask] = None
        self.station_id: Optional[str] = None
        self.snapshot: Optional[DepartureSnapshot] = None
        self.error: str = ""

    @property
    def running(self) -> bool:
        return self._task is not None and self._task.running

    def select(self, station_id: Optional[str]) -> None:
        """Switch to ``station_id`` (or go idle for ``None``/empty)."""
        self._cancel_timer()
        # Invalidate anything still in flight for the previous station.
        self._sequencer.issue()
        self.station_id = station_id or None
        if self.station_id is None:
            return
        self._task = PeriodicTask("poller", self.interval_s, self.poll_once)
        self._task.start()

    def _cancel_timer(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None:
            await task.aclose()

    async def poll_once(self) -> bool:
        """Fetch once for the current station. Returns True if committed."""
        station_id = self.station_id
        if not station_id:
            return False
        token = self._sequencer.issue()
        try:
            monitors = await self._client.get_monitors(station_id)
            lines = group_departures_by_line(monitors)
        except (httpx.HTTPError, TransitApiError, ValueError) as exc:
            if not self._sequencer.is_current(token):
                return False
            print(f"[poller] error fetching {station_id}: {exc}")
            self.error = FETCH_ERROR_MESSAGE
            self._notify()
            return False
        if not self._sequencer.is_current(token):
            print(f"[poller] discarding stale response for {station_id}")
            return False
        self.snapshot = DepartureSnapshot(
            station_id=station_id,
            monitors=monitors,
            lines=lines,
            fetched_at=time.time(),
        )
        self.error = ""
        self._notify()
        return True

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self)


__all__ = ["DeparturePoller", "DepartureSnapshot", "POLL_INTERVAL_S", "FETCH_ERROR_MESSAGE"]
