"""Station/departure models and grouping of monitor data by line."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional


@dataclass(frozen=True)
class Station:
    """A stop as returned by the location search."""
    name: str  # DIVA number, stable identifier
    title: str  # display label

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "title": self.title}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Optional["Station"]:
        if not isinstance(data, Mapping):
            return None
        name = data.get("name")
        if not name:
            return None
        return cls(name=str(name), title=str(data.get("title") or name))


@dataclass(frozen=True)
class Departure:
    """One vehicle departure from a monitor line."""
    countdown: Optional[int]  # minutes until departure
    time_planned: Optional[str] = None
    time_real: Optional[str] = None
    vehicle_towards: Optional[str] = None
    line_towards: Optional[str] = None
    vehicle: Optional[Dict[str, Any]] = None

    @property
    def towards(self) -> Optional[str]:
        return self.vehicle_towards or self.line_towards

    def to_dict(self) -> Dict[str, Any]:
        return {
            "countdown": self.countdown,
            "time_planned": self.time_planned,
            "time_real": self.time_real,
            "towards": self.towards,
        }


@dataclass
class LineGroup:
    """All departures of one line across the station's monitors."""
    name: str
    towards: Optional[str] = None
    barrier_free: bool = False
    realtime_supported: bool = True
    traffic_jam: bool = False
    line_type: Optional[str] = None
    departures: List[Departure] = field(default_factory=list)

    @property
    def next_countdown(self) -> Optional[int]:
        if not self.departures:
            return None
        return self.departures[0].countdown

    @property
    def later_departures(self) -> List[Departure]:
        return self.departures[1:]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line": self.name,
            "towards": self.towards,
            "type": self.line_type,
            "next_countdown": self.next_countdown,
            "barrier_free": self.barrier_free,
            "realtime_supported": self.realtime_supported,
            "traffic_jam": self.traffic_jam,
            "departures": [dep.to_dict() for dep in self.departures],
        }


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"malformed monitor data: {what} is {type(value).__name__}")
    return value


def _sequence(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"malformed monitor data: {what} is {type(value).__name__}")
    return value


def parse_departure(raw: Mapping[str, Any], line_towards: Optional[str] = None) -> Departure:
    """Build a ``Departure``; raises ``ValueError`` on a non-object ``departureTime``."""
    departure_time = _mapping(raw.get("departureTime"), "departureTime")
    vehicle = raw.get("vehicle")
    if not isinstance(vehicle, dict):
        vehicle = None
    return Departure(
        countdown=_as_int(departure_time.get("countdown")),
        time_planned=departure_time.get("timePlanned"),
        time_real=departure_time.get("timeReal"),
        vehicle_towards=(vehicle or {}).get("towards") or None,
        line_towards=line_towards,
        vehicle=dict(vehicle) if vehicle else None,
    )


def _raw_departures(line: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    block = line.get("departures")
    if isinstance(block, list):
        entries = block
    else:
        entries = _sequence(_mapping(block, "departures").get("departure"), "departure")
    return [_mapping(entry, "departure entry") for entry in entries]


def _sort_key(dep: Departure) -> float:
    # Missing countdowns go last; sorted() keeps arrival order for ties.
    return float("inf") if dep.countdown is None else dep.countdown


def group_departures_by_line(monitors: Iterable[Mapping[str, Any]]) -> Dict[str, LineGroup]:
    """Group monitor departures by line name.

    The first monitor that mentions a line decides its metadata (towards and
    the barrier-free / realtime / traffic-jam flags). Departures from every
    monitor are collected under that line and sorted by countdown. The input
    is never modified; a new mapping is built on each call, in the order the
    lines first appear.

    Raises ``ValueError`` when the payload does not have the monitor shape
    (a monitor, line or departure that is not an object, or ``lines`` that is
    not a list).
    """
    grouped: Dict[str, LineGroup] = {}
    for monitor in monitors or []:
        monitor = _mapping(monitor, "monitor")
        for line in _sequence(monitor.get("lines"), "lines"):
            line = _mapping(line, "line")
            name = line.get("name")
            if name is None:
                continue
            name = str(name)
            group = grouped.get(name)
            if group is None:
                group = LineGroup(
                    name=name,
                    towards=line.get("towards"),
                    barrier_free=bool(line.get("barrierFree", False)),
                    realtime_supported=bool(line.get("realtimeSupported", True)),
                    traffic_jam=bool(line.get("trafficjam", False)),
                    line_type=line.get("type"),
                )
                grouped[name] = group
            group.departures.extend(
                parse_departure(raw, line_towards=group.towards)
                for raw in _raw_departures(line)
            )

    for group in grouped.values():
        group.departures = sorted(group.departures, key=_sort_key)
    return grouped


def all_countdowns(monitors: Iterable[Mapping[str, Any]]) -> List[int]:
    """Every known countdown across all lines of ``monitors``."""
    countdowns: List[int] = []
    for group in group_departures_by_line(monitors).values():
        countdowns.extend(dep.countdown for dep in group.departures if dep.countdown is not None)
    return countdowns


__all__ = [
    "Station",
    "Departure",
    "LineGroup",
    "parse_departure",
    "group_departures_by_line",
    "all_countdowns",
]
