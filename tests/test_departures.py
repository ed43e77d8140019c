import copy
import sys
from pathlib import Path

import pytest


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from departures import Station, all_countdowns, group_departures_by_line  # noqa: E402


def _dep(countdown, towards=None):
    entry = {
        "departureTime": {
            "timePlanned": "2024-05-01T12:00:00.000+0200",
            "timeReal": "2024-05-01T12:00:30.000+0200",
            "countdown": countdown,
        }
    }
    if towards is not None:
        entry["vehicle"] = {"name": "13A", "towards": towards}
    return entry


def _line(name, towards, countdowns, **flags):
    return {
        "name": name,
        "towards": towards,
        "type": "ptBusCity",
        "barrierFree": flags.get("barrierFree", True),
        "realtimeSupported": flags.get("realtimeSupported", True),
        "trafficjam": flags.get("trafficjam", False),
        "departures": {"departure": [_dep(c) for c in countdowns]},
    }


def test_groups_lines_across_monitors_and_sorts():
    monitors = [
        {"lines": [_line("13A", "Hauptbahnhof", [7, 2]), _line("U1", "Leopoldau", [4])]},
        {"lines": [_line("13A", "Alser Strasse", [5, 1, 9])]},
    ]

    grouped = group_departures_by_line(monitors)

    assert list(grouped) == ["13A", "U1"]
    assert [d.countdown for d in grouped["13A"].departures] == [1, 2, 5, 7, 9]
    assert grouped["13A"].next_countdown == 1
    assert [d.countdown for d in grouped["13A"].later_departures] == [2, 5, 7, 9]
    assert grouped["U1"].next_countdown == 4


def test_first_occurrence_sets_line_metadata():
    monitors = [
        {"lines": [_line("2", "Dornbach", [3], barrierFree=False, trafficjam=True)]},
        {"lines": [_line("2", "Friedrich-Engels-Platz", [1], barrierFree=True)]},
    ]

    group = group_departures_by_line(monitors)["2"]

    assert group.towards == "Dornbach"
    assert group.barrier_free is False
    assert group.traffic_jam is True
    assert group.realtime_supported is True


def test_no_departures_dropped_or_duplicated():
    monitors = [
        {"lines": [_line("A", "x", [3, 3, 1]), _line("B", "y", [0])]},
        {"lines": [_line("A", "x", [2]), _line("C", "z", [])]},
    ]

    grouped = group_departures_by_line(monitors)

    total = sum(len(g.departures) for g in grouped.values())
    assert total == 5
    assert grouped["C"].departures == []
    assert grouped["C"].next_countdown is None
    for group in grouped.values():
        countdowns = [d.countdown for d in group.departures]
        assert countdowns == sorted(countdowns)


def test_ties_keep_arrival_order():
    line = _line("5", "Praterstern", [])
    line["departures"]["departure"] = [_dep(4, "first"), _dep(4, "second"), _dep(1, "third")]

    group = group_departures_by_line([{"lines": [line]}])["5"]

    assert [d.towards for d in group.departures] == ["third", "first", "second"]


def test_missing_countdown_sorts_last():
    line = _line("5", "Praterstern", [6])
    line["departures"]["departure"].insert(0, {"departureTime": {}})

    group = group_departures_by_line([{"lines": [line]}])["5"]

    assert [d.countdown for d in group.departures] == [6, None]


def test_vehicle_towards_overrides_line_towards():
    line = _line("13A", "Hauptbahnhof", [])
    line["departures"]["departure"] = [_dep(1), _dep(3, "Skodagasse")]

    group = group_departures_by_line([{"lines": [line]}])["13A"]

    assert [d.towards for d in group.departures] == ["Hauptbahnhof", "Skodagasse"]


def test_input_is_not_modified():
    monitors = [{"lines": [_line("13A", "Hauptbahnhof", [9, 4, 6])]}]
    before = copy.deepcopy(monitors)

    first = group_departures_by_line(monitors)
    second = group_departures_by_line(monitors)

    assert monitors == before
    assert first is not second
    assert first["13A"] is not second["13A"]


def test_all_countdowns_and_empty_input():
    monitors = [{"lines": [_line("A", "x", [12, 3]), _line("B", "y", [8])]}]
    assert sorted(all_countdowns(monitors)) == [3, 8, 12]
    assert group_departures_by_line([]) == {}


def test_station_from_dict():
    assert Station.from_dict({"name": "60200008", "title": "Karlsplatz"}) == Station("60200008", "Karlsplatz")
    assert Station.from_dict({"title": "no id"}) is None
    assert Station.from_dict({"name": 42}).title == "42"


@pytest.mark.parametrize(
    "monitors",
    [
        [{"lines": [{"name": "U1", "departures": {"departure": [{"departureTime": "soon"}]}}]}],
        [{"lines": {"name": "U1"}}],
        [{"lines": ["U1"]}],
        ["not a monitor"],
        [{"lines": [{"name": "U1", "departures": "none"}]}],
        [{"lines": [{"name": "U1", "departures": {"departure": ["soon"]}}]}],
    ],
)
def test_malformed_monitor_data_raises_value_error(monitors):
    with pytest.raises(ValueError):
        group_departures_by_line(monitors)


def test_missing_blocks_are_treated_as_empty():
    grouped = group_departures_by_line([{"lines": [{"name": "U1", "departures": None}]}, {}])
    assert grouped["U1"].departures == []
