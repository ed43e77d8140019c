import asyncio
import sys
from pathlib import Path

import httpx


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from departure_poller import FETCH_ERROR_MESSAGE, DeparturePoller  # noqa: E402
from transit_client import TransitApiError  # noqa: E402


def _monitor(line_name, countdown):
    return {"lines": [{
        "name": line_name,
        "towards": "Somewhere",
        "departures": {"departure": [{"departureTime": {"countdown": countdown}}]},
    }]}


class FakeClient:
    """Stands in for TransitClient.get_monitors."""

    def __init__(self):
        self.calls = []
        self.results = {}
        self.delays = {}

    async def get_monitors(self, station_id):
        self.calls.append(station_id)
        delay = self.delays.get(station_id)
        if delay:
            await asyncio.sleep(delay)
        result = self.results[station_id]
        if isinstance(result, Exception):
            raise result
        return result


def test_success_replaces_snapshot_and_clears_error():
    client = FakeClient()
    client.results["1"] = [_monitor("13A", 3)]
    poller = DeparturePoller(client, interval_s=60)

    async def run():
        poller.station_id = "1"
        poller.error = "old"
        return await poller.poll_once()

    assert asyncio.run(run()) is True
    assert poller.error == ""
    assert list(poller.snapshot.lines) == ["13A"]


def test_failure_keeps_previous_snapshot():
    client = FakeClient()
    client.results["1"] = [_monitor("13A", 3)]
    updates = []
    poller = DeparturePoller(client, interval_s=60, on_update=lambda p: updates.append(p.error))

    async def run():
        poller.station_id = "1"
        await poller.poll_once()
        client.results["1"] = TransitApiError(311, "boom")
        await poller.poll_once()
        client.results["1"] = httpx.ConnectError("offline")
        await poller.poll_once()

    asyncio.run(run())

    assert poller.error == FETCH_ERROR_MESSAGE
    assert list(poller.snapshot.lines) == ["13A"]
    assert updates == ["", FETCH_ERROR_MESSAGE, FETCH_ERROR_MESSAGE]


def test_idle_without_station():
    client = FakeClient()
    poller = DeparturePoller(client, interval_s=0.01)

    async def run():
        poller.select(None)
        await asyncio.sleep(0.05)
        return await poller.poll_once()

    assert asyncio.run(run()) is False
    assert client.calls == []
    assert not poller.running


def test_select_polls_immediately_and_repeats():
    client = FakeClient()
    client.results["1"] = [_monitor("U1", 2)]
    poller = DeparturePoller(client, interval_s=0.05)

    async def run():
        poller.select("1")
        await asyncio.sleep(0.01)
        first = len(client.calls)
        await asyncio.sleep(0.2)
        await poller.stop()
        return first

    first = asyncio.run(run())
    assert first == 1
    assert len(client.calls) >= 3
    assert not poller.running


def test_reselect_restarts_against_new_station():
    client = FakeClient()
    client.results["1"] = [_monitor("U1", 2)]
    client.results["2"] = [_monitor("D", 5)]
    poller = DeparturePoller(client, interval_s=10)

    async def run():
        poller.select("1")
        await asyncio.sleep(0.01)
        poller.select("2")
        await asyncio.sleep(0.01)
        await poller.stop()

    asyncio.run(run())

    assert client.calls == ["1", "2"]
    assert poller.snapshot.station_id == "2"
    assert list(poller.snapshot.lines) == ["D"]


def test_stale_response_is_discarded():
    client = FakeClient()
    client.results["slow"] = [_monitor("OLD", 1)]
    client.results["fast"] = [_monitor("NEW", 1)]
    client.delays["slow"] = 0.05

    poller = DeparturePoller(client, interval_s=10)

    async def run():
        poller.station_id = "slow"
        slow = asyncio.create_task(poller.poll_once())
        await asyncio.sleep(0.01)
        poller.station_id = "fast"
        committed_fast = await poller.poll_once()
        committed_slow = await slow
        return committed_fast, committed_slow

    committed_fast, committed_slow = asyncio.run(run())

    assert committed_fast is True
    assert committed_slow is False
    assert list(poller.snapshot.lines) == ["NEW"]


def test_malformed_monitor_sets_error_and_keeps_snapshot():
    client = FakeClient()
    client.results["1"] = [_monitor("13A", 3)]
    poller = DeparturePoller(client, interval_s=60)

    async def run():
        poller.station_id = "1"
        await poller.poll_once()
        client.results["1"] = [{"lines": [{
            "name": "U1",
            "departures": {"departure": [{"departureTime": "soon"}]},
        }]}]
        first = await poller.poll_once()
        client.results["1"] = [{"lines": {"name": "U1"}}]
        second = await poller.poll_once()
        return first, second

    assert asyncio.run(run()) == (False, False)
    assert poller.error == FETCH_ERROR_MESSAGE
    assert list(poller.snapshot.lines) == ["13A"]
