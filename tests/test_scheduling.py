import asyncio
import sys
from pathlib import Path


ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from scheduling import Debouncer, PeriodicTask, RequestSequencer  # noqa: E402


def test_periodic_task_survives_errors_and_cancels():
    calls = []

    async def tick():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    async def run():
        task = PeriodicTask("test", 0.01, tick)
        task.start()
        await asyncio.sleep(0.05)
        await task.aclose()
        count = len(calls)
        await asyncio.sleep(0.03)
        return count, task.running

    count, running = asyncio.run(run())
    assert count >= 2
    assert len(calls) == count
    assert running is False


def test_periodic_task_can_wait_one_interval_first():
    calls = []

    async def tick():
        calls.append(1)

    async def run():
        task = PeriodicTask("test", 0.1, tick, run_immediately=False)
        task.start()
        await asyncio.sleep(0.02)
        early = len(calls)
        await task.aclose()
        return early

    assert asyncio.run(run()) == 0


def test_debouncer_does_not_cancel_fired_call():
    finished = []

    async def work(value):
        await asyncio.sleep(0.03)
        finished.append(value)

    async def run():
        debouncer = Debouncer(0.01, work)
        debouncer.call("first")
        await asyncio.sleep(0.02)  # "first" has fired and is in flight
        debouncer.call("second")
        await debouncer.drain()

    asyncio.run(run())
    assert finished == ["first", "second"]


def test_debouncer_aclose_drops_pending_call():
    fired = []

    async def work(value):
        fired.append(value)

    async def run():
        debouncer = Debouncer(0.05, work)
        debouncer.call("x")
        await debouncer.aclose()
        await asyncio.sleep(0.08)

    asyncio.run(run())
    assert fired == []


def test_request_sequencer_latest_wins():
    seq = RequestSequencer()
    first = seq.issue()
    second = seq.issue()
    assert not seq.is_current(first)
    assert seq.is_current(second)
    assert seq.latest == second
