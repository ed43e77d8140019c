"""Small asyncio helpers for timers, debouncing and last-request-wins commits."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set


class PeriodicTask:
    """Run ``fn`` every ``interval_s`` seconds until cancelled.

    Errors raised by ``fn`` are printed and the loop keeps going. With
    ``run_immediately`` the first call happens right away, otherwise one
    interval after ``start()``.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        fn: Callable[[], Awaitable[Any]],
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self.interval_s = interval_s
        self._fn = fn
        self._run_immediately = run_immediately
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _loop(self) -> None:
        if not self._run_immediately:
            await asyncio.sleep(self.interval_s)
        while True:
            try:
                await self._fn()
            except Exception as exc:
                print(f"[{self.name}] error: {exc}")
            await asyncio.sleep(self.interval_s)


class Debouncer:
    """Delay calls to ``fn`` until ``delay_s`` passes without a new call.

    A newer call only cancels the pending timer. Calls that already fired keep
    running until they finish or ``aclose()`` tears them down.
    """

    def __init__(self, delay_s: float, fn: Callable[..., Awaitable[Any]]) -> None:
        self.delay_s = delay_s
        self._fn = fn
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()

    def call(self, *args: Any) -> None:
        self.cancel()
        self._timer = asyncio.create_task(self._fire_later(args))

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _fire_later(self, args: tuple) -> None:
        await asyncio.sleep(self.delay_s)
        task = asyncio.create_task(self._fn(*args))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def drain(self) -> None:
        """Wait for the pending timer and any fired calls to settle."""
        if self._timer is not None:
            try:
                await self._timer
            except asyncio.CancelledError:
                pass
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def aclose(self) -> None:
        self.cancel()
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()


class RequestSequencer:
    """Hands out increasing tokens; only the newest token may commit."""

    def __init__(self) -> None:
        self._latest = 0

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, token: int) -> bool:
        return token == self._latest

    @property
    def latest(self) -> int:
        return self._latest


__all__ = ["PeriodicTask", "Debouncer", "RequestSequencer"]
