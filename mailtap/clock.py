"""Fixed-period tick scheduling for pollers."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from .errors import ShutdownRequested
from .interface import Ticker


class IntervalTicker(Ticker):
    """Fires every *interval* seconds until *shutdown_event* is set.

    Ticks are anchored to the first call, like a metronome: a tick whose
    work overruns the interval does not shift later ticks, and ticks
    missed during the overrun are dropped rather than fired in a burst.
    The first tick fires one interval after the first :meth:`wait`.

    *clock* is injectable for tests.
    """

    def __init__(
        self,
        interval: float,
        shutdown_event: asyncio.Event,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._shutdown_event = shutdown_event
        self._clock = clock
        self._next_tick: float | None = None

    async def wait(self) -> None:
        if self._shutdown_event.is_set():
            raise ShutdownRequested()

        now = self._clock()
        if self._next_tick is None:
            self._next_tick = now + self._interval
        while self._next_tick < now:
            self._next_tick += self._interval

        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=self._next_tick - now)
        except TimeoutError:
            self._next_tick += self._interval
            return
        raise ShutdownRequested()
