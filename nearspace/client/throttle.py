"""Rate limiter with a single coalescing trailing call."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


class Throttle:
    """Calls ``func`` at most once per ``interval`` seconds.

    A call that arrives too soon is not dropped: its arguments replace any
    earlier pending ones and a single trailing timer runs them once the
    interval has elapsed since the last execution. The trailing call runs
    even if its arguments match what was already sent.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        call_later: CallLater | None = None,
    ) -> None:
        self.func = func
        self.interval = interval
        self._clock = clock
        self._call_later = call_later
        self._last_run: float | None = None
        self._pending_args: tuple[Any, ...] = ()
        self._timer: TimerHandle | None = None

    @property
    def scheduled(self) -> bool:
        return self._timer is not None

    def __call__(self, *args: Any) -> None:
        now = self._clock()
        if self._last_run is None or (
            self._timer is None and now - self._last_run >= self.interval
        ):
            self._run(args, now)
            return

        # Replace, never stack, the trailing call
        if self._timer is not None:
            self._timer.cancel()
        self._pending_args = args
        delay = max(0.0, self.interval - (now - self._last_run))
        self._timer = self._schedule(delay)

    def cancel(self) -> None:
        """Drop any pending trailing call."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending_args = ()

    def _schedule(self, delay: float) -> TimerHandle:
        if self._call_later is None:
            return asyncio.get_running_loop().call_later(delay, self._fire)
        return self._call_later(delay, self._fire)

    def _fire(self) -> None:
        args = self._pending_args
        self._timer = None
        self._pending_args = ()
        self._run(args, self._clock())

    def _run(self, args: tuple[Any, ...], now: float) -> None:
        self._last_run = now
        self.func(*args)
