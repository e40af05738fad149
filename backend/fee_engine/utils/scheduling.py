"""Event-loop timers used by the fee cache.

- Debouncer: runs a callback once a quiet period follows the last trigger.
- PeriodicTimer: runs a callback on a fixed cadence until stopped.

Both must be used from inside a running asyncio event loop.
"""

import asyncio
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """Coalesce rapid triggers into one call carrying the last arguments."""

    def __init__(self, delay_seconds: float) -> None:
        self._delay = delay_seconds
        self._handle: asyncio.TimerHandle | None = None

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def call(self, callback: Callable[..., Any], *args: Any) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire, callback, args)

    def _fire(self, callback: Callable[..., Any], args: tuple) -> None:
        self._handle = None
        callback(*args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class PeriodicTimer:
    """Invoke a synchronous callback every ``interval_seconds``."""

    def __init__(self, interval_seconds: float, callback: Callable[[], Any], name: str = "periodic") -> None:
        self._interval = interval_seconds
        self._callback = callback
        self._name = name
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """(Re)start the timer; the first tick happens one interval from now."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self._name)

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._callback()
            except Exception:
                logger.exception(f"[TIMER] {self._name} tick failed")
