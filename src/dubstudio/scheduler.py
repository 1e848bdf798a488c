"""
Cooperative frame scheduling and cancellation tokens.

A render advances one step per tick on the asyncio event loop. Schedulers
decide how ticks are paced; both check the cancel token before every step.
"""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable

from .errors import AbortedByCaller

logger = logging.getLogger("dubstudio")

Step = Callable[[], Awaitable[bool]]


class CancelToken:
    """Cancellation flag safe to set from any thread (signal handler, UI, ...)."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str = "Cancelled by caller") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AbortedByCaller(self._reason or "Cancelled by caller")


class Scheduler:
    """Run ``step`` repeatedly until it returns ``False`` or the token fires."""

    async def run_until(self, step: Step, cancel_token: CancelToken) -> int:
        raise NotImplementedError


class ImmediateScheduler(Scheduler):
    """Back-to-back ticks; only yields to the loop in between (batch export)."""

    async def run_until(self, step: Step, cancel_token: CancelToken) -> int:
        ticks = 0
        while True:
            cancel_token.raise_if_cancelled()
            if not await step():
                return ticks
            ticks += 1
            await asyncio.sleep(0)


class RealtimeScheduler(Scheduler):
    """One tick per frame interval of wall-clock time.

    Deadlines are absolute, so a slow tick shortens the next wait instead of
    accumulating drift. When a step overruns by more than a whole frame the
    schedule is re-based rather than bursting to catch up.
    """

    def __init__(self, fps: int = 30) -> None:
        if fps <= 0:
            raise ValueError("fps must be positive")
        self.fps = fps
        self.interval = 1.0 / fps
        self.late_ticks = 0

    async def run_until(self, step: Step, cancel_token: CancelToken) -> int:
        loop = asyncio.get_running_loop()
        next_deadline = loop.time()
        ticks = 0
        while True:
            cancel_token.raise_if_cancelled()
            if not await step():
                if self.late_ticks:
                    logger.debug(f"{self.late_ticks} of {ticks} ticks overran the frame budget")
                return ticks
            ticks += 1
            next_deadline += self.interval
            delay = next_deadline - loop.time()
            if delay < -self.interval:
                self.late_ticks += 1
                next_deadline = loop.time()
                delay = 0.0
            await asyncio.sleep(max(0.0, delay))
