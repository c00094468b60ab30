import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Protocol, Tuple

from registration.state import RESEND_COOLDOWN_SECONDS

logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class TimerHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualScheduler:
    """A manually advanced clock. Callbacks run inside advance(), in due order."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self.now + delay, callback)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self.now = when
            if not handle.cancelled:
                handle.callback()
        self.now = target

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h in self._queue if not h.cancelled)


class LoopHandle:
    """A call_later handle that can be armed and cancelled from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, delay: float, callback: Callable[[], None]):
        self.loop = loop
        self.callback = callback
        self.cancelled = False
        self._handle: Optional[asyncio.TimerHandle] = None
        loop.call_soon_threadsafe(self._arm, delay)

    def _arm(self, delay: float) -> None:
        if not self.cancelled:
            self._handle = self.loop.call_later(delay, self._fire)

    def _fire(self) -> None:
        # cancel() may have run on another thread after the loop queued this call
        if not self.cancelled:
            self.callback()

    def cancel(self) -> None:
        self.cancelled = True
        handle = self._handle
        if handle is not None:
            self.loop.call_soon_threadsafe(handle.cancel)


class AsyncioScheduler:
    """
    Schedules ticks on an event loop. Controller calls may run in an executor
    thread while the loop keeps the countdown going.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> LoopHandle:
        return LoopHandle(self.loop, delay, callback)


class ResendTimer:
    """
    Countdown gating when a new code may be requested.

    One tick is pending at a time. Its handle is kept so cancel() can drop it
    before it fires.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        cooldown: int = RESEND_COOLDOWN_SECONDS,
        interval: float = 1.0,
        on_tick: Optional[Callable[[int], None]] = None,
    ):
        self.scheduler = scheduler
        self.cooldown = cooldown
        self.interval = interval
        self.on_tick = on_tick
        self.remaining = 0
        self._handle: Optional[Cancellable] = None

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def can_resend(self) -> bool:
        return self.remaining <= 0

    def start(self) -> None:
        self.cancel()
        self.remaining = self.cooldown
        if self.remaining > 0:
            self._schedule()

    def reset(self) -> None:
        self.start()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _schedule(self) -> None:
        self._handle = self.scheduler.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        self._handle = None
        self.remaining = max(self.remaining - 1, 0)
        if self.remaining > 0:
            self._schedule()
        else:
            logger.debug("resend cooldown elapsed")
        if self.on_tick is not None:
            self.on_tick(self.remaining)
