# pmcoach/services/clock.py
import asyncio
import logging
import time
from datetime import date, datetime, tzinfo
from typing import Awaitable, Callable, List, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def resolve_timezone(name: Optional[str]) -> Optional[tzinfo]:
    """IANA name -> tzinfo; None means the host's local zone.

    The host zone stays None rather than a snapshot of today's offset, so each
    instant is converted with the host's DST rules (``datetime.astimezone()``).
    """
    if name:
        return ZoneInfo(name)
    return None


class SystemClock:
    """Wall clock in the deployment's local zone plus a monotonic source."""

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz

    def now(self) -> datetime:
        if self.tz is None:
            return datetime.now().astimezone()
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Countdown:
    """
    Cooperative countdown driven by an asyncio task.

    Sleeps ``tick_seconds`` per tick, decrements ``remaining`` by one second per
    tick, notifies tick listeners, and awaits ``on_expire`` once at zero.
    ``cancel()`` stops further ticks; called from inside ``on_expire`` it only
    flags the countdown, the running task is left to finish.
    """

    def __init__(
        self,
        clock,
        duration_seconds: int,
        on_expire: Callable[[], Awaitable[None]],
        tick_seconds: float = 1.0,
    ):
        self._clock = clock
        self._remaining = int(duration_seconds)
        self._tick_seconds = tick_seconds
        self._on_expire = on_expire
        self._listeners: List[Callable[[int], None]] = []
        self._task: Optional[asyncio.Task] = None
        self._cancelled = False

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: Callable[[int], None]) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError("countdown already started")
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._report)

    def cancel(self) -> None:
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def _run(self) -> None:
        while self._remaining > 0:
            await self._clock.sleep(self._tick_seconds)
            if self._cancelled:
                return
            self._remaining -= 1
            for listener in self._listeners:
                listener(self._remaining)
        if not self._cancelled:
            await self._on_expire()

    @staticmethod
    def _report(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[TIMER] countdown expiry handler failed", exc_info=exc)
