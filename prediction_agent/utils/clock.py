import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


class Timer:
    """Handle returned by ``Clock.schedule_repeating``."""

    def __init__(self, cancel_fn: Optional[Callable[[], None]] = None):
        self._cancel_fn = cancel_fn
        self.cancelled = False

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        if self._cancel_fn is not None:
            self._cancel_fn()


class Clock(ABC):
    """Time and scheduling for the live loop.

    The loop never touches ``asyncio.sleep``/``datetime.now`` directly so tests
    can drive day rollovers and pause windows with a ``ManualClock``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""

    @abstractmethod
    async def sleep(self, seconds: float):
        pass

    @abstractmethod
    def schedule_repeating(self, interval: float, callback: Callable[[], None]) -> Timer:
        """Call ``callback`` every ``interval`` seconds until the timer is cancelled."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)

    def schedule_repeating(self, interval: float, callback: Callable[[], None]) -> Timer:
        async def _loop():
            while True:
                await asyncio.sleep(interval)
                callback()

        task = asyncio.ensure_future(_loop())
        return Timer(task.cancel)


class _ManualTimer(Timer):
    def __init__(self, interval: float, callback: Callable[[], None], next_fire: datetime):
        super().__init__()
        self.interval = timedelta(seconds=interval)
        self.callback = callback
        self.next_fire = next_fire


class ManualClock(Clock):
    """Deterministic clock: time only moves through ``advance``/``sleep``.

    ``sleep`` advances the clock instantly, firing any repeating callbacks that
    fall due on the way.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._timers: list[_ManualTimer] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float):
        self.advance(seconds)
        await asyncio.sleep(0)

    def schedule_repeating(self, interval: float, callback: Callable[[], None]) -> Timer:
        timer = _ManualTimer(interval, callback, self._now + timedelta(seconds=interval))
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float):
        target = self._now + timedelta(seconds=seconds)
        while True:
            due = [t for t in self._timers if not t.cancelled and t.next_fire <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.next_fire)
            self._now = timer.next_fire
            timer.next_fire += timer.interval
            timer.callback()
        self._now = target
        self._timers = [t for t in self._timers if not t.cancelled]

    def set(self, when: datetime):
        """Jump to ``when`` without firing timers (e.g. to cross midnight)."""
        self._now = when
        for t in self._timers:
            t.next_fire = when + t.interval
