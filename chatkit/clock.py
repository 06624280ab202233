import asyncio
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

_TICK = timedelta(microseconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Stamp:
    sequence: int
    timestamp: datetime


class MonotonicClock:
    """Server clock shared by every sender.

    Each stamp carries a sequence number and a timestamp strictly later than
    every timestamp issued before it, even if the wall clock stalls or steps back.
    """

    def __init__(self, now: Callable[[], datetime] = utc_now) -> None:
        self._now = now
        self._lock = threading.Lock()
        self._sequence = 0
        self._last: datetime | None = None

    def stamp(self) -> Stamp:
        with self._lock:
            current = self._now()
            if self._last is not None and current <= self._last:
                current = self._last + _TICK
            self._last = current
            stamp = Stamp(sequence=self._sequence, timestamp=current)
            self._sequence += 1
            return stamp

    @property
    def last_timestamp(self) -> datetime | None:
        return self._last


class FanoutGate:
    """Releases the enqueue step of accepted messages in sequence order.

    Persistence runs concurrently; only the (non-blocking) hand-off to session
    queues waits here, so every queue sees messages in timestamp order.
    Every sequence issued by the paired clock must eventually be released,
    whether its message was delivered, rejected or cancelled.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._next = 0
        self._released: set[int] = set()

    async def wait_turn(self, sequence: int) -> None:
        async with self._cond:
            await self._cond.wait_for(lambda: self._next >= sequence)

    async def release(self, sequence: int) -> None:
        async with self._cond:
            if sequence < self._next:
                return
            self._released.add(sequence)
            while self._next in self._released:
                self._released.discard(self._next)
                self._next += 1
            self._cond.notify_all()

    @property
    def next_sequence(self) -> int:
        return self._next
