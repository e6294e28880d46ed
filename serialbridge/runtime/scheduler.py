from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int:
        ...

    def sleep_ms(self, ms: int) -> None:
        ...


class RealClock:
    def now_ms(self) -> int:
        return int(time.monotonic() * 1000)

    def sleep_ms(self, ms: int) -> None:
        if ms > 0:
            time.sleep(ms / 1000.0)


class FakeClock:
    """Manually advanced clock; `sleep_ms` returns immediately after moving time forward."""

    def __init__(self, start_ms: int = 0) -> None:
        self._now = start_ms
        self.sleeps: list[int] = []

    def now_ms(self) -> int:
        return self._now

    def sleep_ms(self, ms: int) -> None:
        self.sleeps.append(int(ms))
        self.advance(ms)

    def advance(self, ms: int) -> None:
        self._now += max(0, int(ms))


def elapsed_ms(clock: Clock, start_ms: int) -> int:
    return max(0, clock.now_ms() - start_ms)
