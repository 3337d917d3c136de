"""Single-flight debounce of detected changes."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import timedelta
from typing import Callable, Iterable, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


def _loop_call_later(delay: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay, callback)


class DebounceScheduler:
    """Accumulate changed paths and fire once ``wait`` after the latest change.

    Only one timer exists at a time: re-arming cancels the previous handle,
    and every armed timer carries a generation number so a callback from a
    superseded timer is ignored even if it was already queued.
    """

    def __init__(
        self,
        wait: timedelta,
        on_fire: Callable[[], None],
        *,
        clock: Callable[[], float] = time.monotonic,
        call_later: CallLater | None = None,
    ) -> None:
        self._wait = wait
        self._on_fire = on_fire
        self._clock = clock
        self._call_later = call_later or _loop_call_later
        self._pending: dict[str, None] = {}
        self._handle: TimerHandle | None = None
        self._generation = 0
        self._fire_at: float | None = None

    @property
    def wait(self) -> timedelta:
        return self._wait

    @property
    def pending(self) -> list[str]:
        return list(self._pending)

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def fire_at(self) -> float | None:
        return self._fire_at

    def add_changes(self, paths: Iterable[str]) -> int:
        """Queue ``paths`` and restart the wait; returns how many were new."""

        added = 0
        for path in paths:
            if path not in self._pending:
                self._pending[path] = None
                added += 1
        self.arm()
        return added

    def arm(self) -> None:
        self.cancel()
        self._generation += 1
        generation = self._generation
        delay = self._wait.total_seconds()
        self._fire_at = self._clock() + delay
        self._handle = self._call_later(delay, lambda: self._fire(generation))

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._fire_at = None

    def take_pending(self) -> list[str]:
        """Return and clear the accumulated paths."""

        pending = list(self._pending)
        self._pending.clear()
        return pending

    def _fire(self, generation: int) -> None:
        if generation != self._generation or self._handle is None:
            logger.debug("Ignoring superseded debounce timer", extra={"generation": generation})
            return
        self._handle = None
        self._fire_at = None
        self._on_fire()


__all__ = ["DebounceScheduler", "TimerHandle"]
