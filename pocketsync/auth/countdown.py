"""Second-by-second countdown timer."""

import asyncio
from typing import Callable


class Countdown:
    """Counts down from a number of seconds, then calls on_complete.

    Used as the cooldown before a verification email may be re-sent.
    """

    def __init__(
        self,
        seconds: int,
        on_complete: Callable[[], None] | None = None,
        tick_seconds: float = 1.0,
    ):
        self._initial = seconds
        self._seconds = seconds
        self._on_complete = on_complete
        self._tick = tick_seconds
        self._task: asyncio.Task | None = None

    @property
    def seconds(self) -> int:
        return self._seconds

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_active or self._seconds <= 0:
            return
        self._task = asyncio.create_task(self._run())

    def pause(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None

    def reset(self) -> None:
        self.pause()
        self._seconds = self._initial

    async def _run(self) -> None:
        while self._seconds > 0:
            await asyncio.sleep(self._tick)
            self._seconds -= 1

        self._task = None
        if self._on_complete:
            self._on_complete()
