"""Clock and timer source for the playback engine."""

import asyncio


class Scheduler:
    """Monotonic clock plus one-shot timers.

    The engine never sleeps or blocks; everything time-based goes through
    `call_later`, whose return value has a `cancel()` method.
    """

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback):
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self.loop = loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback):
        return self.loop.call_later(max(0.0, delay), callback)
