"""
Backoff policy and cancellable delays.

compute_backoff_ms() is a pure jittered exponential delay. RunLifecycle is
the only way the worker waits: every backoff and pacing delay goes through
RunLifecycle.sleep(), which aborts as soon as shutdown is requested.
"""

import asyncio
import math
import random

from utils.errors import WorkerStopped

DEFAULT_BASE_MS = 500
DEFAULT_MAX_MS = 10_000
MAX_JITTER_MS = 250


def compute_backoff_ms(attempt: int, base_ms: int = DEFAULT_BASE_MS, max_ms: int = DEFAULT_MAX_MS) -> int:
    """
    Compute a jittered exponential backoff delay.

    Args:
        attempt: Consecutive failure count (values below 0 are treated as 0)
        base_ms: Delay for attempt 0
        max_ms: Upper bound of the unjittered delay

    Returns:
        Delay in milliseconds within [exp, exp + min(250, exp)]
    """
    exp = min(max_ms, base_ms * 2 ** max(0, attempt))
    jitter = math.floor(random.random() * min(MAX_JITTER_MS, exp))
    return int(exp + jitter)


class RunLifecycle:
    """Tracks whether a worker run should keep going and owns its delays."""

    def __init__(self) -> None:
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown; pending and future sleeps raise WorkerStopped."""
        self._stop_event.set()

    async def sleep(self, delay_ms: float) -> None:
        """
        Wait for delay_ms milliseconds unless shutdown is requested first.

        Raises:
            WorkerStopped: If stop() was called before or during the wait
        """
        if self.stopping:
            raise WorkerStopped("Shutdown requested")
        if delay_ms <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            return
        raise WorkerStopped("Shutdown requested during wait")
