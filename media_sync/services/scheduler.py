"""
Fixed-interval scheduling for the steady-state sync loop.
"""
import threading
import time
from typing import Callable, Optional
from loguru import logger


class SystemClock:
    """Wall and monotonic time plus an interruptible wait."""

    def time(self) -> float:
        return time.time()

    def monotonic(self) -> float:
        return time.monotonic()

    def wait(self, event: threading.Event, timeout: float) -> bool:
        """Block until the event is set or the timeout elapses. Returns event state."""
        return event.wait(timeout)


class IntervalScheduler:
    """
    Runs a task every ``interval`` seconds, measured start to start.

    A run that overruns the interval is followed immediately by the next
    run; missed ticks are not replayed.
    """

    def __init__(self, interval: float, clock: Optional[SystemClock] = None):
        self.interval = interval
        self.clock = clock or SystemClock()
        self.runs = 0

    def run(self, task: Callable[[], object], stop_event: threading.Event,
            max_runs: Optional[int] = None) -> int:
        """
        Run the task until the stop event is set.

        Args:
            task: Callable invoked once per tick
            stop_event: Setting it ends the loop after the current run
            max_runs: Stop after this many runs (used by one-shot modes)

        Returns:
            int: Number of runs performed by this call
        """
        self.runs = 0
        next_start = self.clock.monotonic()

        while not stop_event.is_set():
            now = self.clock.monotonic()
            if now < next_start:
                if self.clock.wait(stop_event, next_start - now):
                    break
                continue

            started = self.clock.monotonic()
            try:
                task()
            except Exception as e:
                logger.exception(f"Scheduled run failed: {e}")
            self.runs += 1

            if max_runs is not None and self.runs >= max_runs:
                break

            next_start = started + self.interval
            finished = self.clock.monotonic()
            if finished >= next_start:
                logger.warning(f"Run took {finished - started:.2f}s, longer than the "
                               f"{self.interval}s interval - starting next run immediately")
                next_start = finished

        return self.runs
