"""
Single-threaded scheduler for the agent's periodic actions.

Each action has its own interval and its own timer. Timers are reset
after the action finishes, whatever the outcome, and actions never
overlap: a slow scrape simply delays the refresh until the thread is
free again. A failing tick is logged and the loop carries on.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

log = logging.getLogger(__name__)


@dataclass
class PeriodicTask:
    name: str
    interval: float  # seconds
    action: Callable[[], None]
    next_run: float = 0.0
    runs: int = 0
    failures: int = 0


class Scheduler:

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        stop_event: Optional[threading.Event] = None,
    ):
        self._clock = clock
        self._stop_event = stop_event or threading.Event()
        self._tasks: List[PeriodicTask] = []
        self._started = False

    @property
    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def every(self, interval: float, name: str, action: Callable[[], None]) -> PeriodicTask:
        """Register an action. Tasks added first run first when both are due."""
        if interval <= 0:
            raise ValueError(f"interval for {name} must be positive, got {interval}")
        task = PeriodicTask(name=name, interval=interval, action=action)
        self._tasks.append(task)
        return task

    def start(self):
        """Arm every timer: the first run of each task is one interval from now."""
        now = self._clock()
        for task in self._tasks:
            task.next_run = now + task.interval
        self._started = True

    def _fire(self, task: PeriodicTask):
        task.runs += 1
        try:
            task.action()
        except Exception as e:
            task.failures += 1
            log.warning("%s tick failed: %s", task.name, e)
        finally:
            task.next_run = self._clock() + task.interval

    def run_pending(self) -> float:
        """Run every task that is due, each at most once.

        Returns the number of seconds until the next task is due.
        """
        if not self._started:
            self.start()

        for task in self._tasks:
            if self._stop_event.is_set():
                break
            if self._clock() >= task.next_run:
                self._fire(task)

        if not self._tasks:
            return float("inf")
        return max(0.0, min(t.next_run for t in self._tasks) - self._clock())

    def run(self):
        """Loop until stop() is called. Blocks the calling thread."""
        if not self._started:
            self.start()

        log.info("Scheduler running: %s", ", ".join(
            f"{t.name} every {t.interval:g}s" for t in self._tasks
        ))

        while not self._stop_event.is_set():
            wait = self.run_pending()
            if wait == float("inf"):
                wait = None
            self._stop_event.wait(wait)

        log.info("Scheduler stopped")

    def stop(self):
        """Stop accepting new ticks. A tick already in flight runs to completion."""
        self._stop_event.set()
