"""
Clocks and the task scheduler.

Every timer in the tracker (periodic rescan, status log, limit-alert
repeat, snooze resume) is a Task owned by a TaskScheduler and cancelled
through its handle. The scheduler can be driven two ways:

- Manually: advance(ms) on a ManualClock steps virtual time and runs due
  tasks in order. Tests and replays use this.
- From a background daemon thread: start() polls run_pending() every
  config.SCHEDULER_TICK_SECONDS until stop().

Task callbacks always run while holding the lock passed to the
scheduler, so they never interleave with host events that take the
same lock.
"""

import heapq
import itertools
import logging
import threading
import time
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

import config

logger = logging.getLogger(__name__)


class Clock:
    """Wall clock in epoch milliseconds."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def today(self) -> date:
        """Local calendar day for the current time."""
        return datetime.fromtimestamp(self.now_ms() / 1000).date()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start_ms: Optional[int] = None) -> None:
        self._now_ms = int(time.time() * 1000) if start_ms is None else int(start_ms)

    def now_ms(self) -> int:
        return self._now_ms

    def set(self, now_ms: int) -> None:
        if now_ms < self._now_ms:
            raise ValueError("ManualClock cannot move backwards")
        self._now_ms = int(now_ms)

    def advance(self, ms: int) -> None:
        self.set(self._now_ms + int(ms))


class Task:
    """
    A scheduled callback. Returned to callers as the cancel handle.

    Attributes:
        name: Label used in logs.
        interval_ms: Repeat interval, or None for a one-shot task.
        due_ms: Next time the task should run.
    """

    def __init__(self, name: str, callback: Callable[[], None],
                 due_ms: int, interval_ms: Optional[int] = None) -> None:
        self.name = name
        self.callback = callback
        self.due_ms = due_ms
        self.interval_ms = interval_ms
        self.cancelled = False
        self.run_count = 0

    @property
    def active(self) -> bool:
        """True while the task may still run."""
        return not self.cancelled

    def cancel(self) -> None:
        """Cancel the task. Safe to call more than once."""
        if not self.cancelled:
            self.cancelled = True
            logger.debug(f"Task cancelled: {self.name}")

    def __repr__(self) -> str:
        kind = f"every {self.interval_ms}ms" if self.interval_ms else "once"
        return f"<Task {self.name} {kind} due={self.due_ms} cancelled={self.cancelled}>"


class TaskScheduler:
    """Orders tasks by due time and runs them against a Clock."""

    def __init__(self, clock: Clock, lock: Optional[threading.RLock] = None) -> None:
        self.clock = clock
        self.lock = lock or threading.RLock()
        self._queue: List[Tuple[int, int, Task]] = []
        self._seq = itertools.count()
        self._queue_lock = threading.Lock()

        self.should_stop: threading.Event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def call_later(self, delay_ms: int, callback: Callable[[], None], name: str = "task") -> Task:
        """
        Run callback once after delay_ms.

        Returns:
            The Task, whose cancel() is the cancel handle.
        """
        task = Task(name, callback, self.clock.now_ms() + max(0, int(delay_ms)))
        self._push(task)
        return task

    def call_every(self, interval_ms: int, callback: Callable[[], None], name: str = "task") -> Task:
        """
        Run callback every interval_ms, first run one interval from now.

        Raises:
            ValueError: If interval_ms is not positive.
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        task = Task(name, callback, self.clock.now_ms() + int(interval_ms), int(interval_ms))
        self._push(task)
        return task

    def _push(self, task: Task) -> None:
        with self._queue_lock:
            heapq.heappush(self._queue, (task.due_ms, next(self._seq), task))

    def pending(self) -> List[Task]:
        """Active tasks in due order."""
        with self._queue_lock:
            return [t for _, _, t in sorted(self._queue) if t.active]

    def next_due_ms(self) -> Optional[int]:
        """Due time of the earliest active task, or None."""
        with self._queue_lock:
            while self._queue and self._queue[0][2].cancelled:
                heapq.heappop(self._queue)
            return self._queue[0][0] if self._queue else None

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    def _pop_due(self, now_ms: int) -> Optional[Task]:
        with self._queue_lock:
            while self._queue:
                due, _, task = self._queue[0]
                if task.cancelled:
                    heapq.heappop(self._queue)
                    continue
                if due > now_ms:
                    return None
                heapq.heappop(self._queue)
                return task
        return None

    def _run_task(self, task: Task) -> None:
        with self.lock:
            # Cancelled by an earlier task in the same batch
            if task.cancelled:
                return
            task.run_count += 1
            try:
                task.callback()
            except Exception as e:
                logger.error(f"Task {task.name} failed: {e}")
            if task.interval_ms and not task.cancelled:
                task.due_ms += task.interval_ms
                self._push(task)
            elif not task.interval_ms:
                task.cancelled = True

    def run_pending(self) -> int:
        """
        Run every task due at the current clock time.

        Returns:
            Number of task runs.
        """
        ran = 0
        now = self.clock.now_ms()
        while True:
            task = self._pop_due(now)
            if task is None:
                return ran
            self._run_task(task)
            ran += 1

    def advance(self, ms: int) -> int:
        """
        Step a ManualClock forward, running tasks at their exact due times.

        Args:
            ms: Milliseconds to advance.

        Returns:
            Number of task runs.

        Raises:
            TypeError: If the clock is not a ManualClock.
        """
        if not isinstance(self.clock, ManualClock):
            raise TypeError("advance() requires a ManualClock")

        target = self.clock.now_ms() + int(ms)
        ran = 0
        while True:
            due = self.next_due_ms()
            if due is None or due > target:
                break
            if due > self.clock.now_ms():
                self.clock.set(due)
            ran += self.run_pending()
        self.clock.set(target)
        return ran

    def cancel_all(self) -> None:
        """Cancel every queued task."""
        with self._queue_lock:
            for _, _, task in self._queue:
                task.cancelled = True
            self._queue.clear()

    # ------------------------------------------------------------------
    # Background thread
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start polling due tasks on a daemon thread."""
        if self.is_running:
            return
        self.should_stop.clear()
        self._thread = threading.Thread(target=self._loop, name="reelwatch-scheduler", daemon=True)
        self._thread.start()
        logger.info("Task scheduler thread started")

    def stop(self) -> None:
        """Stop the polling thread and wait for it to finish."""
        self.should_stop.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2.0)
            if self._thread.is_alive():
                logger.warning("Scheduler thread did not stop within timeout")
        self._thread = None

    def _loop(self) -> None:
        try:
            while not self.should_stop.is_set():
                self.run_pending()
                self.should_stop.wait(config.SCHEDULER_TICK_SECONDS)
        except Exception as e:
            logger.error(f"Scheduler loop error: {e}")
