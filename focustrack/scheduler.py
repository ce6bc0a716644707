"""Single-threaded event loop for the tracker state machine.

All tracker transitions run on one loop thread, one callable at a time, so
``current_session`` and the today list are never mutated concurrently. Other
threads (window watcher, store writer, evaluator pool) hand work over with
``call_soon``; periodic ticks and one-shot timers (break reminders) are
scheduled on the same queue.

Example:
    >>> loop = ThreadedScheduler()
    >>> loop.start()
    >>> handle = loop.call_later(5.0, lambda: print("fired"))
    >>> handle.cancel()
    >>> loop.stop()
"""

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellable reference to a scheduled callback."""

    def __init__(self, callback: Callable[[], None], interval: Optional[float] = None):
        self.callback = callback
        self.interval = interval
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class Scheduler:
    """Interface the tracker uses to queue work and timers."""

    def call_soon(self, callback: Callable[[], None]) -> None:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        raise NotImplementedError


class ThreadedScheduler(Scheduler):
    """Scheduler backed by one daemon thread draining a FIFO of callables."""

    def __init__(self, name: str = "focustrack-loop"):
        self.name = name
        self._cond = threading.Condition()
        self._ready: deque = deque()
        self._timers: list = []
        self._seq = itertools.count()
        self._running = False
        self._thread: Optional[threading.Thread] = None

    def start(self):
        """Start the loop thread."""
        with self._cond:
            if self._running:
                logger.warning("Scheduler already running")
                return
            self._running = True
        self._thread = threading.Thread(target=self._run_loop, name=self.name, daemon=True)
        self._thread.start()
        logger.info("Scheduler started")

    def stop(self, timeout: float = 2.0):
        """Stop the loop; callbacks still queued are dropped."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Scheduler stopped")

    def in_loop_thread(self) -> bool:
        return self._thread is threading.current_thread()

    def call_soon(self, callback: Callable[[], None]) -> None:
        with self._cond:
            self._ready.append(callback)
            self._cond.notify()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback)
        self._push_timer(time.monotonic() + max(delay, 0.0), handle)
        return handle

    def call_every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TimerHandle(callback, interval=interval)
        self._push_timer(time.monotonic() + interval, handle)
        return handle

    def run_sync(self, callback: Callable[[], object], timeout: Optional[float] = None):
        """Run ``callback`` on the loop thread and wait for its result."""
        if self.in_loop_thread():
            return callback()
        done = threading.Event()
        result = {}

        def runner():
            try:
                result["value"] = callback()
            except Exception as e:
                result["error"] = e
            finally:
                done.set()

        self.call_soon(runner)
        if not done.wait(timeout):
            raise TimeoutError(f"Loop did not run callback within {timeout}s")
        if "error" in result:
            raise result["error"]
        return result.get("value")

    def _push_timer(self, deadline: float, handle: TimerHandle):
        with self._cond:
            heapq.heappush(self._timers, (deadline, next(self._seq), handle))
            self._cond.notify()

    def _collect_due(self, now: float):
        """Move due timers to the ready queue. Caller holds the lock."""
        while self._timers and self._timers[0][0] <= now:
            deadline, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._ready.append(handle)
            if handle.interval is not None:
                # Re-arm from the scheduled deadline so ticks don't drift
                next_deadline = max(deadline + handle.interval, now)
                heapq.heappush(self._timers, (next_deadline, next(self._seq), handle))

    def _run_loop(self):
        logger.debug(f"{self.name} loop started")
        while True:
            with self._cond:
                while self._running:
                    self._collect_due(time.monotonic())
                    if self._ready:
                        break
                    timeout = None
                    if self._timers:
                        timeout = max(self._timers[0][0] - time.monotonic(), 0.0)
                    self._cond.wait(timeout)
                if not self._running:
                    break
                callback = self._ready.popleft()

            if isinstance(callback, TimerHandle):
                # Timer cancelled between becoming due and running
                if callback.cancelled:
                    continue
                callback = callback.callback
            try:
                callback()
            except Exception as e:
                logger.error(f"Loop callback failed: {e}", exc_info=True)
        logger.debug(f"{self.name} loop stopped")
