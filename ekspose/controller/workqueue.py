"""Deduplicating, rate-limited work queue for controller keys.

Built from two cooperating pieces: an immediate-dispatch WorkQueue and a
DelayingScheduler that feeds it once a retry delay has elapsed. The
ExponentialBackoffRateLimiter decides how long each retry waits.
"""

import heapq
import itertools
import threading
import time
from collections import deque
from typing import Callable, Dict, Hashable, Optional, Tuple

from loguru import logger


class WorkQueue:
    """FIFO queue that holds each key at most once.

    A key added while it is being processed is queued again when the worker
    calls ``done`` for it, so a single key is never handled by two workers at
    the same time.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._queue: deque = deque()
        self._dirty: set = set()
        self._processing: set = set()
        self._shutting_down = False

    def add(self, item: Hashable) -> None:
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self) -> Tuple[Optional[Hashable], bool]:
        """Block until an item is available.

        Returns:
            ``(item, False)``, or ``(None, True)`` once the queue is shut down.

        """
        with self._cond:
            while not self._queue and not self._shutting_down:
                self._cond.wait()
            if self._shutting_down:
                return None, True
            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty and not self._shutting_down:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)


class DelayingScheduler:
    """Hands items to a WorkQueue after a delay, from a single timer thread.

    Scheduling an item that is already waiting keeps the earlier deadline.
    """

    def __init__(self, queue: WorkQueue, clock: Callable[[], float] = time.monotonic):
        self._queue = queue
        self._clock = clock
        self._cond = threading.Condition()
        self._heap: list = []
        self._waiting: Dict[Hashable, float] = {}
        self._sequence = itertools.count()
        self._stopped = False
        self._thread = threading.Thread(target=self._loop, name="workqueue-delay", daemon=True)
        self._thread.start()

    def add_after(self, item: Hashable, delay: float) -> None:
        if delay <= 0:
            self._queue.add(item)
            return

        with self._cond:
            if self._stopped:
                return
            ready_at = self._clock() + delay
            current = self._waiting.get(item)
            if current is not None and current <= ready_at:
                return
            self._waiting[item] = ready_at
            heapq.heappush(self._heap, (ready_at, next(self._sequence), item))
            self._cond.notify()

    def pending(self) -> int:
        with self._cond:
            return len(self._waiting)

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify_all()
        self._thread.join(timeout=1.0)

    def _loop(self) -> None:
        with self._cond:
            while not self._stopped:
                now = self._clock()
                while self._heap and self._heap[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._heap)
                    # superseded by an earlier deadline
                    if self._waiting.get(item) != ready_at:
                        continue
                    del self._waiting[item]
                    self._queue.add(item)

                if self._heap:
                    self._cond.wait(timeout=max(self._heap[0][0] - now, 0.0))
                else:
                    self._cond.wait()


class ExponentialBackoffRateLimiter:
    """Per-item exponential backoff: ``base * 2**failures``, capped at ``maximum``."""

    def __init__(self, base: float = 0.005, maximum: float = 1000.0):
        self.base = base
        self.maximum = maximum
        self._lock = threading.Lock()
        self._failures: Dict[Hashable, int] = {}

    def when(self, item: Hashable) -> float:
        with self._lock:
            failures = self._failures.get(item, 0)
            self._failures[item] = failures + 1

        # 2**63 seconds is beyond any sane maximum
        if failures > 62:
            return self.maximum
        return min(self.base * (2**failures), self.maximum)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)


class RateLimitingQueue:
    """The queue contract the controller consumes.

    ``add``/``get``/``done`` come from WorkQueue, ``add_after`` from
    DelayingScheduler, and ``add_rate_limited``/``forget`` from the rate
    limiter.
    """

    def __init__(
        self,
        rate_limiter: Optional[ExponentialBackoffRateLimiter] = None,
        name: str = "ekspose",
    ):
        self.name = name
        self._queue = WorkQueue()
        self._scheduler = DelayingScheduler(self._queue)
        self._rate_limiter = rate_limiter or ExponentialBackoffRateLimiter()

    def add(self, item: Hashable) -> None:
        self._queue.add(item)

    def get(self) -> Tuple[Optional[Hashable], bool]:
        return self._queue.get()

    def done(self, item: Hashable) -> None:
        self._queue.done(item)

    def add_after(self, item: Hashable, delay: float) -> None:
        if self._queue.shutting_down:
            return
        self._scheduler.add_after(item, delay)

    def add_rate_limited(self, item: Hashable) -> None:
        delay = self._rate_limiter.when(item)
        logger.debug(f"[{self.name}] requeue {item} in {delay:.3f}s")
        self.add_after(item, delay)

    def forget(self, item: Hashable) -> None:
        self._rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self._rate_limiter.num_requeues(item)

    def shut_down(self) -> None:
        self._queue.shut_down()
        self._scheduler.stop()

    @property
    def shutting_down(self) -> bool:
        return self._queue.shutting_down

    def __len__(self) -> int:
        return len(self._queue)
