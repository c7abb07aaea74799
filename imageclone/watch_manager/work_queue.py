"""
The WorkQueue holds reconcile requests between the watch threads and the
worker threads. A key is queued at most once at a time, a key that is being
processed is never handed to a second worker, and failed keys come back after
an exponential per-key backoff.
"""

# Standard
from collections import deque
from heapq import heappop, heappush
from typing import Dict, Hashable, Optional
import itertools
import threading
import time

# First Party
import alog

# Local
from .. import config

log = alog.use_channel("WRKQUEUE")


class WorkQueue:
    """Deduplicating, rate limited work queue"""

    def __init__(
        self,
        base_delay: Optional[float] = None,
        max_delay: Optional[float] = None,
    ):
        """
        Args:
            base_delay:  Optional[float]
                Delay in seconds before the first retry of a failed key.
                Defaults to config.requeue.base_delay_seconds
            max_delay:  Optional[float]
                Cap on the per-key backoff. Defaults to
                config.requeue.max_delay_seconds
        """
        self.base_delay = float(
            config.requeue.base_delay_seconds if base_delay is None else base_delay
        )
        self.max_delay = float(
            config.requeue.max_delay_seconds if max_delay is None else max_delay
        )

        self._condition = threading.Condition()
        self._queue = deque()
        self._dirty = set()
        self._processing = set()
        self._failures: Dict[Hashable, int] = {}

        # Heap of (ready_time, sequence, key) for delayed adds. The sequence
        # keeps ordering stable for equal times and avoids comparing keys.
        self._delayed = []
        self._sequence = itertools.count()
        self._shutting_down = False

    ## Adding ##################################################################

    def add(self, key: Hashable):
        """Queue a key unless it is already waiting"""
        with self._condition:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("Parking %s until current processing is done", key)
                return
            self._queue.append(key)
            self._condition.notify()

    def add_after(self, key: Hashable, delay: float):
        """Queue a key once the delay in seconds has passed"""
        if delay <= 0:
            self.add(key)
            return
        with self._condition:
            if self._shutting_down:
                return
            ready_time = time.monotonic() + delay
            heappush(self._delayed, (ready_time, next(self._sequence), key))
            self._condition.notify()

    def add_rate_limited(self, key: Hashable) -> float:
        """Queue a key after its exponential backoff and return the delay"""
        with self._condition:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        log.debug2("Requeuing %s in %ss", key, delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable):
        """Reset the backoff of a key"""
        with self._condition:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._condition:
            return self._failures.get(key, 0)

    ## Consuming ###############################################################

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is ready and mark it as processing

        Args:
            timeout:  Optional[float]
                Max seconds to wait. None waits until shutdown

        Returns:
            key:  Optional[Hashable]
                The next key, or None on shutdown or timeout
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._condition:
            while True:
                if self._shutting_down:
                    return None
                self._promote_delayed()
                if self._queue:
                    key = self._queue.popleft()
                    self._dirty.discard(key)
                    self._processing.add(key)
                    return key

                wait_time = self._time_to_next_delayed()
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait_time = (
                        remaining if wait_time is None else min(wait_time, remaining)
                    )
                self._condition.wait(timeout=wait_time)

    def done(self, key: Hashable):
        """Mark a key as finished. If it was re-added while processing, it goes
        back on the queue now.
        """
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                self._queue.append(key)
                self._condition.notify()

    ## Lifecycle ###############################################################

    def shut_down(self):
        """Wake all waiting consumers and refuse new keys"""
        with self._condition:
            self._shutting_down = True
            self._condition.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down

    def __len__(self):
        with self._condition:
            return len(self._queue)

    ## Implementation ##########################################################

    def _promote_delayed(self):
        now = time.monotonic()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, key = heappop(self._delayed)
            if key in self._dirty:
                continue
            self._dirty.add(key)
            if key not in self._processing:
                self._queue.append(key)

    def _time_to_next_delayed(self) -> Optional[float]:
        if not self._delayed:
            return None
        return max(self._delayed[0][0] - time.monotonic(), 0)
