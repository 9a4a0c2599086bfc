"""
GitLab API Rate Limiting Module

A call gate invoked right before every GitLab API request. Calls are spaced at
least 1 / max_requests_per_second seconds apart across all polling threads;
a caller that arrives early blocks until its slot.
"""
import logging
import threading
import time

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, max_requests_per_second, clock=time.monotonic, sleep=time.sleep):
        if max_requests_per_second <= 0:
            raise ValueError(f"max_requests_per_second must be positive, got {max_requests_per_second}")
        self.interval = 1.0 / max_requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = None

    def __call__(self):
        with self._lock:
            now = self._clock()
            if self._next_slot is None or self._next_slot <= now:
                slot = now
            else:
                slot = self._next_slot
            self._next_slot = slot + self.interval

        delay = slot - now
        if delay > 0:
            logger.debug(f"Rate limit reached, waiting {delay:.3f}s before next GitLab API call")
            self._sleep(delay)
