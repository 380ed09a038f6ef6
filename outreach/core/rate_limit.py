import time
from collections import deque
from threading import Lock


class SlidingWindowRateLimiter:
    def __init__(self, *, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._hits: dict[str, deque[float]] = {}
        self._lock = Lock()

    def check_and_consume(self, key: str) -> int:
        """
        Consume one request slot for the key.
        Returns retry-after seconds when blocked, otherwise 0.
        """
        now = time.time()
        cutoff = now - self.window_seconds
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] < cutoff:
                hits.popleft()
            if len(hits) >= self.max_requests:
                retry_after = int((hits[0] + self.window_seconds) - now) + 1
                return max(retry_after, 1)
            hits.append(now)
            return 0

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()
