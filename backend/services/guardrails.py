"""In-memory per-client request limiting."""
import logging
import threading
import time
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed-window counter keyed by client IP."""

    def __init__(self, max_requests: int, window_seconds: int):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._buckets: Dict[str, Tuple[float, int]] = {}  # ip -> (window_start, count)
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def allow(self, client_ip: str, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            start, count = self._buckets.get(client_ip, (now, 0))
            if now - start >= self.window_seconds:
                start, count = now, 0
            if count >= self.max_requests:
                self._buckets[client_ip] = (start, count)
                return False
            self._buckets[client_ip] = (start, count + 1)
            return True

    def _sweep(self, now: float) -> None:
        # caller holds the lock
        expired = [ip for ip, (start, _) in self._buckets.items() if now - start >= self.window_seconds]
        for ip in expired:
            del self._buckets[ip]
        self._next_sweep = now + self.window_seconds

    def __len__(self) -> int:
        return len(self._buckets)

    def retry_after(self, client_ip: str, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        start, _ = self._buckets.get(client_ip, (now, 0))
        return max(0, int(self.window_seconds - (now - start)))

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._next_sweep = 0.0


def client_ip(x_forwarded_for: Optional[str], peer: Optional[str]) -> str:
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    return peer or "local"
