"""Per-actor admission throttle for starting sync jobs"""
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict

from app.config import settings


class RateGate:
    """Sliding-window log: at most ``max_admissions`` per ``window_seconds`` per actor.

    State is process-local and lost on restart; it only throttles how often
    jobs are triggered, it does not guard correctness.
    """

    def __init__(
        self,
        max_admissions: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_admissions < 1:
            raise ValueError("max_admissions must be >= 1")
        self.max_admissions = max_admissions
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._admissions: Dict[str, Deque[float]] = defaultdict(deque)

    def _evict(self, log: Deque[float], now: float):
        while log and now - log[0] >= self.window_seconds:
            log.popleft()

    def try_admit(self, actor_id: str) -> bool:
        """Record an admission for ``actor_id`` if the window has room."""
        with self._lock:
            now = self._clock()
            log = self._admissions[actor_id]
            self._evict(log, now)
            if len(log) >= self.max_admissions:
                return False
            log.append(now)
            return True

    def retry_after(self, actor_id: str) -> float:
        """Seconds until ``actor_id`` may be admitted again (0 if it may now)."""
        with self._lock:
            now = self._clock()
            log = self._admissions.get(actor_id)
            if not log:
                return 0.0
            self._evict(log, now)
            if len(log) < self.max_admissions:
                return 0.0
            return max(0.0, self.window_seconds - (now - log[0]))

    def reset(self):
        with self._lock:
            self._admissions.clear()


# Global gate instance
rate_gate = RateGate(
    settings.sync_rate_limit_max_starts,
    settings.sync_rate_limit_window_seconds,
)
