"""
Claim throttling for the reference node.

Every claim costs one hit against the submitting client and one against the
named claimant, so neither a single caller nor many callers naming the same
identity can try certificates at speed. Windows slide; hits older than the
window are forgotten, and so are keys with nothing left in the window.
"""

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional


@dataclass
class ThrottleVerdict:
    allowed: bool
    scope: Optional[str] = None
    retry_after: float = 0.0

    @property
    def retry_after_header(self) -> str:
        return str(max(1, math.ceil(self.retry_after)))


class SlidingWindow:
    """
    Hit timestamps per key inside a rolling window.

    Not thread-safe on its own; ClaimThrottle serializes access.
    """

    def __init__(self, limit: int, window_seconds: float):
        self.limit = max(1, limit)
        self.window = window_seconds
        self._hits: Dict[str, Deque[float]] = {}

    def __len__(self) -> int:
        return len(self._hits)

    def _live(self, key: str, now: float) -> Optional[Deque[float]]:
        hits = self._hits.get(key)
        if hits is None:
            return None
        while hits and hits[0] <= now - self.window:
            hits.popleft()
        if not hits:
            del self._hits[key]
            return None
        return hits

    def wait_for(self, key: str, now: float) -> float:
        """Seconds until `key` may be hit again; 0 when it may be hit now."""
        hits = self._live(key, now)
        if hits is None or len(hits) < self.limit:
            return 0.0
        return hits[0] + self.window - now

    def hit(self, key: str, now: float) -> None:
        self._hits.setdefault(key, deque()).append(now)

    def cleanup_expired(self, now: float) -> int:
        """Drop every key whose hits have all left the window. Returns how many were dropped."""
        before = len(self._hits)
        for key in list(self._hits):
            self._live(key, now)
        return before - len(self._hits)

    def forget(self, key: Optional[str] = None) -> None:
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)


class ClaimThrottle:
    """
    Two-scope sliding window limiter for claim submission.

    A claim is admitted only if both the client and the claimant have room;
    a refused claim consumes nothing. Idle keys are swept once per window.
    """

    def __init__(
        self,
        per_client: int,
        per_claimant: Optional[int] = None,
        window_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic
    ):
        self._clock = clock
        self._window = window_seconds
        self._scopes = {
            "client": SlidingWindow(per_client, window_seconds),
            "claimant": SlidingWindow(per_claimant or per_client, window_seconds),
        }
        self._next_sweep = clock() + window_seconds
        self._lock = threading.Lock()

    def tracked_keys(self) -> Dict[str, int]:
        with self._lock:
            return {scope: len(window) for scope, window in self._scopes.items()}

    def admit(self, client_id: str, claimant: str) -> ThrottleVerdict:
        keys = {"client": client_id, "claimant": claimant}
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                for window in self._scopes.values():
                    window.cleanup_expired(now)
                self._next_sweep = now + self._window

            for scope, window in self._scopes.items():
                wait = window.wait_for(keys[scope], now)
                if wait > 0:
                    return ThrottleVerdict(allowed=False, scope=scope, retry_after=wait)
            for scope, window in self._scopes.items():
                window.hit(keys[scope], now)
        return ThrottleVerdict(allowed=True)

    def reset(self) -> None:
        with self._lock:
            for window in self._scopes.values():
                window.forget()
