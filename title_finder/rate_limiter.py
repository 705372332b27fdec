from __future__ import annotations

import threading
import time
from collections import deque
from typing import Deque, Dict, Optional


class SlidingWindowRateLimiter:
    """Per-client request counter over a sliding time window."""

    def __init__(self, max_requests: int = 10, window_seconds: float = 60.0) -> None:
        """Purpose: Initialize an empty limiter owned by the application instance.
        Inputs/Outputs: Inputs are the request cap and window length; no return value.
        Side Effects / State: Creates the per-client hit log and its lock.
        Dependencies: None.
        Failure Modes: Raises ValueError for a non-positive cap or window.
        If Removed: Clients can call the reasoning service without any throttling.
        Testing Notes: Pass explicit `now` values to avoid sleeping in tests.
        """
        # Validate limits and prepare the hit log.
        if max_requests <= 0 or window_seconds <= 0:
            raise ValueError("max_requests and window_seconds must be positive")
        self._max_requests = max_requests
        self._window = window_seconds
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep: Optional[float] = None
        self._lock = threading.Lock()

    def allow(self, key: str, now: Optional[float] = None) -> bool:
        """Purpose: Record a request for a client if it is under the cap.
        Inputs/Outputs: Inputs are the client key and optional timestamp; output is
            True when the request may proceed.
        Side Effects / State: Drops expired hits and appends the new one when allowed.
            At most once per window, forgets every client with no live hits.
        Dependencies: Uses time.monotonic by default.
        Failure Modes: None.
        If Removed: The API cannot enforce per-client limits.
        Testing Notes: The (max+1)th call inside a window is refused; calls after the
            window slides are allowed again.
        """
        # Rejected requests are not recorded, so they do not extend the block.
        current = time.monotonic() if now is None else now
        with self._lock:
            if self._last_sweep is None or current - self._last_sweep >= self._window:
                self._drop_stale(current)
                self._last_sweep = current
            hits = self._hits.setdefault(key, deque())
            while hits and current - hits[0] >= self._window:
                hits.popleft()
            if len(hits) >= self._max_requests:
                return False
            hits.append(current)
            return True

    def prune(self, now: Optional[float] = None) -> int:
        """Drop clients with no hits inside the window; returns how many were removed."""
        current = time.monotonic() if now is None else now
        with self._lock:
            return self._drop_stale(current)

    def _drop_stale(self, current: float) -> int:
        # Caller holds the lock.
        stale = [key for key, hits in self._hits.items() if not hits or current - hits[-1] >= self._window]
        for key in stale:
            del self._hits[key]
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        return len(self._hits)
