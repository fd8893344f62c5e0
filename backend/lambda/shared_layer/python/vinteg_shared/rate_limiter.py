"""vinteg_shared.rate_limiter — Per-client fixed-window request counter.

Each client key gets a RateRecord {count, window_start}. A record whose
window has elapsed is reset to count=1 on the next call. Stale records are
swept on a random ~5% of calls instead of by a timer thread, so memory is
bounded only probabilistically.

The limiter is an owned object injected into the router; in Lambda it lives
for the lifetime of a warm container.
"""

from __future__ import annotations

import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from vinteg_shared.config import (
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_SWEEP_PROBABILITY,
    RATE_LIMIT_WINDOW_SECONDS,
)
from vinteg_shared.http_utils import _header, _source_ip

logger = logging.getLogger(__name__)

__all__ = [
    "UNKNOWN_CLIENT",
    "RateLimiter",
    "RateRecord",
    "_client_key",
]

# All clients without a resolvable address share this bucket.
UNKNOWN_CLIENT = "unknown"


@dataclass
class RateRecord:
    count: int
    window_start: float


class RateLimiter:
    def __init__(
        self,
        limit: int = RATE_LIMIT_MAX_REQUESTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        sweep_probability: float = RATE_LIMIT_SWEEP_PROBABILITY,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.limit = limit
        self.window_seconds = window_seconds
        self.sweep_probability = sweep_probability
        self._clock = clock
        self._rng = rng
        self._records: Dict[str, RateRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def record(self, client_key: str) -> Optional[RateRecord]:
        return self._records.get(client_key)

    def allow(self, client_key: str) -> bool:
        now = self._clock()
        with self._lock:
            allowed = self._check_and_increment(client_key, now)
            if self._rng() < self.sweep_probability:
                self._sweep(now)
        if not allowed:
            logger.warning("[WARNING] rate limit exceeded client=%s", client_key)
        return allowed

    def retry_after(self, client_key: str) -> int:
        """Whole seconds until the client's current window resets (0 if no record)."""
        record = self.record(client_key)
        if record is None:
            return 0
        remaining = record.window_start + self.window_seconds - self._clock()
        return max(0, math.ceil(remaining))

    def _check_and_increment(self, client_key: str, now: float) -> bool:
        record = self._records.get(client_key)
        if record is None or now - record.window_start > self.window_seconds:
            self._records[client_key] = RateRecord(count=1, window_start=now)
            return True
        # Capped: once the limit is reached the count stops growing.
        if record.count >= self.limit:
            return False
        record.count += 1
        return True

    def _sweep(self, now: float) -> int:
        stale = [
            key for key, record in self._records.items()
            if now - record.window_start > self.window_seconds
        ]
        for key in stale:
            del self._records[key]
        return len(stale)


def _client_key(event: Dict[str, Any]) -> str:
    """First X-Forwarded-For hop, else the peer address, else the shared bucket."""
    forwarded = _header(event.get("headers"), "x-forwarded-for")
    if isinstance(forwarded, str):
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return _source_ip(event) or UNKNOWN_CLIENT
