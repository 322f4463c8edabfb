"""Per-client sliding-window rate limiting for the query endpoint."""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

import anyio

LOG = logging.getLogger("ampgate.serving.backend.limits")

UNKNOWN_CLIENT = "unknown"


def client_id_from_headers(headers: Mapping[str, str]) -> str:
    """
    Derive the rate-limit key from the forwarded-for header.

    Parameters
    ----------
    headers:
        Case-insensitive request header mapping.

    Returns
    -------
    str
        First address listed in ``X-Forwarded-For``, or ``"unknown"``.
    """
    forwarded = headers.get("x-forwarded-for") or ""
    first = forwarded.split(",", maxsplit=1)[0].strip()
    return first or UNKNOWN_CLIENT


@dataclass
class SlidingWindowRateLimiter:
    """
    Track request timestamps per client inside a trailing window.

    All mutation happens without suspension points, so on a single event loop a check and
    the insertion that follows it are atomic for a given client.
    """

    max_requests: int = 60
    window_seconds: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _ledger: dict[str, deque[float]] = field(default_factory=dict, init=False, repr=False)

    def allow(self, client_id: str) -> bool:
        """
        Record a request for ``client_id`` when it fits in the window.

        Parameters
        ----------
        client_id:
            Rate-limit key for the caller.

        Returns
        -------
        bool
            True when the request is admitted; False leaves the ledger untouched.
        """
        now = self.clock()
        timestamps = self._ledger.get(client_id)
        if timestamps is None:
            timestamps = deque()
            self._ledger[client_id] = timestamps
        self._prune(timestamps, now)
        if len(timestamps) >= self.max_requests:
            return False
        timestamps.append(now)
        return True

    def sweep(self) -> int:
        """
        Drop clients with no timestamps left inside the window.

        Returns
        -------
        int
            Number of evicted clients.
        """
        now = self.clock()
        stale: list[str] = []
        for client_id, timestamps in self._ledger.items():
            self._prune(timestamps, now)
            if not timestamps:
                stale.append(client_id)
        for client_id in stale:
            del self._ledger[client_id]
        return len(stale)

    def active_clients(self) -> int:
        """Return the number of clients currently tracked."""
        return len(self._ledger)

    def _prune(self, timestamps: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()


async def run_rate_limit_sweeper(limiter: SlidingWindowRateLimiter, interval: float) -> None:
    """Sweep idle ledger entries every ``interval`` seconds until cancelled."""
    while True:
        await anyio.sleep(interval)
        evicted = limiter.sweep()
        if evicted:
            LOG.debug(
                "Evicted %d idle rate-limit entries; %d clients tracked",
                evicted,
                limiter.active_clients(),
            )
