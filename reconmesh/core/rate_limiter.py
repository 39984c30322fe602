"""Per-service rate limiter: enforces a minimum gap between outbound calls."""

from __future__ import annotations

import asyncio
import time
from typing import Optional


class RateLimiter:
    """Minimum-interval limiter that widens its interval on 429/503 responses.

    Successive :meth:`acquire` calls return no closer together than the
    current interval.  On a 429 or 503 response the interval is multiplied by
    *backoff_factor* (> 1), up to *max_interval*.  Every 200 response shrinks
    it by *recovery_factor* (< 1), but never below the configured *interval*,
    so the configured spacing is always honoured.

    Args:
        interval: Minimum seconds between consecutive calls (0 = unlimited).
        max_interval: Upper bound for the widened interval.  Defaults to
            ``max(60, interval * 10)``.
        backoff_factor: Multiplicative factor applied when throttling is detected.
        recovery_factor: Multiplicative factor applied on successful responses.
    """

    def __init__(
        self,
        interval: float = 0.0,
        max_interval: Optional[float] = None,
        backoff_factor: float = 2.0,
        recovery_factor: float = 0.9,
    ) -> None:
        self._base_interval = max(interval, 0.0)
        self._max_interval = (
            max_interval if max_interval is not None else max(60.0, self._base_interval * 10)
        )
        self._backoff_factor = backoff_factor
        self._recovery_factor = recovery_factor
        self._interval = self._base_interval
        self._throttled = False
        self._retry_after: float = 0.0  # absolute timestamp when we can send again
        self._lock = asyncio.Lock()
        self._last_call: float = 0.0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def interval(self) -> float:
        """Current minimum seconds between calls."""
        return self._interval

    @property
    def base_interval(self) -> float:
        """The configured interval the limiter never drops below."""
        return self._base_interval

    @property
    def is_throttled(self) -> bool:
        """``True`` if we are currently in a backoff period."""
        return self._throttled

    @property
    def last_call(self) -> float:
        """Monotonic timestamp of the most recent call slot."""
        return self._last_call

    # ------------------------------------------------------------------
    # Slot acquisition
    # ------------------------------------------------------------------

    async def acquire(self) -> None:
        """Wait until the interval has elapsed since the previous call."""
        async with self._lock:
            now = time.monotonic()

            if self._retry_after > now:
                await asyncio.sleep(self._retry_after - now)
                now = time.monotonic()

            if self._interval > 0:
                elapsed = now - self._last_call
                if elapsed < self._interval:
                    await asyncio.sleep(self._interval - elapsed)

            self._last_call = time.monotonic()

    def touch(self) -> None:
        """Re-stamp the last call time, e.g. once a slow call has finished."""
        self._last_call = time.monotonic()

    # ------------------------------------------------------------------
    # Feedback loop
    # ------------------------------------------------------------------

    def record_response(self, status_code: int, headers: dict) -> None:
        """Update the interval based on an HTTP response.

        Args:
            status_code: HTTP status code of the response.
            headers: Response headers dict (used to parse ``Retry-After``).
        """
        if status_code in (429, 503):
            widened = max(self._interval, 1.0) * self._backoff_factor
            self._interval = min(widened, self._max_interval)
            self._throttled = True
            retry_after = _parse_retry_after(headers)
            if retry_after > 0:
                self._retry_after = time.monotonic() + retry_after
        elif status_code == 200 and self._throttled:
            self._interval = max(self._interval * self._recovery_factor, self._base_interval)
            if self._interval <= self._base_interval * 1.01:
                self._interval = self._base_interval
                self._throttled = False


def _parse_retry_after(headers: dict) -> float:
    """Parse the ``Retry-After`` header value into seconds.

    Args:
        headers: Response headers dict.

    Returns:
        Number of seconds to wait, or 0 if the header is absent / unparseable.
    """
    value = headers.get("Retry-After") or headers.get("retry-after") or ""
    if not value:
        return 0.0
    try:
        return float(value)
    except ValueError:
        pass
    # RFC 7231 HTTP-date format; return a generous 60 s default
    return 60.0
