"""Per-user Rate Limiter: request and token accounting in fixed windows.

Each user gets one window of ``window_ms`` milliseconds, anchored at the
first request recorded after the previous window expired (not aligned to
the wall clock). Within a window the limiter counts requests and sums
tokens; once it expires the next ``record`` opens a fresh one.

``check`` is a pure read and ``record`` is the only mutation, so callers can
check, run a fallible network call, and record only on success.

Fixed windows let a user burst up to ``2 * max_requests`` across a window
boundary. State is in-memory and grows with the number of users until
``cleanup`` is called; scheduling that call is the owner's job.

There are no locks. Two concurrent calls for the same user may both pass
``check`` before either ``record``s, so a window can end up over ``max_requests``.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from llm_engine.gateway.types import RateLimitConfig, RateLimitResult, UsageSnapshot

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class _RateLimitEntry:
    """Counters for a single user's current window."""

    count: int
    tokens: int
    window_start: float  # milliseconds on the limiter clock


class RateLimiter:
    """In-memory fixed-window rate limiter keyed by user id.

    Usage:
        limiter = RateLimiter(RateLimitConfig(max_requests=5, window_ms=1000))

        result = limiter.check(user_id, estimated_tokens=120)
        if result.allowed:
            response = await provider.complete(request)
            limiter.record(user_id, response.usage.total_tokens)
    """

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = monotonic_ms):
        """
        Args:
            config: Limits applied to every user
            clock: Monotonic time source in milliseconds (injectable for tests)
        """
        self.config = config
        self._clock = clock
        self._entries: dict[str, _RateLimitEntry] = {}

    def _now_ms(self) -> float:
        return self._clock()

    def _is_expired(self, entry: _RateLimitEntry, now: float) -> bool:
        return now - entry.window_start >= self.config.window_ms

    def _token_reason(self, estimated_tokens: int) -> str:
        return f"Token limit exceeded: {estimated_tokens} > {self.config.max_tokens_per_request}"

    def check(self, user_id: str, estimated_tokens: int = 0) -> RateLimitResult:
        """Decide whether a request for ``user_id`` may proceed.

        An expired window is reported as a fresh one but left in place;
        only ``record`` or ``cleanup`` touch the stored entry. The
        per-request token cap applies to fresh windows too.
        """
        now = self._now_ms()
        entry = self._entries.get(user_id)

        if entry is None or self._is_expired(entry, now):
            if estimated_tokens > self.config.max_tokens_per_request:
                return RateLimitResult(
                    allowed=False,
                    remaining=self.config.max_requests,
                    reset_in=self.config.window_ms,
                    reason=self._token_reason(estimated_tokens),
                )
            return RateLimitResult(
                allowed=True,
                remaining=self.config.max_requests - 1,
                reset_in=self.config.window_ms,
            )

        reset_in = int(self.config.window_ms - (now - entry.window_start))

        if entry.count >= self.config.max_requests:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_in=reset_in,
                reason="Request limit exceeded",
            )

        if estimated_tokens > self.config.max_tokens_per_request:
            return RateLimitResult(
                allowed=False,
                remaining=self.config.max_requests - entry.count,
                reset_in=reset_in,
                reason=self._token_reason(estimated_tokens),
            )

        return RateLimitResult(
            allowed=True,
            remaining=self.config.max_requests - entry.count - 1,
            reset_in=reset_in,
        )

    def record(self, user_id: str, tokens: int = 0) -> None:
        """Count one request and ``tokens`` against the user's current window."""
        now = self._now_ms()
        entry = self._entries.get(user_id)

        if entry is None or self._is_expired(entry, now):
            self._entries[user_id] = _RateLimitEntry(count=1, tokens=tokens, window_start=now)
            return

        entry.count += 1
        entry.tokens += tokens

    def cleanup(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._now_ms()
        expired = [user_id for user_id, entry in self._entries.items() if self._is_expired(entry, now)]
        for user_id in expired:
            del self._entries[user_id]

        if expired:
            logger.debug("Rate limiter cleanup removed %d expired entries", len(expired))
        return len(expired)

    def get_usage(self, user_id: str) -> UsageSnapshot | None:
        """Current-window counters, or None if the user has no live window."""
        entry = self._entries.get(user_id)
        if entry is None or self._is_expired(entry, self._now_ms()):
            return None
        return UsageSnapshot(requests=entry.count, tokens=entry.tokens)

    def get_stats(self) -> dict:
        """Get limiter configuration and the number of tracked users."""
        return {
            "tracked_users": len(self._entries),
            "max_requests": self.config.max_requests,
            "window_ms": self.config.window_ms,
            "max_tokens_per_request": self.config.max_tokens_per_request,
        }
