"""Rate limiting per IRC sender.

Bounds how often a single nick can reach the agent, to prevent abuse
and control agent costs. Counting uses a fixed window per sender that
is replaced wholesale once it expires.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("ircbridge.ratelimit")

# How often stale entries are swept (seconds)
_SWEEP_INTERVAL = 300.0


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int = 5
    window_seconds: float = 60.0


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float
    notified: bool = False


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    should_notify: bool = False


def normalize_key(sender_id: str) -> str:
    """Case variants of the same nick share one counter."""
    return sender_id.strip().lower()


class RateLimiter:
    """Rate limiter with a fixed window per sender.

    The first message in a window (re)creates the entry. Once the sender
    reaches ``max_requests`` every further message in that window is
    limited, and only the first limited message asks the caller to notify.

    Expired entries are removed by ``sweep()``, which runs in a background
    task between ``start()`` and ``stop()``. ``check()`` never sweeps.

    Default: 5 requests per 60 seconds per sender.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = _SWEEP_INTERVAL,
    ):
        """Initialize rate limiter.

        Args:
            config: Default limits used when ``check()`` gets none
            clock: Monotonic time source in seconds (injectable for tests)
            sweep_interval: Seconds between background sweeps
        """
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweep_task: Optional[asyncio.Task] = None

    def check(
        self,
        sender_id: str,
        config: Optional[RateLimitConfig] = None,
    ) -> RateLimitResult:
        """Record one message from ``sender_id`` and decide whether to limit it.

        Args:
            sender_id: Sender nick (any case, surrounding whitespace ignored)
            config: Limits to apply (defaults to the limiter's own)

        Returns:
            RateLimitResult — ``should_notify`` is True exactly once per window
        """
        config = config or self.config
        key = normalize_key(sender_id)
        now = self._clock()
        entry = self._entries.get(key)

        # New sender or window elapsed: replace, never increment
        if entry is None or now >= entry.window_reset_at:
            self._entries[key] = RateLimitEntry(
                count=1,
                window_reset_at=now + config.window_seconds,
            )
            return RateLimitResult(limited=False)

        if entry.count >= config.max_requests:
            should_notify = not entry.notified
            if should_notify:
                entry.notified = True
                logger.info(
                    f"Rate limit hit for {sender_id} "
                    f"({config.max_requests}/{config.window_seconds:g}s)"
                )
            return RateLimitResult(limited=True, should_notify=should_notify)

        entry.count += 1
        return RateLimitResult(limited=False)

    def sweep(self) -> int:
        """Drop entries whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        stale = [key for key, entry in self._entries.items() if now >= entry.window_reset_at]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug(f"Swept {len(stale)} stale rate limit entries")
        return len(stale)

    async def start(self):
        """Start the background sweep task."""
        if self._sweep_task and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        """Stop the background sweep task."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def update_limits(
        self,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ):
        """Update the default limits.

        Args:
            max_requests: New max requests per window (if provided)
            window_seconds: New window duration (if provided)
        """
        self.config = RateLimitConfig(
            max_requests=max(1, max_requests) if max_requests is not None else self.config.max_requests,
            window_seconds=max(1.0, window_seconds) if window_seconds is not None else self.config.window_seconds,
        )
        logger.info(
            f"Rate limits updated: {self.config.max_requests} requests / "
            f"{self.config.window_seconds:g}s"
        )

    def reset_user(self, sender_id: str):
        """Forget the current window for one sender."""
        key = normalize_key(sender_id)
        if key in self._entries:
            del self._entries[key]
            logger.debug(f"Rate limit reset for {sender_id}")

    def reset_all(self):
        """Reset all rate limits."""
        self._entries.clear()
        logger.info("All rate limits reset")

    def get_user_status(self, sender_id: str) -> Optional[dict]:
        """Current window for a sender, or None if there is no live window.

        Returns:
            Dict with count, remaining_seconds, notified
        """
        entry = self._entries.get(normalize_key(sender_id))
        if entry is None:
            return None
        now = self._clock()
        if now >= entry.window_reset_at:
            return None
        return {
            "count": entry.count,
            "remaining_seconds": entry.window_reset_at - now,
            "notified": entry.notified,
        }

    def __len__(self) -> int:
        return len(self._entries)
