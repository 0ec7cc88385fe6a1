"""Per-lead message rate limiting.

A fixed window opens on the first message from a lead and closes
``window_seconds`` later; up to ``max_messages`` are accepted inside it.
Rejected messages do not count toward the window.
"""

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass


@dataclass
class RateLimitState:
    """Track rate limit state for a lead."""

    count: int = 0
    reset_at: float = 0.0


class RateLimiter:
    """Rate limiter for inbound lead messages."""

    def __init__(
        self,
        max_messages: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_messages: Maximum messages allowed per window.
            window_seconds: Time window in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        self._max_messages = max_messages
        self._window_seconds = window_seconds
        self._clock = clock
        self._states: dict[Hashable, RateLimitState] = {}

    @property
    def max_messages(self) -> int:
        return self._max_messages

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def check(self, key: Hashable) -> tuple[bool, float]:
        """Record a message for *key* if the window allows it.

        Contains no ``await``, so it is atomic with respect to other
        coroutines on the same event loop.

        Args:
            key: The lead identifier.

        Returns:
            Tuple of (is_allowed, seconds_until_window_reset).
        """
        now = self._clock()
        state = self._states.get(key)

        if state is None or now >= state.reset_at:
            self._states[key] = RateLimitState(count=1, reset_at=now + self._window_seconds)
            return True, self._window_seconds

        if state.count >= self._max_messages:
            return False, state.reset_at - now

        state.count += 1
        return True, state.reset_at - now
