"""Rate limiting policy for polite upstream access."""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Fixed inter-request delay plus a long cooldown after throttling.

    Call ``wait()`` before every request. When the upstream answers 429,
    call ``cooldown()`` and check ``can_retry`` to decide whether one more
    attempt is allowed. ``reset()`` restores the retry budget for the next
    logical request.
    """

    def __init__(
        self,
        delay_seconds: float = 1.0,
        cooldown_seconds: float = 60.0,
        max_retries: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            delay_seconds: Minimum spacing between consecutive requests
            cooldown_seconds: Sleep applied after a throttling response
            max_retries: Retries allowed per logical request after throttling
            sleep: Sleep function (injected in tests)
            clock: Monotonic clock (injected in tests)
        """
        self.delay_seconds = delay_seconds
        self.cooldown_seconds = cooldown_seconds
        self.max_retries = max_retries
        self.sleep_func = sleep
        self._clock = clock
        self._last_request_time: float | None = None
        self._retries_used = 0

    @classmethod
    def from_config(cls, config: dict, **kwargs) -> "RateLimiter":
        """Build a limiter from a ``rate_limit`` config section."""
        return cls(
            delay_seconds=config.get("delay_seconds", 1.0),
            cooldown_seconds=config.get("cooldown_seconds", 60.0),
            max_retries=config.get("max_retries", 1),
            **kwargs,
        )

    def wait(self) -> None:
        """Sleep until the configured delay since the last request has passed."""
        if self.delay_seconds > 0:
            if self._last_request_time is None:
                self.sleep_func(self.delay_seconds)
            else:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self.delay_seconds:
                    self.sleep_func(self.delay_seconds - elapsed)
        self._last_request_time = self._clock()

    def pause(self, seconds: float) -> None:
        """Sleep between units of work."""
        if seconds > 0:
            self.sleep_func(seconds)

    @property
    def can_retry(self) -> bool:
        return self._retries_used < self.max_retries

    def cooldown(self) -> None:
        """Consume one retry and sleep for the throttling cooldown."""
        self._retries_used += 1
        logger.info(f"Rate limited, cooling down for {self.cooldown_seconds}s")
        self.sleep_func(self.cooldown_seconds)

    def reset(self) -> None:
        """Restore the retry budget."""
        self._retries_used = 0
