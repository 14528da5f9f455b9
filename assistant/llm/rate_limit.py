"""Fixed-window rate limiting for generation API calls.

Architectural role:
    Shared gate consulted by every workflow stage before it calls the remote,
    quota-limited generation API. One `RateLimiter` instance lives in the
    dependency bundle and is shared by all concurrent runs.

Window model:
    Each key owns a `RateLimitRecord(count, reset_time)`. The first call of a
    window creates a fresh record with `count = 1`; later calls are allowed while
    `count < max_requests`. Records are replaced, never reset in place, once their
    window has expired.

Accounting policy:
    A slot is consumed when `acquire` allows the call. Calls that later fail at
    the provider keep their slot; failed attempts count against the window.

Concurrency:
    Counter reads and writes happen under one `threading.Lock`, so two callers
    racing for the last slot of a key cannot both be admitted.

Failure handling:
    Rejection raises `RateLimitExceeded`, a retryable error that carries the wait
    time. Nothing is queued or silently dropped.
"""

import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from assistant.llm.provider_config import RateLimitConfig, get_rate_limit_config


logger = logging.getLogger(__name__)

T = TypeVar("T")

# Probability that an `acquire` call sweeps expired records.
SWEEP_PROBABILITY = 0.01


@dataclass(frozen=True)
class RateLimitRecord:
    count: int
    reset_time: float


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one `acquire` call.

    Attributes:
        allowed: Whether the call may proceed.
        remaining: Slots left in the current window after this call.
        reset_time: Window expiry in limiter-clock milliseconds.
        wait_ms: Time until the window resets; `0` for allowed calls.
    """

    allowed: bool
    remaining: int
    reset_time: float
    wait_ms: float = 0.0


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    reset_time: float
    limit: int


class RateLimitExceeded(Exception):
    """Raised when a key has no slot left in its current window."""

    def __init__(self, key: str, wait_ms: float, max_requests: int, window_ms: int):
        self.key = key
        self.wait_ms = wait_ms
        self.max_requests = max_requests
        self.window_ms = window_ms
        super().__init__(self.user_message)

    @property
    def wait_seconds(self) -> int:
        return max(0, math.ceil(self.wait_ms / 1000))

    @property
    def user_message(self) -> str:
        return (
            f"Rate limit exceeded. Please wait {self.wait_seconds} seconds before "
            f"making another request. Limit: {self.max_requests} requests per "
            f"{self.window_ms / 1000:g} seconds."
        )


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


class RateLimiter:
    """In-process fixed-window limiter keyed by logical operation name.

    Args:
        config: Default quota used by `check` and `with_rate_limit`.
        clock: Millisecond clock; injectable for tests.
        rng: Random source deciding opportunistic sweeps.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = _monotonic_ms,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or get_rate_limit_config()
        self._clock = clock
        self._rng = rng
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def now(self) -> float:
        """Current limiter-clock time in milliseconds."""
        return self._clock()

    def acquire(self, key: str, max_requests: int, window_ms: int) -> RateLimitDecision:
        """Try to take one slot for `key`.

        Args:
            key: Logical operation name (for example `"classification"`).
            max_requests: Slots per window.
            window_ms: Window length in milliseconds.

        Returns:
            `RateLimitDecision`; rejected decisions carry `wait_ms`.
        """
        with self._lock:
            now = self._clock()

            if self._rng() < SWEEP_PROBABILITY:
                self._sweep(now)

            record = self._records.get(key)

            if record is None or record.reset_time < now:
                reset_time = now + window_ms
                self._records[key] = RateLimitRecord(count=1, reset_time=reset_time)
                return RateLimitDecision(
                    allowed=True,
                    remaining=max_requests - 1,
                    reset_time=reset_time,
                )

            if record.count >= max_requests:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset_time=record.reset_time,
                    wait_ms=record.reset_time - now,
                )

            updated = RateLimitRecord(count=record.count + 1, reset_time=record.reset_time)
            self._records[key] = updated
            return RateLimitDecision(
                allowed=True,
                remaining=max_requests - updated.count,
                reset_time=updated.reset_time,
            )

    def _sweep(self, now: float) -> None:
        expired = [k for k, record in self._records.items() if record.reset_time < now]
        for k in expired:
            del self._records[k]
        if expired:
            logger.debug("Evicted %d expired rate-limit records", len(expired))

    def check(self, key: str = "default") -> RateLimitDecision:
        """Acquire a slot with the configured quota or raise.

        Raises:
            RateLimitExceeded: When the key's window is exhausted.
        """
        decision = self.acquire(key, self.config.max_requests, self.config.window_ms)
        if not decision.allowed:
            logger.warning("Rate limit hit for key=%s, wait_ms=%.0f", key, decision.wait_ms)
            raise RateLimitExceeded(
                key,
                decision.wait_ms,
                self.config.max_requests,
                self.config.window_ms,
            )
        return decision

    async def with_rate_limit(self, call: Callable[[], Awaitable[T]], key: str = "default") -> T:
        """Gate an async call behind `check`.

        The slot is taken before `call` runs and is not refunded if it fails.
        """
        self.check(key)
        return await call()

    def status(self, key: str = "default") -> RateLimitStatus:
        """Report the current window for `key` without consuming a slot."""
        limit = self.config.max_requests
        with self._lock:
            now = self._clock()
            record = self._records.get(key)

        if record is None or record.reset_time < now:
            return RateLimitStatus(
                remaining=limit,
                reset_time=now + self.config.window_ms,
                limit=limit,
            )

        return RateLimitStatus(
            remaining=max(0, limit - record.count),
            reset_time=record.reset_time,
            limit=limit,
        )
