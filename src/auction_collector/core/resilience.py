"""
Resilience patterns for provider requests.

Provides retry backoff for auction API calls, a per-provider circuit
breaker that reports how long a provider stays benched, and a request
spacing limiter built on pyrate-limiter.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass

from pyrate_limiter import Duration, Limiter, Rate
from pyrate_limiter.buckets import InMemoryBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Retry delays for provider requests.

    Plain failures double from `base_delay` up to `max_delay` with ±`jitter`
    spread. Throttling responses use `throttled_delay`, which is allowed to
    exceed the normal cap by a factor and never undercuts a Retry-After hint.
    """

    base_delay: float = 1.0
    max_delay: float = 60.0
    max_retries: int = 3
    jitter: float = 0.25

    @classmethod
    def from_settings(cls, settings) -> "ExponentialBackoff":
        return cls(
            base_delay=settings.backoff_base,
            max_delay=settings.backoff_max,
            max_retries=settings.max_retries,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (0-based)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        spread = delay * self.jitter * (random.random() * 2 - 1)
        return max(0.0, delay + spread)

    def throttled_delay(
        self, attempt: int, factor: float, retry_after: float | None = None
    ) -> float:
        """Seconds to wait after the provider answered 429."""
        delay = min(self.base_delay * (2**attempt), self.max_delay) * factor
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_retries


@dataclass
class _Circuit:
    failures: int = 0
    opened_at: float | None = None


class CircuitBreaker:
    """
    Benches an auction provider after repeated failures.

    Once a provider reaches `failure_threshold` consecutive failures it is
    skipped for `cooldown` seconds. Further failures while open do not
    extend the window. A success closes the circuit immediately.
    """

    def __init__(self, failure_threshold: int = 5, cooldown: float = 60.0):
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self._circuits: dict[str, _Circuit] = {}

    def _circuit(self, provider: str) -> _Circuit:
        return self._circuits.setdefault(provider, _Circuit())

    def failures(self, provider: str) -> int:
        return self._circuit(provider).failures

    def record_failure(self, provider: str) -> bool:
        """Count a failure. Returns True if this failure opened the circuit."""
        circuit = self._circuit(provider)
        circuit.failures += 1
        if circuit.opened_at is None and circuit.failures >= self.failure_threshold:
            circuit.opened_at = time.monotonic()
            logger.warning(
                f"Provider {provider} benched for {self.cooldown:.0f}s "
                f"after {circuit.failures} failures"
            )
            return True
        return False

    def record_success(self, provider: str) -> None:
        circuit = self._circuit(provider)
        if circuit.opened_at is not None:
            logger.info(f"Provider {provider} back in rotation")
        circuit.failures = 0
        circuit.opened_at = None

    def remaining(self, provider: str) -> float:
        """Seconds until `provider` may be tried again; 0 when closed."""
        circuit = self._circuit(provider)
        if circuit.opened_at is None:
            return 0.0
        left = circuit.opened_at + self.cooldown - time.monotonic()
        if left <= 0:
            circuit.failures = 0
            circuit.opened_at = None
            logger.info(f"Provider {provider} cooldown elapsed, retrying")
            return 0.0
        return left

    def is_open(self, provider: str) -> bool:
        return self.remaining(provider) > 0

    def soonest_retry(self, providers: list[str]) -> float:
        """Shortest remaining bench time among the open `providers`."""
        waits = [self.remaining(name) for name in providers]
        return min((wait for wait in waits if wait > 0), default=0.0)


class RateLimiter:
    """
    Minimum spacing between consecutive requests to one provider.

    Backed by a pyrate-limiter bucket holding one request per
    `min_interval` window. Callers await `acquire()` before each request;
    a full bucket is polled without blocking the event loop.
    """

    def __init__(self, min_interval: float = 1.0, name: str = "provider"):
        self.min_interval = min_interval
        self.name = name
        self._limiter: Limiter | None = None
        if min_interval > 0:
            window_ms = max(1, round(min_interval * int(Duration.SECOND)))
            self._limiter = Limiter(
                InMemoryBucket([Rate(1, window_ms)]),
                raise_when_fail=False,
            )
        self._poll = min(max(min_interval, 0.001) / 4, 0.05)

    async def acquire(self) -> float:
        """Wait for the next free slot. Returns the time spent waiting."""
        if self._limiter is None:
            return 0.0
        waited = 0.0
        while not self._limiter.try_acquire(self.name):
            await asyncio.sleep(self._poll)
            waited += self._poll
        return waited
