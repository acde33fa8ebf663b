"""
Retry-with-backoff and circuit breaker around storage calls.

Store and lifecycle methods are blocking; ResilienceWrapper runs them on an
executor thread so the event loop keeps serving other bookings, and applies:
  - a caller deadline: waiting stops at the deadline and the still-running
    call is handed to an on_abandon hook (the call itself may still commit)
  - bounded jittered exponential retry, only for idempotent or
    atomic-conditional calls (probes, reads, repair); never for trip creation
  - a circuit breaker over consecutive StorageErrors; while open every call
    fails fast with ServiceUnavailable
"""

import asyncio
import functools
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from app.config import settings
from app.exceptions import DispatchError, DispatchTimeout, ServiceUnavailable, StorageError
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 0.2
    max_delay: float = 2.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.25

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            initial_delay=settings.RETRY_INITIAL_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            jitter_factor=settings.RETRY_JITTER_FACTOR,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after `attempt` failed attempts, with jitter."""
        delay = min(self.initial_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        return delay + delay * self.jitter_factor * random.random()


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Opens after `failure_threshold` consecutive storage failures.

    After `cooldown_seconds` the breaker goes half-open and lets calls through;
    the first success closes it, a failure opens it for another cooldown.
    """

    def __init__(self, failure_threshold: int = 5, cooldown_seconds: float = 30.0,
                 clock: Callable[[], float] = time.monotonic):
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at = 0.0

    @classmethod
    def from_settings(cls) -> "CircuitBreaker":
        return cls(settings.BREAKER_FAILURE_THRESHOLD, settings.BREAKER_COOLDOWN_SECONDS)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def before_call(self):
        """Raise ServiceUnavailable while the breaker is open."""
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                raise ServiceUnavailable(self._retry_after())

    def record_success(self):
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("[Breaker] Storage recovered, circuit closed")
            self._state = CircuitState.CLOSED
            self._failures = 0

    def record_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                if self._state != CircuitState.OPEN:
                    logger.error(f"[Breaker] Circuit opened after {self._failures} consecutive "
                                 f"storage failures; cooling down {self.cooldown_seconds}s")
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()

    def snapshot(self) -> dict:
        with self._lock:
            self._maybe_half_open()
            return {
                "state": self._state.value,
                "consecutive_failures": self._failures,
                "retry_after_seconds": round(self._retry_after(), 1) if self._state == CircuitState.OPEN else 0,
            }

    def _maybe_half_open(self):
        if self._state == CircuitState.OPEN and self._clock() - self._opened_at >= self.cooldown_seconds:
            self._state = CircuitState.HALF_OPEN
            logger.info("[Breaker] Cooldown elapsed, circuit half-open")

    def _retry_after(self) -> float:
        return max(0.0, self.cooldown_seconds - (self._clock() - self._opened_at))


class Deadline:
    """Absolute deadline for one engine call, shared by all of its storage steps."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return self._expires_at - self._clock()

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0


class ResilienceWrapper:
    def __init__(self, retry_policy: Optional[RetryPolicy] = None, breaker: Optional[CircuitBreaker] = None,
                 executor=None, sleep=asyncio.sleep):
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.breaker = breaker or CircuitBreaker.from_settings()
        self._executor = executor
        self._sleep = sleep

    def wrap(self, func: Callable, idempotent: bool = False) -> Callable:
        """Decorate a blocking storage call into a guarded coroutine function."""
        @functools.wraps(func)
        async def guarded(*args, deadline: Optional[Deadline] = None,
                          on_abandon: Optional[Callable[[asyncio.Future], None]] = None, **kwargs):
            return await self.call(func, *args, idempotent=idempotent, deadline=deadline,
                                   on_abandon=on_abandon, **kwargs)
        return guarded

    async def call(self, func: Callable, *args, idempotent: bool = False, deadline: Optional[Deadline] = None,
                   on_abandon: Optional[Callable[[asyncio.Future], None]] = None, **kwargs) -> Any:
        name = getattr(func, "__name__", "storage call")
        attempts = self.retry_policy.max_attempts if idempotent else 1
        attempt = 1
        while True:
            self.breaker.before_call()
            try:
                result = await self._run(name, func, args, kwargs, deadline, on_abandon)
            except StorageError as exc:
                self.breaker.record_failure()
                if attempt >= attempts:
                    raise
                delay = self.retry_policy.delay_for(attempt)
                if deadline is not None and deadline.remaining() <= delay:
                    raise
                logger.warning(f"[Retry] {name} attempt {attempt}/{attempts} failed "
                               f"({exc.error_code}). Retrying in {delay:.2f}s...")
                await self._sleep(delay)
                attempt += 1
            except DispatchTimeout:
                raise
            except DispatchError:
                # The backend answered; this is a business outcome, not an outage
                self.breaker.record_success()
                raise
            else:
                self.breaker.record_success()
                return result

    async def _run(self, name: str, func: Callable, args: tuple, kwargs: dict,
                   deadline: Optional[Deadline], on_abandon):
        if deadline is not None and deadline.expired:
            raise DispatchTimeout(name, deadline.seconds)

        loop = asyncio.get_running_loop()
        fut = loop.run_in_executor(self._executor, functools.partial(func, *args, **kwargs))
        try:
            done, _ = await asyncio.wait({fut}, timeout=deadline.remaining() if deadline else None)
        except asyncio.CancelledError:
            self._abandon(name, fut, on_abandon)
            raise
        if not done:
            self._abandon(name, fut, on_abandon)
            raise DispatchTimeout(name, deadline.seconds)
        return fut.result()

    @staticmethod
    def _abandon(name: str, fut: asyncio.Future, on_abandon):
        logger.warning(f"[Resilience] Caller stopped waiting for {name}; call left running")
        if on_abandon is not None:
            fut.add_done_callback(on_abandon)
        else:
            # Retrieve the outcome so a late failure is not reported as never retrieved
            fut.add_done_callback(lambda f: f.cancelled() or f.exception())
