"""
Retry machinery for transit RPCs.

Retries are an explicit state machine: RetryState carries {attempt,
last_error}, RetryPolicy decides whether and when to try again, and
RetryScheduler parks the waiting coroutine on an event-loop timer instead of
sleeping a thread.
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from transit_envelope.services.errors import ConnectivityError, is_retryable

MAX_BACKOFF_SECONDS = 5.0
JITTER_FRACTION = 0.25


@dataclass(frozen=True)
class RetryState:
    """Index of the current attempt and the error that ended the previous one."""

    attempt: int = 0
    last_error: Optional[BaseException] = None

    def advance(self, error: BaseException) -> "RetryState":
        return RetryState(attempt=self.attempt + 1, last_error=error)


class RetryPolicy:
    """
    Exponential backoff with jitter.

    delay = min(base * 2**attempt, 5s) * uniform(0.75, 1.25)

    With max_retries = N a persistently retryable failure yields N + 1 attempts.
    """

    def __init__(
        self,
        max_retries: int,
        base_backoff_seconds: float,
        max_backoff_seconds: float = MAX_BACKOFF_SECONDS,
        jitter_fraction: float = JITTER_FRACTION,
        rand: Callable[[], float] = random.random,
    ):
        self.max_retries = max_retries
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.jitter_fraction = jitter_fraction
        self._rand = rand

    def should_retry(self, state: RetryState, error: BaseException) -> bool:
        """Whether the attempt that just failed with error gets a successor."""
        return is_retryable(error) and state.attempt < self.max_retries

    def delay_for(self, attempt: int) -> float:
        """Backoff in seconds before the attempt following `attempt`."""
        delay = min(self.base_backoff_seconds * (2 ** attempt), self.max_backoff_seconds)
        jitter = 1 - self.jitter_fraction + self._rand() * 2 * self.jitter_fraction
        return delay * jitter


class RetryScheduler:
    """
    Timer-backed waits for retry backoff.

    Each wait is a future resolved by loop.call_later. cancel_all() cancels
    every pending timer and fails its waiter with ConnectivityError, so no
    timer outlives the owning client.
    """

    def __init__(self):
        self._pending: Dict[asyncio.Future, asyncio.TimerHandle] = {}
        self._closed = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def closed(self) -> bool:
        return self._closed

    def sleep(self, delay: float) -> "asyncio.Future[None]":
        """Return a future that resolves after delay seconds."""
        if self._closed:
            raise ConnectivityError("Retry scheduler is closed")

        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        handle = loop.call_later(max(delay, 0.0), self._fire, future)
        self._pending[future] = handle
        future.add_done_callback(self._discard)
        return future

    def cancel_all(self) -> None:
        """Cancel all pending timers. Idempotent."""
        self._closed = True
        for future, handle in list(self._pending.items()):
            handle.cancel()
            if not future.done():
                future.set_exception(ConnectivityError("Retry cancelled: client closed"))
        self._pending.clear()

    @staticmethod
    def _fire(future: asyncio.Future) -> None:
        if not future.done():
            future.set_result(None)

    def _discard(self, future: asyncio.Future) -> None:
        handle = self._pending.pop(future, None)
        if handle is not None:
            handle.cancel()
