"""
Concurrency guard for reconciliation runs.

- LockManager: named, exclusive asyncio locks (one per reconciliation pair)
- with_lock: run an operation while holding a named lock
- with_retry: bounded retries with exponential backoff and jitter

Locks live in the current process and event loop. Runs on different keys
proceed concurrently; runs on the same key are serialized.
"""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, TypeVar

from ..errors import LockTimeoutError, RetriesExhaustedError, StoreReadError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LockManager:
    """Registry of named asyncio locks."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def _get(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def acquire(self, key: str, timeout_ms: int) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockTimeoutError: If the lock is not acquired within timeout_ms.
        """
        lock = self._get(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            logger.warning("Lock %s not acquired within %dms", key, timeout_ms)
            raise LockTimeoutError(key, timeout_ms) from None

        logger.debug("Acquired lock %s", key)
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released lock %s", key)


async def with_lock(
    locks: LockManager,
    key: str,
    operation: Callable[[], Awaitable[T]],
    timeout_ms: int,
) -> T:
    """Run ``operation`` while holding the named lock.

    The lock is released on every exit path: success, exception raised by
    the operation, or cancellation.
    """
    async with locks.acquire(key, timeout_ms):
        return await operation()


@dataclass
class RetryPolicy:
    """Bounded retry settings."""

    # Additional attempts after the first one
    max_retries: int = 2
    base_delay_ms: int = 100
    max_delay_ms: int = 2_000

    def delay_seconds(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based), with jitter."""
        base = self.base_delay_ms
        delay = base * (2**attempt) + random.random() * base
        return min(delay, self.max_delay_ms) / 1000

    def should_retry(self, exc: BaseException) -> bool:
        """Lock timeouts and malformed-data reads are not worth repeating."""
        if isinstance(exc, LockTimeoutError):
            return False
        if isinstance(exc, StoreReadError) and not exc.retryable:
            return False
        return True


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    description: str = "operation",
) -> T:
    """Await ``operation()`` up to ``policy.max_retries + 1`` times.

    ``operation`` must be a zero-argument coroutine factory so each attempt
    starts from scratch.

    Raises:
        RetriesExhaustedError: When every attempt failed with a retryable error.
        Exception: A non-retryable error is re-raised unchanged.
    """
    policy = policy or RetryPolicy()
    attempts = policy.max_retries + 1

    for attempt in range(attempts):
        try:
            return await operation()
        except Exception as exc:
            if not policy.should_retry(exc):
                raise
            if attempt == attempts - 1:
                logger.error("%s failed after %d attempt(s): %s", description, attempts, exc)
                raise RetriesExhaustedError(attempts, exc) from exc

            delay = policy.delay_seconds(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt + 1,
                attempts,
                exc,
                delay,
            )
            await asyncio.sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError("with_retry exited without a result")
