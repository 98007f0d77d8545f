"""Retry policy with exponential backoff and jitter for ledger commits."""

from __future__ import annotations

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, TypeVar

import structlog
from pydantic import BaseModel, Field

from billing_core.core.exceptions import BillingCoreError, ConcurrentModificationError

logger = structlog.get_logger(__name__)

_T = TypeVar("_T")


class RetryPolicy(BaseModel):
    """Configurable retry policy with exponential backoff.

    Ledger mutations are read-modify-write cycles guarded by optimistic
    version checks; a lost race surfaces as
    :class:`~billing_core.core.exceptions.ConcurrentModificationError` and
    the whole operation is re-run under this policy.

    Attributes:
        max_retries: Maximum number of retry attempts (0 = no retries).
        backoff_base: Base delay in seconds for exponential backoff.
        backoff_max: Maximum delay in seconds (caps the exponential growth).
        jitter: If ``True``, add random jitter to the backoff delay.
        retryable_exceptions: Exception types eligible for retry when they
            do not declare ``is_retryable`` themselves.
    """

    max_retries: int = Field(default=3, ge=0, le=50)
    backoff_base: float = Field(default=0.01, ge=0.0)
    backoff_max: float = Field(default=1.0, ge=0.0)
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = (ConcurrentModificationError,)

    model_config = {"arbitrary_types_allowed": True}

    def _is_retryable(self, exc: Exception) -> bool:
        """Determine whether an exception should be retried.

        Billing-core errors decide for themselves through ``is_retryable``;
        anything else is retried when it is an instance of one of the
        configured ``retryable_exceptions``.
        """
        if isinstance(exc, BillingCoreError):
            return exc.is_retryable
        return isinstance(exc, self.retryable_exceptions)

    def _compute_delay(self, attempt: int) -> float:
        """Compute the backoff delay for the given attempt (0-indexed).

        ``backoff_base * 2^attempt`` capped at ``backoff_max``; with
        ``jitter`` the delay is uniformly distributed between 0 and that.
        """
        delay: float = min(self.backoff_base * (2 ** attempt), self.backoff_max)
        if self.jitter:
            delay = random.uniform(0, delay)  # noqa: S311
        return delay

    async def execute(
        self,
        fn: Callable[..., Awaitable[_T]],
        *args: Any,
        **kwargs: Any,
    ) -> _T:
        """Execute *fn* with retry logic.

        Calls ``await fn(*args, **kwargs)`` and retries on retryable
        exceptions up to ``max_retries`` times with exponential backoff.

        Raises:
            Exception: The last exception raised by *fn* if all retries are
                exhausted, or immediately if the exception is not retryable.
        """
        for attempt in range(1 + self.max_retries):
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                if not self._is_retryable(exc):
                    raise

                if attempt >= self.max_retries:
                    logger.warning(
                        "retry_exhausted",
                        attempts=attempt + 1,
                        error=str(exc),
                    )
                    raise

                delay = self._compute_delay(attempt)
                logger.info(
                    "retry_scheduled",
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    delay=round(delay, 4),
                    error=str(exc),
                )
                await asyncio.sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover

    def as_decorator(
        self,
    ) -> Callable[[Callable[..., Awaitable[_T]]], Callable[..., Awaitable[_T]]]:
        """Return a decorator that wraps async functions with this retry policy.

        Usage::

            policy = RetryPolicy(max_retries=5)

            @policy.as_decorator()
            async def credit_org():
                ...
        """

        def decorator(
            fn: Callable[..., Awaitable[_T]],
        ) -> Callable[..., Awaitable[_T]]:
            @functools.wraps(fn)
            async def wrapper(*args: Any, **kwargs: Any) -> _T:
                return await self.execute(fn, *args, **kwargs)

            return wrapper

        return decorator
