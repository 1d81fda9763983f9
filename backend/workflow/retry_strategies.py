"""Exponential backoff retries.

Used in two places that compose independently:
- the step-level ``retry`` error policy (ErrorPolicyHandler), which
  re-invokes a whole step;
- action collaborators such as ``api_call`` that retry their own
  transient failures before the step ever sees an error.

Delays are in seconds. Retry ``n`` (1-based, the n-th re-invocation)
waits ``base_delay * multiplier ** n``, capped at ``max_delay``.

Usage:
    strategy = RetryStrategy.transient(max_retries=2)
    response = await execute_with_retry(send_request, strategy, url)
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

_TRANSIENT_MARKERS = ("timeout", "connection", "temporary", "429", "502", "503", "504")


def is_transient(error: BaseException) -> bool:
    """Timeouts, connection failures and errors mentioning 429/5xx."""
    if isinstance(error, (TimeoutError, ConnectionError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


@dataclass
class RetryStrategy:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: Optional[float] = None
    transient_only: bool = False

    @classmethod
    def exponential(
        cls,
        max_retries: int = 3,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: Optional[float] = None,
    ) -> "RetryStrategy":
        """Retry every error with exponential backoff."""
        return cls(max_retries=max_retries, base_delay=base_delay, multiplier=multiplier, max_delay=max_delay)

    @classmethod
    def transient(cls, max_retries: int = 2, base_delay: float = 0.5) -> "RetryStrategy":
        """Retry only transient errors, backing off up to 30 seconds."""
        return cls(max_retries=max_retries, base_delay=base_delay, max_delay=30.0, transient_only=True)

    def compute_delay(self, retry: int) -> float:
        """Wait before retry number ``retry`` (1-based)."""
        delay = self.base_delay * (self.multiplier ** retry)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def should_retry(self, retry: int, error: Optional[BaseException] = None) -> bool:
        if retry > self.max_retries:
            return False
        if error is None or not self.transient_only:
            return True
        return is_transient(error)


async def execute_with_retry(
    func: Callable[..., Awaitable[Any]],
    strategy: RetryStrategy,
    *args,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    **kwargs,
):
    """Await ``func(*args, **kwargs)``, retrying failures per ``strategy``.

    Raises:
        The last exception once the strategy declines another retry.
    """
    retry = 0
    while True:
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            retry += 1
            if not strategy.should_retry(retry, e):
                raise
            delay = strategy.compute_delay(retry)
            logger.info("Retrying after failure", retry=retry, delay=delay, error=str(e))
            await sleep(delay)
