"""Error policy handling for failed steps.

The policy for a step is its own ``errorHandling`` override, else the
workflow default, else ``stop``.

- stop: re-raise; the execution fails.
- continue: swallow; the step's nextSteps run with the step's input.
- retry: re-invoke the step up to ``maxRetries`` times, waiting
  ``initialDelay * backoffMultiplier ** n`` ms before retry n. When all
  retries fail, RetryExhausted propagates like a stop.
- fallback: run ``fallbackStep`` in place of the failed step's chain;
  with no fallbackStep configured this behaves like continue.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog

from core.constants import ErrorStrategy
from core.exceptions import ExecutionCancelled, RetryExhausted, StepExecutionError
from workflow.models import (
    ErrorHandlingConfig,
    RetryPolicy,
    StepExecutionResult,
    WorkflowDefinition,
    WorkflowStep,
)
from workflow.retry_strategies import RetryStrategy

logger = structlog.get_logger(__name__)

DEFAULT_POLICY = ErrorHandlingConfig(strategy=ErrorStrategy.STOP)


class Resolution(str, Enum):
    RECOVERED = "recovered"
    CONTINUE = "continue"
    FALLBACK = "fallback"


@dataclass
class PolicyDecision:
    """How traversal proceeds after a failure that was not re-raised."""

    resolution: Resolution
    outcome: Any = None
    fallback_step: Optional[str] = None


class ErrorPolicyHandler:
    """Decides stop/continue/retry/fallback for a failed step."""

    def __init__(
        self,
        retry_policy: RetryPolicy,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._retry_policy = retry_policy
        self._sleep = sleep

    @staticmethod
    def resolve(step: WorkflowStep, workflow: WorkflowDefinition) -> ErrorHandlingConfig:
        return step.error_handling or workflow.error_handling or DEFAULT_POLICY

    def retry_strategy(self, policy: ErrorHandlingConfig) -> RetryStrategy:
        """Build the backoff schedule for a retry policy (delays in seconds)."""
        defaults = self._retry_policy
        max_retries = policy.max_retries if policy.max_retries is not None else defaults.max_retries
        initial_ms = policy.initial_delay if policy.initial_delay is not None else defaults.initial_delay
        multiplier = (
            policy.backoff_multiplier
            if policy.backoff_multiplier is not None
            else defaults.backoff_multiplier
        )
        return RetryStrategy.exponential(
            max_retries=max_retries,
            base_delay=initial_ms / 1000,
            multiplier=multiplier,
        )

    async def handle(
        self,
        error: StepExecutionError,
        step: WorkflowStep,
        workflow: WorkflowDefinition,
        result: StepExecutionResult,
        attempt: Callable[[], Awaitable[Any]],
        is_cancelled: Callable[[], bool],
    ) -> PolicyDecision:
        """Apply the step's policy to ``error``.

        Args:
            error: The failure of the first attempt
            result: The step's result record; retries update it in place
            attempt: Re-runs the step once and returns its outcome
            is_cancelled: Whether the owning execution has been cancelled

        Raises:
            StepExecutionError: for stop, and RetryExhausted once retries run out
        """
        policy = self.resolve(step, workflow)

        if policy.strategy == ErrorStrategy.STOP:
            raise error

        if policy.strategy == ErrorStrategy.CONTINUE:
            logger.warning("Step failed, continuing", step_id=step.id, error=str(error))
            return PolicyDecision(Resolution.CONTINUE)

        if policy.strategy == ErrorStrategy.FALLBACK:
            if policy.fallback_step:
                logger.warning(
                    "Step failed, running fallback",
                    step_id=step.id,
                    fallback_step=policy.fallback_step,
                    error=str(error),
                )
                return PolicyDecision(Resolution.FALLBACK, fallback_step=policy.fallback_step)
            logger.warning("Step failed, no fallback configured; continuing", step_id=step.id)
            return PolicyDecision(Resolution.CONTINUE)

        return await self._retry(error, step, result, attempt, is_cancelled, self.retry_strategy(policy))

    async def _retry(
        self,
        error: StepExecutionError,
        step: WorkflowStep,
        result: StepExecutionResult,
        attempt: Callable[[], Awaitable[Any]],
        is_cancelled: Callable[[], bool],
        strategy: RetryStrategy,
    ) -> PolicyDecision:
        last_error: Exception = error
        for retry in range(1, strategy.max_retries + 1):
            if is_cancelled():
                logger.info("Execution cancelled, abandoning retries", step_id=step.id, retry=retry)
                raise last_error

            delay = strategy.compute_delay(retry)
            logger.info(
                "Retrying step",
                step_id=step.id,
                retry=retry,
                max_retries=strategy.max_retries,
                delay=delay,
            )
            await self._sleep(delay)
            result.retries = retry
            try:
                outcome = await attempt()
            except ExecutionCancelled:
                raise
            except Exception as e:
                last_error = e
                result.attempt_errors.append(str(e))
                result.error = str(e)
                continue
            logger.info("Step recovered after retry", step_id=step.id, retry=retry)
            return PolicyDecision(Resolution.RECOVERED, outcome=outcome)

        raise RetryExhausted(step.id, strategy.max_retries + 1, last_error) from last_error
