"""Scheduler: recurring timers for schedule-type triggers.

Each enabled schedule trigger (``{"cron": "...", "workflowId": "..."}``)
gets one asyncio task that sleeps a fixed interval and then invokes its
workflow with empty input. The interval is computed once from the cron
expression with croniter; only expressions whose fire times are evenly
spaced (every N minutes, hourly, daily, weekly ...) reduce to a fixed
interval. Anything else is rejected with UnsupportedSchedule and the
trigger is skipped.

Timers live in process memory only. They are rebuilt from the registry
on the next ``start()``.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

import structlog
from croniter import croniter

from core.constants import TriggerType
from core.exceptions import UnsupportedSchedule, WorkflowError
from workflow.models import TriggerConfig
from workflow.registry import WorkflowRegistry

if TYPE_CHECKING:
    from workflow.engine import ExecutionEngine

logger = structlog.get_logger(__name__)

# Fixed reference point so the computed interval does not depend on "now".
_CRON_BASE = datetime(2024, 1, 1, tzinfo=timezone.utc)
# Fire times are sampled until they span a leap year or the sample cap is hit.
_CRON_WINDOW = timedelta(days=400)
_CRON_MAX_SAMPLES = 2000


def parse_cron_interval(expression: str) -> float:
    """Reduce a cron expression to a fixed interval in seconds.

    Every gap between consecutive fire times over the sampled window
    must be identical, so steps that do not divide their field (e.g.
    "*/7 * * * *", which jumps from :56 to :00) are rejected.

    Raises:
        UnsupportedSchedule: invalid expression, or fire times that are
            not evenly spaced (e.g. "0 9,17 * * *")
    """
    try:
        schedule = croniter(expression, _CRON_BASE)
        first = previous = schedule.get_next(datetime)
        interval = None
        for _ in range(_CRON_MAX_SAMPLES):
            current = schedule.get_next(datetime)
            gap = (current - previous).total_seconds()
            if interval is None:
                interval = gap
            elif gap != interval:
                raise UnsupportedSchedule(
                    f"Cron expression '{expression}' does not fire at a fixed interval"
                )
            if current - first >= _CRON_WINDOW:
                break
            previous = current
    except (ValueError, KeyError) as e:
        raise UnsupportedSchedule(f"Invalid cron expression '{expression}': {e}") from e
    return interval


@dataclass
class ScheduledJob:
    trigger_id: str
    workflow_id: str
    cron: str
    interval: float
    task: Optional[asyncio.Task] = None
    fired: int = 0

    def to_dict(self) -> dict:
        return {
            "triggerId": self.trigger_id,
            "workflowId": self.workflow_id,
            "cron": self.cron,
            "intervalSeconds": self.interval,
            "fired": self.fired,
            "running": self.task is not None and not self.task.done(),
        }


class Scheduler:
    """Owns one recurring timer per enabled schedule trigger."""

    def __init__(
        self,
        engine: "ExecutionEngine",
        registry: WorkflowRegistry,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._engine = engine
        self._registry = registry
        self._sleep = sleep
        self._jobs: dict[str, ScheduledJob] = {}

    @property
    def running(self) -> bool:
        return bool(self._jobs)

    def start(self) -> int:
        """Start timers for every enabled schedule trigger.

        Must be called from a running event loop. Returns the number of
        timers started.
        """
        if self._jobs:
            logger.warning("Scheduler already started", jobs=len(self._jobs))
            return len(self._jobs)

        for trigger in self._registry.triggers(TriggerType.SCHEDULE, enabled_only=True):
            job = self._build_job(trigger)
            if job is None:
                continue
            job.task = asyncio.create_task(self._run_job(job), name=f"schedule-{trigger.id}")
            self._jobs[trigger.id] = job
            logger.info(
                "Schedule started",
                trigger_id=trigger.id,
                workflow_id=job.workflow_id,
                cron=job.cron,
                interval=job.interval,
            )

        logger.info("Scheduler started", jobs=len(self._jobs))
        return len(self._jobs)

    async def stop(self) -> None:
        """Cancel every timer and wait for them to unwind."""
        jobs = list(self._jobs.values())
        self._jobs.clear()
        tasks = [job.task for job in jobs if job.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if jobs:
            logger.info("Scheduler stopped", jobs=len(jobs))

    def jobs(self) -> list[dict]:
        return [job.to_dict() for job in self._jobs.values()]

    def _build_job(self, trigger: TriggerConfig) -> Optional[ScheduledJob]:
        cron = trigger.config.get("cron")
        workflow_id = trigger.config.get("workflowId")
        if not cron or not workflow_id:
            logger.warning(
                "Schedule trigger needs both cron and workflowId; skipping",
                trigger_id=trigger.id,
            )
            return None
        try:
            interval = parse_cron_interval(cron)
        except UnsupportedSchedule as e:
            logger.warning("Unsupported schedule; skipping", trigger_id=trigger.id, error=str(e))
            return None
        return ScheduledJob(trigger.id, workflow_id, cron, interval)

    async def _run_job(self, job: ScheduledJob) -> None:
        while True:
            await self._sleep(job.interval)
            try:
                execution_id = await self._engine.invoke(job.workflow_id, {})
            except WorkflowError as e:
                logger.error(
                    "Scheduled invocation failed",
                    trigger_id=job.trigger_id,
                    workflow_id=job.workflow_id,
                    error=str(e),
                )
                continue
            job.fired += 1
            logger.info(
                "Schedule fired",
                trigger_id=job.trigger_id,
                workflow_id=job.workflow_id,
                execution_id=execution_id,
            )
