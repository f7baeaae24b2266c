"""
Scheduler Service for the autoscaler's triggers.

Responsibilities:
- Run the rule cycle on a fixed interval
- Fire each schedule entry on its own cron trigger
- Keep at most one run of each job in flight
- Provide task status and history
"""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from functools import partial
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from vertiscale.services.autoscaler import AutoscalerService
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)

RULE_CYCLE_TASK_ID = "rule_cycle"


class TaskStatus(str, Enum):
    """Status of a scheduled task."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    MISSED = "missed"


class TriggerKind(str, Enum):
    """How a task is triggered."""

    INTERVAL = "interval"
    CRON = "cron"


@dataclass
class TaskExecution:
    """Record of a task execution."""

    task_id: str
    started_at: datetime
    completed_at: datetime | None = None
    status: TaskStatus = TaskStatus.RUNNING
    error: str | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def finish(self, status: TaskStatus, error: str | None = None) -> None:
        self.status = status
        self.completed_at = datetime.now(UTC)
        self.error = error

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "status": self.status.value,
            "duration_seconds": self.duration_seconds,
            "error": self.error,
        }


@dataclass
class ScheduledTask:
    """Definition of a scheduled task."""

    task_id: str
    name: str
    func: Callable[[], Any]
    trigger_type: TriggerKind
    trigger_args: dict[str, Any]
    run_immediately: bool = False
    misfire_grace_time: int = 60

    # Runtime stats
    last_run: datetime | None = None
    last_status: TaskStatus | None = None
    run_count: int = 0
    error_count: int = 0


class SchedulerService:
    """
    Runs registered tasks on APScheduler's asyncio scheduler.

    Jobs coalesce and never overlap with themselves. Runs of different jobs
    may overlap; the orchestrator lock arbitrates between them.
    """

    def __init__(
        self,
        timezone: str = "UTC",
        max_execution_history: int = 500,
        stop_timeout_seconds: float = 300.0,
    ) -> None:
        """
        Initialize scheduler service.

        Args:
            timezone: Timezone for cron expressions
            max_execution_history: Maximum execution records to keep
            stop_timeout_seconds: How long stop() waits for running jobs
        """
        self._timezone = timezone
        self._max_history = max_execution_history
        self._stop_timeout = stop_timeout_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self._tasks: dict[str, ScheduledTask] = {}
        self._executions: list[TaskExecution] = []
        self._in_flight: set[asyncio.Task] = set()
        self._running = False

        logger.info("Scheduler service initialized", timezone=timezone)

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        scheduler = AsyncIOScheduler(
            timezone=self._timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": 60,
            },
        )

        scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        return scheduler

    def _create_trigger(self, task: ScheduledTask) -> IntervalTrigger | CronTrigger:
        if task.trigger_type == TriggerKind.INTERVAL:
            return IntervalTrigger(timezone=self._timezone, **task.trigger_args)
        return CronTrigger.from_crontab(task.trigger_args["expr"], timezone=self._timezone)

    def _running_execution(self, task_id: str) -> TaskExecution | None:
        for execution in reversed(self._executions):
            if execution.task_id == task_id and execution.status == TaskStatus.RUNNING:
                return execution
        return None

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        """Handle successful job execution."""
        task = self._tasks.get(event.job_id)
        if task:
            task.last_run = datetime.now(UTC)
            task.last_status = TaskStatus.COMPLETED
            task.run_count += 1

        execution = self._running_execution(event.job_id)
        if execution:
            execution.finish(TaskStatus.COMPLETED)

        logger.debug("Job executed successfully", job_id=event.job_id)

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        """Handle job execution error."""
        task = self._tasks.get(event.job_id)
        if task:
            task.last_run = datetime.now(UTC)
            task.last_status = TaskStatus.FAILED
            task.run_count += 1
            task.error_count += 1

        execution = self._running_execution(event.job_id)
        if execution:
            execution.finish(TaskStatus.FAILED, error=str(event.exception))

        logger.error(
            "Job execution failed",
            job_id=event.job_id,
            error=str(event.exception),
            exc_info=event.exception,
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        """Handle missed job execution."""
        task = self._tasks.get(event.job_id)
        if task:
            task.last_status = TaskStatus.MISSED

        execution = TaskExecution(task_id=event.job_id, started_at=datetime.now(UTC))
        execution.finish(TaskStatus.MISSED)
        self._executions.append(execution)
        self._trim_history()

        logger.warning("Job execution missed", job_id=event.job_id)

    def _trim_history(self) -> None:
        """Trim execution history to max size."""
        if len(self._executions) > self._max_history:
            self._executions = self._executions[-self._max_history:]

    def register_task(self, task: ScheduledTask) -> None:
        """
        Register a scheduled task.

        Tasks registered after start() are added to the running scheduler.
        """
        self._tasks[task.task_id] = task
        if self._scheduler:
            self._add_job(task)
        logger.info(
            "Task registered",
            task_id=task.task_id,
            name=task.name,
            trigger=task.trigger_type.value,
            **task.trigger_args,
        )

    async def _invoke(self, task_id: str, func: Callable[[], Any]) -> Any:
        execution = TaskExecution(task_id=task_id, started_at=datetime.now(UTC))
        self._executions.append(execution)
        self._trim_history()

        current = asyncio.current_task()
        if current is not None:
            self._in_flight.add(current)
        try:
            result = func()
            if inspect.isawaitable(result):
                return await result
            return result
        finally:
            if current is not None:
                self._in_flight.discard(current)

    def _add_job(self, task: ScheduledTask) -> None:
        kwargs: dict[str, Any] = {}
        if task.run_immediately:
            kwargs["next_run_time"] = datetime.now(UTC)

        self._scheduler.add_job(
            partial(self._invoke, task.task_id, task.func),
            self._create_trigger(task),
            id=task.task_id,
            name=task.name,
            misfire_grace_time=task.misfire_grace_time,
            **kwargs,
        )

    async def start(self) -> None:
        """Start the scheduler service."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._scheduler = self._create_scheduler()
        for task in self._tasks.values():
            self._add_job(task)

        self._scheduler.start()
        self._running = True

        logger.info("Scheduler service started", task_count=len(self._tasks))

    async def stop(self) -> None:
        """
        Stop the scheduler service.

        No new runs start once this is called. Runs already in flight get up
        to `stop_timeout_seconds` to finish and are cancelled after that.
        """
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.pause()
            pending = {t for t in self._in_flight if not t.done()}
            if pending:
                logger.info(
                    "Waiting for running jobs to finish",
                    jobs=len(pending),
                    timeout_seconds=self._stop_timeout,
                )
                _, still_running = await asyncio.wait(pending, timeout=self._stop_timeout)
                if still_running:
                    logger.warning("Cancelling jobs still running", jobs=len(still_running))
                    for task in still_running:
                        task.cancel()
                    await asyncio.gather(*still_running, return_exceptions=True)
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("Scheduler service stopped")

    async def run_task_now(self, task_id: str) -> Any:
        """
        Run a task immediately (outside of schedule).

        Args:
            task_id: ID of task to run

        Returns:
            Task result
        """
        if task_id not in self._tasks:
            raise ValueError(f"Unknown task: {task_id}")

        task = self._tasks[task_id]
        task.last_run = datetime.now(UTC)
        task.run_count += 1
        try:
            result = await self._invoke(task_id, task.func)
        except Exception as e:
            task.last_status = TaskStatus.FAILED
            task.error_count += 1
            execution = self._running_execution(task_id)
            if execution:
                execution.finish(TaskStatus.FAILED, error=str(e))
            raise

        task.last_status = TaskStatus.COMPLETED
        execution = self._running_execution(task_id)
        if execution:
            execution.finish(TaskStatus.COMPLETED)
        return result

    def get_task(self, task_id: str) -> ScheduledTask | None:
        """Get a task by ID."""
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> list[ScheduledTask]:
        """Get all registered tasks."""
        return list(self._tasks.values())

    def get_task_executions(
        self,
        task_id: str | None = None,
        limit: int = 100,
    ) -> list[TaskExecution]:
        """Get task execution history."""
        executions = self._executions
        if task_id:
            executions = [e for e in executions if e.task_id == task_id]
        return list(reversed(executions[-limit:]))

    def get_next_run_time(self, task_id: str) -> datetime | None:
        """Get next scheduled run time for a task."""
        if self._scheduler:
            job = self._scheduler.get_job(task_id)
            if job:
                return job.next_run_time
        return None

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        total_runs = sum(t.run_count for t in self._tasks.values())
        total_errors = sum(t.error_count for t in self._tasks.values())

        return {
            "running": self._running,
            "total_tasks": len(self._tasks),
            "total_executions": total_runs,
            "total_errors": total_errors,
            "error_rate": total_errors / total_runs if total_runs > 0 else 0,
            "in_flight": len(self._in_flight),
            "execution_history_size": len(self._executions),
        }

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running


def create_autoscaler_scheduler(
    autoscaler: AutoscalerService,
    interval_seconds: float = 60.0,
    timezone: str = "UTC",
    stop_timeout_seconds: float = 300.0,
) -> SchedulerService:
    """
    Create a scheduler with the rule cycle and every schedule entry.

    The rule cycle runs once immediately, then every `interval_seconds`.

    Args:
        autoscaler: Service whose rules and schedule are run
        interval_seconds: Rule cycle interval
        timezone: Timezone for cron expressions
        stop_timeout_seconds: How long stop() waits for running jobs

    Returns:
        Configured SchedulerService
    """
    scheduler = SchedulerService(timezone=timezone, stop_timeout_seconds=stop_timeout_seconds)

    scheduler.register_task(
        ScheduledTask(
            task_id=RULE_CYCLE_TASK_ID,
            name="Rule Cycle",
            func=autoscaler.run_rule_cycle,
            trigger_type=TriggerKind.INTERVAL,
            trigger_args={"seconds": interval_seconds},
            run_immediately=True,
        )
    )

    for index, entry in enumerate(autoscaler.schedule):
        scheduler.register_task(
            ScheduledTask(
                task_id=f"schedule_{index}",
                name=f"Schedule {entry.cron} ({entry.action:+d})",
                func=partial(autoscaler.run_schedule, entry),
                trigger_type=TriggerKind.CRON,
                trigger_args={"expr": entry.cron},
            )
        )

    return scheduler
