"""Background scheduler - periodic consolidation, snapshots and cache sweeps."""

import asyncio
import contextlib
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from strata.core.logging import get_logger

logger = get_logger("core.scheduler")


class TaskPriority(Enum):
    LOW = 1
    NORMAL = 2
    HIGH = 3


@dataclass
class ScheduledTask:
    """A maintenance callback and its run bookkeeping."""

    id: str
    name: str
    callback: Callable
    interval: timedelta | None = None  # None = one-shot
    priority: TaskPriority = TaskPriority.NORMAL
    timeout: float | None = None
    next_run: datetime = field(default_factory=datetime.now)
    last_run: datetime | None = None
    enabled: bool = True
    running: bool = False
    runs: int = 0
    failures: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "interval_seconds": self.interval.total_seconds() if self.interval else None,
            "priority": self.priority.name.lower(),
            "next_run": self.next_run.isoformat(),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "runs": self.runs,
            "failures": self.failures,
            "last_error": self.last_error,
        }


class Scheduler:
    """Runs engine maintenance callbacks on fixed intervals.

    Due tasks run one at a time, highest priority first. A failing or
    timed-out task is logged, counted and kept on its interval.
    """

    def __init__(self, tick: float = 1.0):
        self._tasks: dict[str, ScheduledTask] = {}
        self._running = False
        self._loop_task: asyncio.Task | None = None
        self._tick = tick

    @property
    def running(self) -> bool:
        return self._running

    def schedule_task(
        self,
        task_id: str,
        name: str,
        callback: Callable,
        interval: timedelta | None = None,
        priority: TaskPriority = TaskPriority.NORMAL,
        delay: timedelta | None = None,
        timeout: float | None = None,
    ) -> ScheduledTask:
        """Register (or replace) a task. ``delay`` postpones the first run."""
        task = ScheduledTask(
            id=task_id,
            name=name,
            callback=callback,
            interval=interval,
            priority=priority,
            timeout=timeout,
            next_run=datetime.now() + (delay or timedelta()),
        )
        self._tasks[task_id] = task
        logger.info(f"Scheduled task: {name} (interval: {interval})")
        return task

    def cancel_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None

    def get_task(self, task_id: str) -> ScheduledTask | None:
        return self._tasks.get(task_id)

    def status(self) -> list[dict[str, Any]]:
        return [task.to_dict() for task in self._tasks.values()]

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._loop())
        logger.info(f"Scheduler started with {len(self._tasks)} tasks")

    async def stop(self) -> None:
        """Cancel the loop; a task in progress is interrupted."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        logger.info("Scheduler stopped")

    async def run_pending(self, now: datetime | None = None) -> int:
        """Run every due task once. Returns the number of tasks run."""
        now = now or datetime.now()
        due = sorted(
            (t for t in self._tasks.values() if t.enabled and not t.running and t.next_run <= now),
            key=lambda t: t.priority.value,
            reverse=True,
        )
        for task in due:
            await self._run_task(task)
        return len(due)

    async def _run_task(self, task: ScheduledTask) -> None:
        task.running = True
        try:
            result = task.callback()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, task.timeout)
            task.last_error = None
        except asyncio.TimeoutError:
            task.failures += 1
            task.last_error = f"timed out after {task.timeout}s"
            logger.error(f"Task {task.name} timed out after {task.timeout}s")
        except Exception as e:
            task.failures += 1
            task.last_error = str(e)
            logger.error(f"Task {task.name} failed: {e}")
        finally:
            task.running = False
            task.runs += 1
            task.last_run = datetime.now()

            if task.interval:
                task.next_run = task.last_run + task.interval
            else:
                self._tasks.pop(task.id, None)

    async def _loop(self) -> None:
        while self._running:
            await self.run_pending()
            await asyncio.sleep(self._tick)
