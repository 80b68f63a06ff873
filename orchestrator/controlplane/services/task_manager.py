"""
Background Task Manager
Runs deployment pipelines off the request path with a bounded concurrency.
"""
import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from enum import Enum
from dataclasses import dataclass

from ..config import get_settings

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """Task execution statuses"""
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class Task:
    """Represents a background pipeline run"""
    id: str
    deployment_id: int
    status: TaskStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status in (TaskStatus.QUEUED, TaskStatus.RUNNING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PipelineTaskManager:
    """
    Manages background pipeline tasks with status tracking.

    At most `max_concurrency` runs execute at once; the rest wait on the
    semaphore in QUEUED state.
    """

    def __init__(self, max_concurrency: Optional[int] = None, retention_hours: Optional[int] = None):
        settings = get_settings()
        limit = max_concurrency or settings.pipeline_max_concurrency
        if retention_hours is None:
            retention_hours = settings.pipeline_task_retention_hours
        self.retention_hours = retention_hours
        self._semaphore = asyncio.Semaphore(limit)
        self._tasks: Dict[str, Task] = {}
        self._background_tasks: Dict[str, asyncio.Task] = {}

    def get_task(self, task_id: str) -> Optional[Task]:
        """Get a task by ID"""
        return self._tasks.get(task_id)

    def get_deployment_tasks(self, deployment_id: int, active_only: bool = False) -> List[Task]:
        """Get all tasks for a deployment"""
        tasks = [t for t in self._tasks.values() if t.deployment_id == deployment_id]
        if active_only:
            tasks = [t for t in tasks if t.is_active]
        return sorted(tasks, key=lambda t: t.created_at, reverse=True)

    def cleanup_old_tasks(self, max_age_hours: Optional[int] = None) -> int:
        """Drop finished tasks that completed more than `max_age_hours` ago."""
        if max_age_hours is None:
            max_age_hours = self.retention_hours
        cutoff_time = _utcnow() - timedelta(hours=max_age_hours)

        tasks_to_remove = [
            task_id for task_id, task in self._tasks.items()
            if not task.is_active and task.completed_at and task.completed_at < cutoff_time
        ]
        for task_id in tasks_to_remove:
            del self._tasks[task_id]

        if tasks_to_remove:
            logger.debug(f"[TASK-MANAGER] Cleaned up {len(tasks_to_remove)} finished task(s)")
        return len(tasks_to_remove)

    async def _run_task(
        self,
        task: Task,
        coro: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ):
        async with self._semaphore:
            task.status = TaskStatus.RUNNING
            task.started_at = _utcnow()
            try:
                task.result = await coro(*args, **kwargs)
                task.status = TaskStatus.COMPLETED
                return task.result
            except asyncio.CancelledError:
                task.status = TaskStatus.CANCELLED
                raise
            except Exception as e:
                task.status = TaskStatus.FAILED
                task.error = str(e)
                logger.error(f"[TASK-MANAGER] Task {task.id} failed: {e}", exc_info=True)
            finally:
                task.completed_at = _utcnow()

    def start_background_task(
        self,
        deployment_id: int,
        coro: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Task:
        """Start a task in the background and return immediately"""
        self.cleanup_old_tasks()

        task = Task(
            id=str(uuid.uuid4()),
            deployment_id=deployment_id,
            status=TaskStatus.QUEUED,
            created_at=_utcnow(),
        )
        self._tasks[task.id] = task

        async_task = asyncio.create_task(self._run_task(task, coro, *args, **kwargs))
        self._background_tasks[task.id] = async_task
        async_task.add_done_callback(lambda _: self._background_tasks.pop(task.id, None))

        logger.info(f"[TASK-MANAGER] Queued {coro.__name__} for deployment {deployment_id} (task {task.id})")
        return task

    async def wait_all(self) -> None:
        """Wait for every running task to finish."""
        pending = list(self._background_tasks.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel all running tasks."""
        pending = list(self._background_tasks.values())
        for async_task in pending:
            async_task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.info(f"[TASK-MANAGER] Cancelled {len(pending)} running task(s)")


# Global task manager instance
_task_manager: Optional[PipelineTaskManager] = None


def get_task_manager() -> PipelineTaskManager:
    """Get the global task manager instance"""
    global _task_manager
    if _task_manager is None:
        _task_manager = PipelineTaskManager()
    return _task_manager
