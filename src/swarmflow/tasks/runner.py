"""Task runner utilities."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..errors import ErrorKind, TaskStateError, classify_error
from ..memory.base import MemoryEntry, MemoryEntryType, MemoryRole
from .base import Task, TaskResult, TaskStatus

if TYPE_CHECKING:
    from ..agents.base import Agent

logger = logging.getLogger(__name__)


def render_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


class TaskRunner:
    """Executes tasks on their bound agent and always returns a TaskResult.

    The runner enforces ``task.timeout``, turns exceptions into FAILED results,
    honours cooperative cancellation and records each outcome in the agent's
    memory manager.
    """

    def __init__(self, *, remember: bool = True) -> None:
        self._remember_results = remember
        self._results: Dict[str, TaskResult] = {}

    async def run(self, task: Task, agent: Optional["Agent"] = None) -> TaskResult:
        if task.status is TaskStatus.CANCELLED:
            return self._store(task, self._cancelled(task, datetime.now(timezone.utc)))
        if agent is not None:
            task.set_executor(agent)
        executor = task.executor
        if executor is None:
            raise TaskStateError(f"Task {task.id} has no executor bound")

        started = datetime.now(timezone.utc)
        task.start()
        try:
            if task.timeout:
                result = await asyncio.wait_for(executor.execute(task), timeout=task.timeout)
            else:
                result = await executor.execute(task)
        except asyncio.TimeoutError:
            result = TaskResult.failure(
                task.id, f"Task timed out after {task.timeout}s", ErrorKind.TIMEOUT, started_at=started
            )
        except Exception as exc:
            logger.debug("Agent %s raised on task %s", getattr(executor, "name", "?"), task.id, exc_info=True)
            result = TaskResult.failure(task.id, str(exc) or type(exc).__name__, classify_error(exc), started_at=started)

        if task.status is TaskStatus.CANCELLED:
            # The call finished after cancellation; its outcome is discarded.
            return self._store(task, self._cancelled(task, started))
        result = self._normalize(task, result, started)
        task.finish(result)
        self._store(task, result)
        if self._remember_results:
            await self._remember(executor, task, result)
        return result

    def results(self) -> Dict[str, TaskResult]:
        return dict(self._results)

    def _store(self, task: Task, result: TaskResult) -> TaskResult:
        self._results[task.id] = result
        return result

    @staticmethod
    def _cancelled(task: Task, started: datetime) -> TaskResult:
        return TaskResult(task_id=task.id, status=TaskStatus.CANCELLED, started_at=started)

    @staticmethod
    def _normalize(task: Task, result: TaskResult, started: datetime) -> TaskResult:
        result.task_id = task.id
        result.started_at = min(result.started_at, started)
        if result.completed_at < result.started_at:
            result.completed_at = datetime.now(timezone.utc)
        if not result.status.terminal or result.status is TaskStatus.CANCELLED:
            return result.as_failure(
                f"Agent returned non-terminal status '{result.status.value}'", ErrorKind.INTERNAL
            )
        if result.status is TaskStatus.FAILED:
            return result.as_failure()
        result.error = None
        result.error_kind = None
        return result

    @staticmethod
    async def _remember(agent: "Agent", task: Task, result: TaskResult) -> None:
        memory = getattr(agent, "memory", None)
        if memory is None or not memory.initialized:
            return
        succeeded = result.status is TaskStatus.COMPLETED
        content = render_output(result.output) if succeeded else (result.error or "Task failed")
        if not content:
            return
        entry = MemoryEntry.create(
            content,
            type=MemoryEntryType.RESULT if succeeded else MemoryEntryType.ERROR,
            role=MemoryRole.ASSISTANT,
            metadata={
                "task_id": task.id,
                "task_name": task.name,
                "status": result.status.value,
                "agent": getattr(agent, "name", None),
            },
            tags=[result.status.value],
        )
        try:
            await memory.add(entry)
        except Exception as exc:
            logger.warning("Could not record result of task %s: %s", task.id, exc)
