"""Task primitives."""

from .base import RetryPolicy, Task, TaskInput, TaskResult, TaskStatus, UsageMetrics
from .metrics import ExecutionMetrics
from .runner import TaskRunner

__all__ = [
    "RetryPolicy",
    "Task",
    "TaskInput",
    "TaskResult",
    "TaskStatus",
    "UsageMetrics",
    "ExecutionMetrics",
    "TaskRunner",
]
