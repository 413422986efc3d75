"""Task dataclasses used by the executors."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import ErrorKind, TaskStateError

if TYPE_CHECKING:
    from ..agents.base import Agent


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration handed to agents alongside a task."""

    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    initial_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-based)."""

        if attempt < 1:
            raise ValueError("attempt is 1-based")
        return min(self.max_delay, self.initial_delay * self.backoff_multiplier ** (attempt - 1))

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "RetryPolicy":
        if not data:
            return cls()
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            backoff_multiplier=float(data.get("backoff_multiplier", 2.0)),
            initial_delay=float(data.get("initial_delay", 1.0)),
            max_delay=float(data.get("max_delay", 30.0)),
        )


@dataclass
class TaskInput:
    prompt: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    images: List[str] = field(default_factory=list)


@dataclass
class UsageMetrics:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0

    def add(self, other: "UsageMetrics") -> None:
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.cost += other.cost


@dataclass
class TaskResult:
    """Result of executing a task."""

    task_id: str
    status: TaskStatus
    output: Any = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    started_at: datetime = field(default_factory=_now)
    completed_at: datetime = field(default_factory=_now)
    usage: Optional[UsageMetrics] = None
    converged: Optional[bool] = None

    @property
    def duration(self) -> float:
        """Elapsed milliseconds."""
        return (self.completed_at - self.started_at).total_seconds() * 1000.0

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    @classmethod
    def failure(
        cls,
        task_id: str,
        error: str,
        kind: ErrorKind = ErrorKind.INTERNAL,
        *,
        started_at: Optional[datetime] = None,
    ) -> "TaskResult":
        return cls(
            task_id=task_id,
            status=TaskStatus.FAILED,
            output=None,
            error=error,
            error_kind=kind,
            started_at=started_at or _now(),
        )

    def as_failure(self, error: Optional[str] = None, kind: Optional[ErrorKind] = None) -> "TaskResult":
        """Copy of this result re-labelled as FAILED."""

        return replace(
            self,
            status=TaskStatus.FAILED,
            output=None,
            error=error or self.error or "Task failed",
            error_kind=kind or self.error_kind or ErrorKind.INTERNAL,
        )


@dataclass
class Task:
    """A single unit of work for an agent."""

    name: str
    input: TaskInput
    description: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    timeout: Optional[float] = None
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    executor: Optional["Agent"] = field(default=None, repr=False)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> "Task":
        metadata = kwargs.pop("metadata", None) or {}
        images = kwargs.pop("images", None) or []
        kwargs.setdefault("name", prompt[:80] or "task")
        return cls(input=TaskInput(prompt=prompt, metadata=dict(metadata), images=list(images)), **kwargs)

    @property
    def prompt(self) -> str:
        return self.input.prompt

    @property
    def metadata(self) -> Dict[str, Any]:
        return self.input.metadata

    def set_executor(self, agent: "Agent") -> None:
        if self.executor is not None:
            raise TaskStateError(f"Task {self.id} already bound to an executor")
        if self.status.terminal:
            raise TaskStateError(f"Task {self.id} is {self.status.value}")
        self.executor = agent
        self._touch()

    def start(self) -> None:
        if self.executor is None:
            raise TaskStateError(f"Task {self.id} has no executor bound")
        self._transition(TaskStatus.RUNNING)

    def finish(self, result: TaskResult) -> None:
        if self.status is TaskStatus.CANCELLED:
            return
        self._transition(result.status)

    def cancel(self) -> None:
        """Mark the task cancelled; in-flight calls are not interrupted."""

        self._transition(TaskStatus.CANCELLED)

    def spawn(self, *, description: Optional[str] = None, prompt: Optional[str] = None,
              metadata: Optional[Dict[str, Any]] = None) -> "Task":
        """New unbound task reusing this task's input, timeout and retry policy."""

        merged = dict(self.input.metadata)
        if metadata:
            merged.update(metadata)
        return Task(
            name=description or self.name,
            description=description if description is not None else self.description,
            input=TaskInput(
                prompt=prompt if prompt is not None else self.input.prompt,
                metadata=merged,
                images=list(self.input.images),
            ),
            timeout=self.timeout,
            retry_policy=self.retry_policy,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "input": {
                "prompt": self.input.prompt,
                "metadata": dict(self.input.metadata),
                "images": list(self.input.images),
            },
            "timeout": self.timeout,
            "executor": getattr(self.executor, "name", None),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def _transition(self, target: TaskStatus) -> None:
        if self.status.terminal:
            raise TaskStateError(f"Task {self.id} is already {self.status.value}")
        if target is TaskStatus.PENDING:
            raise TaskStateError("Tasks cannot return to pending")
        self.status = target
        self._touch()

    def _touch(self) -> None:
        self.updated_at = _now()
