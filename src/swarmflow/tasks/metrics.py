"""Rolling execution counters owned by an executor call site."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class ExecutionMetrics:
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    average_response_time: float = 0.0
    last_execution_time: Optional[datetime] = None

    def record(self, success: bool, duration: float) -> None:
        """Fold one outcome in; ``duration`` is in milliseconds."""

        self.total_tasks += 1
        if success:
            self.successful_tasks += 1
        else:
            self.failed_tasks += 1
        n = self.total_tasks
        self.average_response_time = (self.average_response_time * (n - 1) + duration) / n
        self.last_execution_time = datetime.now(timezone.utc)

    def merge(self, other: "ExecutionMetrics") -> "ExecutionMetrics":
        """Combine two independently collected counters into a new value."""

        total = self.total_tasks + other.total_tasks
        average = 0.0
        if total:
            average = (
                self.average_response_time * self.total_tasks
                + other.average_response_time * other.total_tasks
            ) / total
        stamps = [t for t in (self.last_execution_time, other.last_execution_time) if t is not None]
        return ExecutionMetrics(
            total_tasks=total,
            successful_tasks=self.successful_tasks + other.successful_tasks,
            failed_tasks=self.failed_tasks + other.failed_tasks,
            average_response_time=average,
            last_execution_time=max(stamps) if stamps else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.last_execution_time is not None:
            data["last_execution_time"] = self.last_execution_time.isoformat()
        return data
