"""Fixed-group execution strategies: sequential, parallel, hierarchical, mesh."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from ..errors import AgentExecutionError, ErrorKind, SwarmflowError
from ..tasks.base import Task, TaskResult, TaskStatus, UsageMetrics
from ..tasks.metrics import ExecutionMetrics
from ..tasks.runner import TaskRunner, render_output
from .base import Agent

logger = logging.getLogger(__name__)

DEFAULT_MESH_ROUNDS = 5


@dataclass(frozen=True)
class AgentFailure:
    """Stands in for an agent that failed during a fan-out."""

    agent: str
    error: str
    kind: ErrorKind = ErrorKind.INTERNAL


Outcome = Union[TaskResult, AgentFailure]


class TaskCancelled(SwarmflowError):
    pass


@dataclass
class _Invocation:
    task: Task
    usage: UsageMetrics = field(default_factory=UsageMetrics)
    converged: Optional[bool] = None


Strategy = Callable[[_Invocation], Awaitable[Any]]


class TopologyExecutor:
    """Runs one task across a fixed agent group using a named topology.

    Each agent call is a sub-task spawned from the caller's task and executed
    through a :class:`TaskRunner`. ``execute`` never raises for agent
    failures; it returns a FAILED :class:`TaskResult` instead and records the
    outcome in :attr:`metrics`.
    """

    def __init__(
        self,
        agents: Sequence[Agent],
        *,
        runner: Optional[TaskRunner] = None,
        metrics: Optional[ExecutionMetrics] = None,
        max_concurrency: int = DEFAULT_MESH_ROUNDS,
        coordinator_only: bool = False,
    ) -> None:
        self.agents = list(agents)
        self.runner = runner or TaskRunner()
        self.metrics = metrics or ExecutionMetrics()
        self.max_concurrency = max_concurrency
        self.coordinator_only = coordinator_only
        self._strategies: Dict[str, Strategy] = {
            "sequential": self._sequential,
            "parallel": self._parallel,
            "hierarchical": self._hierarchical,
            "mesh": self._mesh,
        }

    @property
    def topologies(self) -> List[str]:
        return list(self._strategies)

    async def execute(self, topology: str, task: Task) -> TaskResult:
        started = datetime.now(timezone.utc)
        strategy = self._strategies.get(topology.strip().lower())
        invocation = _Invocation(task=task)
        if strategy is None:
            result = TaskResult.failure(
                task.id, f"Unsupported topology: {topology}", ErrorKind.TOPOLOGY_UNSUPPORTED, started_at=started
            )
        else:
            try:
                output = await strategy(invocation)
                self._check_cancelled(invocation)
            except TaskCancelled:
                result = TaskResult(task_id=task.id, status=TaskStatus.CANCELLED, started_at=started)
            except SwarmflowError as exc:
                result = TaskResult.failure(task.id, str(exc), exc.kind, started_at=started)
            else:
                result = TaskResult(
                    task_id=task.id,
                    status=TaskStatus.COMPLETED,
                    output=output,
                    started_at=started,
                    converged=invocation.converged,
                )
            result.usage = invocation.usage
        result.completed_at = datetime.now(timezone.utc)
        self.metrics.record(result.succeeded, result.duration)
        logger.debug("%s topology finished task %s with %s", topology, task.id, result.status.value)
        return result

    async def _sequential(self, run: _Invocation) -> Any:
        current: Any = run.task.prompt
        for agent in self.agents:
            result = await self._invoke(run, agent, render_output(current), run.task.metadata)
            current = result.output
        return current

    async def _parallel(self, run: _Invocation) -> List[Any]:
        outcomes = await self._fan_out(run, self.agents, run.task.prompt, run.task.metadata)
        return [item.output for item in outcomes if isinstance(item, TaskResult)]

    async def _hierarchical(self, run: _Invocation) -> Any:
        if not self.agents:
            raise SwarmflowError("No coordinator agent available", kind=ErrorKind.VALIDATION)
        coordinator, *workers = self.agents
        metadata = run.task.metadata
        plan = await self._invoke(
            run, coordinator, run.task.prompt, {**metadata, "role": "coordinator", "workers": len(workers)}
        )
        if self.coordinator_only or metadata.get("coordinatorOnly"):
            return plan.output
        outcomes = await self._fan_out(run, workers, json.dumps(plan.output, default=str), metadata)
        worker_outputs = [item.output for item in outcomes if isinstance(item, TaskResult)]
        aggregate = await self._invoke(
            run, coordinator, json.dumps(worker_outputs, default=str), {**metadata, "role": "aggregator"}
        )
        return aggregate.output

    async def _mesh(self, run: _Invocation) -> str:
        rounds = self._mesh_rounds(run.task)
        state = run.task.prompt
        for iteration in range(rounds):
            metadata = {**run.task.metadata, "iteration": iteration, "states": state}
            outcomes = await self._fan_out(run, self.agents, state, metadata)
            results = [item for item in outcomes if isinstance(item, TaskResult)]
            state = json.dumps([item.output for item in results], default=str)
            run.converged = all(item.converged for item in results)
            if run.converged:
                logger.debug("Mesh converged after %d round(s)", iteration + 1)
                break
        return state

    def _mesh_rounds(self, task: Task) -> int:
        value = task.metadata.get("maxConcurrency")
        try:
            rounds = int(value) if value else self.max_concurrency
        except (TypeError, ValueError):
            rounds = self.max_concurrency
        return max(1, rounds)

    async def _fan_out(
        self, run: _Invocation, agents: Sequence[Agent], prompt: str, metadata: Dict[str, Any]
    ) -> List[Outcome]:
        async def attempt(agent: Agent) -> Outcome:
            try:
                return await self._invoke(run, agent, prompt, metadata)
            except AgentExecutionError as exc:
                logger.warning("%s", exc)
                return AgentFailure(agent=agent.name, error=str(exc), kind=exc.kind)

        outcomes = list(await asyncio.gather(*(attempt(agent) for agent in agents)))
        self._check_cancelled(run)
        return outcomes

    @staticmethod
    def _check_cancelled(run: _Invocation) -> None:
        if run.task.status is TaskStatus.CANCELLED:
            raise TaskCancelled(f"Task {run.task.id} was cancelled")

    async def _invoke(self, run: _Invocation, agent: Agent, prompt: str, metadata: Dict[str, Any]) -> TaskResult:
        self._check_cancelled(run)
        sub_task = run.task.spawn(description=run.task.description, prompt=prompt, metadata=metadata)
        result = await self.runner.run(sub_task, agent)
        if result.usage is not None:
            run.usage.add(result.usage)
        if result.status is TaskStatus.CANCELLED:
            raise TaskCancelled(f"Sub-task {sub_task.id} was cancelled")
        if not result.succeeded:
            raise AgentExecutionError(agent.name, result.error or "Task failed", kind=result.error_kind)
        return result

