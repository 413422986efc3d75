"""Dynamic agent selection: analyze, select, plan, execute, fall back."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ..errors import ErrorKind
from ..llm.provider import PromptContext, generate_with_retry
from ..tasks.base import RetryPolicy, Task, TaskResult, TaskStatus, UsageMetrics
from ..tasks.metrics import ExecutionMetrics
from ..tasks.runner import TaskRunner, render_output
from .base import Agent
from .prompts import (
    AgentActionPlan,
    AgentTaskAnalysis,
    build_analysis_prompt,
    build_plan_prompt,
    parse_analysis,
    parse_plan,
)

logger = logging.getLogger(__name__)

PERFORMANCE_TOKEN_BASELINE = 4096


@dataclass
class AgentSelectionResult:
    agent: Agent
    score: float
    action_plan: Optional[AgentActionPlan] = None


class AgenticExecutor:
    """Lets an orchestrator agent pick and drive the best candidate per task.

    Each loop the orchestrator's model analyses the task, every candidate is
    scored and asked for a plan, and the best eligible candidate runs the plan
    step by step. Failed steps fall back to the plan's fallback actions in
    order. The loop repeats, carrying intermediate results forward, until the
    last recorded result is a completed one or ``max_loops`` is spent.
    """

    def __init__(
        self,
        orchestrator: Agent,
        agents: Sequence[Agent],
        *,
        max_loops: int = 3,
        timeout: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        runner: Optional[TaskRunner] = None,
        metrics: Optional[ExecutionMetrics] = None,
    ) -> None:
        if max_loops < 1:
            raise ValueError("max_loops must be >= 1")
        self.orchestrator = orchestrator
        self.agents = list(agents)
        self.max_loops = max_loops
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.runner = runner or TaskRunner()
        self.metrics = metrics or ExecutionMetrics()
        self._last_results: List[TaskResult] = []

    async def execute(
        self,
        prompt: str,
        images: Optional[Sequence[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TaskResult:
        task = Task.from_prompt(
            prompt,
            description=prompt,
            images=list(images or []),
            metadata=dict(metadata or {}),
            timeout=self.timeout,
            retry_policy=self.retry_policy,
        )
        results: List[TaskResult] = []
        started = datetime.now(timezone.utc)
        try:
            result = await self._run(task, started, results)
        finally:
            self._last_results = results
        result.completed_at = datetime.now(timezone.utc)
        self.metrics.record(result.succeeded, result.duration)
        return result

    @property
    def intermediate_results(self) -> List[TaskResult]:
        """Step and fallback results of the most recently finished run."""
        return list(self._last_results)

    async def _run(self, task: Task, started: datetime, results: List[TaskResult]) -> TaskResult:
        for loop in range(1, self.max_loops + 1):
            selection = await self.select_best_agent_for_task(task, results, loop=loop)
            if selection is None or selection.action_plan is None:
                return TaskResult.failure(
                    task.id, "No suitable agent found", ErrorKind.SELECTION_FAILURE, started_at=started
                )
            agent, plan = selection.agent, selection.action_plan
            logger.info(
                "Loop %d: %s selected (score %.2f, %d step(s))", loop, agent.name, selection.score, len(plan.steps)
            )
            for index, step in enumerate(plan.steps):
                step_task = task.spawn(
                    description=step,
                    metadata={"loop": loop, "step": index, "context": self._carried_context(results)},
                )
                step_result = await self.runner.run(step_task, agent)
                results.append(step_result)
                if step_result.succeeded:
                    continue
                logger.warning("Step %d (%s) failed on %s: %s", index, step, agent.name, step_result.error)
                fallback = await self._execute_fallbacks(agent, step_task, plan.fallbacks, results)
                if not fallback.succeeded:
                    return replace(fallback, task_id=task.id, started_at=started, usage=self._usage(results))
            last = results[-1]
            if self.is_task_complete(last):
                return TaskResult(
                    task_id=task.id,
                    status=TaskStatus.COMPLETED,
                    output=last.output,
                    started_at=started,
                    usage=self._usage(results),
                    converged=last.converged,
                )
        return TaskResult.failure(
            task.id, f"Task not completed within {self.max_loops} loops", ErrorKind.LOOP_EXHAUSTED, started_at=started
        )

    async def select_best_agent_for_task(
        self, task: Task, context: Sequence[TaskResult], *, loop: int = 0
    ) -> Optional[AgentSelectionResult]:
        """Score and plan every candidate; ``None`` when nobody qualifies."""

        analysis = await self.analyze_task_requirements(task, context, loop=loop)

        async def rank(agent: Agent) -> AgentSelectionResult:
            score = self.calculate_agent_score(agent, analysis)
            plan = await self.create_plan(agent, task)
            return AgentSelectionResult(agent=agent, score=score, action_plan=plan)

        ranked = await asyncio.gather(*(rank(agent) for agent in self.agents))
        eligible = [item for item in ranked if item.action_plan is not None]
        if not eligible:
            logger.warning("No candidate produced a valid plan for task %s", task.id)
            return None
        best = max(eligible, key=lambda item: item.score)
        if best.score == 0:
            return None
        return best

    async def analyze_task_requirements(
        self, task: Task, context: Sequence[TaskResult] = (), *, loop: int = 0
    ) -> AgentTaskAnalysis:
        previous = [render_output(item.output) for item in context if item.succeeded]
        prompt = build_analysis_prompt(task.prompt, previous)
        prompt_context = PromptContext(agent_name=self.orchestrator.name, task_id=task.id, iteration=loop)
        try:
            generation = await generate_with_retry(
                self.orchestrator.get_language_model(), prompt, prompt_context, self.retry_policy
            )
            return parse_analysis(generation.text)
        except Exception as exc:
            logger.warning("Task analysis failed: %s", exc)
            return AgentTaskAnalysis.empty()

    @staticmethod
    def calculate_agent_score(agent: Agent, requirements: AgentTaskAnalysis) -> float:
        tool_names = [tool.name.lower() for tool in agent.get_tools()]
        capability = sum(
            1 for req in requirements.capabilities if any(req.lower() in name for name in tool_names)
        ) / max(1, len(requirements.capabilities))

        config = agent.get_configuration()
        if config.max_tokens is not None:
            performance = min(1.0, config.max_tokens / PERFORMANCE_TOKEN_BASELINE)
        else:
            performance = 0.5

        description = (config.description or "").lower()
        specialization = sum(
            1 for req in requirements.specialization if req.lower() in description
        ) / max(1, len(requirements.specialization))

        return capability * 0.4 + performance * 0.3 + specialization * 0.3

    async def create_plan(self, agent: Agent, task: Task) -> Optional[AgentActionPlan]:
        prompt = build_plan_prompt(task.prompt, agent.get_tools())
        context = PromptContext(agent_name=agent.name, task_id=task.id)
        try:
            generation = await generate_with_retry(agent.get_language_model(), prompt, context, self.retry_policy)
            return parse_plan(generation.text)
        except Exception as exc:
            logger.warning("Planning failed for %s: %s", agent.name, exc)
            return None

    @staticmethod
    def is_task_complete(result: TaskResult) -> bool:
        return result.status is TaskStatus.COMPLETED and result.output is not None

    async def _execute_fallbacks(
        self, agent: Agent, step_task: Task, fallbacks: Sequence[str], results: List[TaskResult]
    ) -> TaskResult:
        last: Optional[TaskResult] = None
        for index, fallback in enumerate(fallbacks):
            fallback_task = step_task.spawn(description=fallback, metadata={"fallback": index})
            result = await self.runner.run(fallback_task, agent)
            results.append(result)
            if result.succeeded:
                return result
            logger.warning("Fallback %d (%s) failed on %s: %s", index, fallback, agent.name, result.error)
            last = result
        if last is None:
            return TaskResult.failure(step_task.id, "All fallback actions failed", ErrorKind.STEP_FAILURE)
        return last.as_failure(kind=ErrorKind.STEP_FAILURE)

    @staticmethod
    def _carried_context(results: Sequence[TaskResult]) -> List[str]:
        return [render_output(item.output) for item in results if item.succeeded]

    @staticmethod
    def _usage(results: Sequence[TaskResult]) -> UsageMetrics:
        total = UsageMetrics()
        for item in results:
            if item.usage is not None:
                total.add(item.usage)
        return total
