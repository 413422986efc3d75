"""High-level orchestration for running config-defined agents, swarms and executors."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List

from ..config import AgentSpec, ConfigError, ProjectConfig, TaskSpec, instantiate_from_path
from ..llm.provider import LanguageModel
from ..memory.factory import MemoryFactory
from ..tasks.base import Task, TaskInput, TaskResult
from ..tasks.metrics import ExecutionMetrics
from ..tasks.runner import TaskRunner
from ..tools.builtin import register_builtin_tools
from ..tools.registry import ToolRegistry
from .agentic import AgenticExecutor
from .base import LLMAgent, PlanningConfig
from .topology import TopologyExecutor

logger = logging.getLogger(__name__)


class Orchestrator:
    """Builds agents, swarms and executors from config and runs the requested tasks."""

    def __init__(self, project_config: ProjectConfig, *, tool_registry: ToolRegistry | None = None) -> None:
        self.config = project_config
        self.tool_registry = tool_registry or ToolRegistry()
        register_builtin_tools(self.tool_registry)
        self.tool_registry.add_specs(self.config.tool_specs.values())
        self.runner = TaskRunner()
        self.metrics: Dict[str, ExecutionMetrics] = {}
        self.agents: Dict[str, LLMAgent] = {
            spec.name: self._materialize_agent(spec) for spec in self.config.agents.values()
        }
        self.swarms: Dict[str, TopologyExecutor] = self._build_swarms()
        self.executors: Dict[str, AgenticExecutor] = self._build_executors()
        self._started = False

    def _materialize_agent(self, spec: AgentSpec) -> LLMAgent:
        provider_path = spec.llm_provider or self.config.defaults.llm_provider
        if not provider_path:
            raise ConfigError(f"Agent '{spec.name}' has no llm_provider and no default is set")
        provider_params = dict(self.config.defaults.llm_params)
        provider_params.update(spec.llm_params)
        provider = instantiate_from_path(provider_path, **provider_params)
        if not isinstance(provider, LanguageModel):
            raise ConfigError(f"Provider '{provider_path}' does not implement generate_text")
        return LLMAgent(
            name=spec.name,
            description=spec.description or "General agent",
            language_model=provider,
            tools=self.tool_registry.resolve(spec.tools),
            planning=PlanningConfig(max_iterations=spec.planning.max_iterations),
            memory=MemoryFactory.manager_from_spec(spec.memory),
            max_tokens=spec.max_tokens,
            metadata=spec.metadata,
        )

    def _build_swarms(self) -> Dict[str, TopologyExecutor]:
        swarms: Dict[str, TopologyExecutor] = {}
        for name, spec in self.config.swarms.items():
            metrics = self.metrics.setdefault(f"swarm:{name}", ExecutionMetrics())
            swarms[name] = TopologyExecutor(
                [self.agents[agent] for agent in spec.agents],
                runner=self.runner,
                metrics=metrics,
                max_concurrency=spec.max_concurrency,
                coordinator_only=spec.coordinator_only,
            )
        return swarms

    def _build_executors(self) -> Dict[str, AgenticExecutor]:
        executors: Dict[str, AgenticExecutor] = {}
        for name, spec in self.config.executors.items():
            metrics = self.metrics.setdefault(f"executor:{name}", ExecutionMetrics())
            executors[name] = AgenticExecutor(
                self.agents[spec.orchestrator],
                [self.agents[agent] for agent in spec.agents],
                max_loops=spec.max_loops,
                timeout=spec.timeout,
                retry_policy=spec.retry,
                runner=self.runner,
                metrics=metrics,
            )
        return executors

    async def start(self) -> None:
        if self._started:
            return
        await asyncio.gather(*(agent.memory.initialize() for agent in self.agents.values() if agent.memory))
        self._started = True

    async def close(self) -> None:
        if not self._started:
            return
        results = await asyncio.gather(
            *(agent.memory.close() for agent in self.agents.values() if agent.memory), return_exceptions=True
        )
        for item in results:
            if isinstance(item, BaseException):
                logger.warning("Memory shutdown failed: %s", item)
        self._started = False

    async def run_task(self, spec: TaskSpec) -> TaskResult:
        if spec.executor:
            return await self.executors[spec.executor].execute(spec.prompt, spec.images, spec.metadata)
        task = Task(
            id=spec.id,
            name=spec.id,
            description=spec.description,
            input=TaskInput(prompt=spec.prompt, metadata=dict(spec.metadata), images=list(spec.images)),
            timeout=spec.timeout,
        )
        if spec.swarm:
            return await self.swarms[spec.swarm].execute(self.config.swarms[spec.swarm].topology, task)
        return await self.runner.run(task, self.agents[spec.target])

    async def run(self) -> Dict[str, TaskResult]:
        """Run every configured task in order; memories are closed afterwards."""

        results: Dict[str, TaskResult] = {}
        await self.start()
        try:
            for spec in self.config.tasks:
                logger.info("Running task %s on %s", spec.id, spec.target)
                results[spec.id] = await self.run_task(spec)
        finally:
            await self.close()
        return results

    async def health(self) -> Dict[str, Dict[str, Any]]:
        await self.start()
        try:
            return {
                name: await agent.memory.health_check()
                for name, agent in self.agents.items()
                if agent.memory is not None
            }
        finally:
            await self.close()

    def traces(self) -> Dict[str, Dict[str, List[str]]]:
        """Planning traces per agent, keyed by the task id each agent ran."""

        return {name: dict(agent.traces) for name, agent in self.agents.items() if agent.traces}
