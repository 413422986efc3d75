"""Agent contract and the tool-using LLM agent."""

from __future__ import annotations

import json
import logging
import textwrap
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from ..errors import ErrorKind, LanguageModelError
from ..llm.provider import Generation, LanguageModel, PromptContext, generate_with_retry
from ..memory.base import MemoryEntry, MemoryEntryType, MemoryRole, QueryOptions
from ..memory.manager import MemoryManager
from ..tasks.base import RetryPolicy, Task, TaskResult, TaskStatus, UsageMetrics
from ..tools.base import Tool, ToolContext, ToolInfo
from .prompts import build_plan_prompt, parse_plan

logger = logging.getLogger(__name__)


@dataclass
class AgentConfiguration:
    description: Optional[str] = None
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Agent(Protocol):
    """What executors need from an agent."""

    name: str
    memory: Optional[MemoryManager]

    async def execute(self, task: Task) -> TaskResult:  # pragma: no cover - interface
        ...

    async def plan(self, task: Task) -> List[str]:  # pragma: no cover - interface
        ...

    def get_tools(self) -> List[ToolInfo]:  # pragma: no cover - interface
        ...

    def get_language_model(self) -> LanguageModel:  # pragma: no cover - interface
        ...

    def get_configuration(self) -> AgentConfiguration:  # pragma: no cover - interface
        ...


@dataclass
class AgentAction:
    """Parsed output from the model."""

    thought: str
    action: str
    action_input: str
    answer: Optional[str] = None
    converged: Optional[bool] = None

    @property
    def is_final(self) -> bool:
        return self.action == "final"


@dataclass
class PlanningConfig:
    max_iterations: int = 4


class LLMAgent:
    """Agent that iteratively asks its model for tool calls until it answers."""

    def __init__(
        self,
        name: str,
        description: str,
        language_model: LanguageModel,
        tools: Dict[str, Tool],
        planning: Optional[PlanningConfig] = None,
        *,
        memory: Optional[MemoryManager] = None,
        max_tokens: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.language_model = language_model
        self.tools = tools
        self.planning = planning or PlanningConfig()
        self.memory = memory
        self.max_tokens = max_tokens
        self.metadata = dict(metadata or {})
        self.traces: Dict[str, List[str]] = {}

    async def execute(self, task: Task) -> TaskResult:
        loop = PlanningLoop(agent=self, task=task)
        try:
            return await loop.execute()
        finally:
            self.traces[task.id] = loop.trace

    async def plan(self, task: Task) -> List[str]:
        prompt = build_plan_prompt(task.prompt, self.get_tools())
        context = PromptContext(agent_name=self.name, task_id=task.id)
        generation = await self.generate(prompt, context, task.retry_policy)
        return list(parse_plan(generation.text).steps)

    def get_tools(self) -> List[ToolInfo]:
        return [tool.info for tool in self.tools.values()]

    def get_language_model(self) -> LanguageModel:
        return self.language_model

    def get_configuration(self) -> AgentConfiguration:
        return AgentConfiguration(
            description=self.description,
            max_tokens=self.max_tokens,
            metadata=dict(self.metadata),
        )

    async def generate(self, prompt: str, context: PromptContext, policy: RetryPolicy) -> Generation:
        return await generate_with_retry(self.language_model, prompt, context, policy)

    async def remember(self, content: str, type: MemoryEntryType, role: Optional[MemoryRole] = None,
                       **metadata: Any) -> None:
        if self.memory is None or not self.memory.initialized or not content:
            return
        try:
            await self.memory.add(
                MemoryEntry.create(content, type=type, role=role, metadata={"agent": self.name, **metadata})
            )
        except Exception as exc:
            logger.warning("%s: could not write memory: %s", self.name, exc)

    async def recall(self, query: str, limit: int = 5) -> List[str]:
        if self.memory is None or not self.memory.initialized:
            return []
        try:
            results = await self.memory.search(query, QueryOptions(limit=limit))
        except Exception as exc:
            logger.warning("%s: memory search failed: %s", self.name, exc)
            return []
        return [result.entry.content for result in results]


class PlanningLoop:
    """ReAct-style loop: think, call a tool, observe, repeat."""

    def __init__(self, agent: LLMAgent, task: Task) -> None:
        self.agent = agent
        self.task = task
        self.trace: List[str] = []
        self.observations: List[str] = []
        self.usage = UsageMetrics()

    async def execute(self) -> TaskResult:
        result = TaskResult(task_id=self.task.id, status=TaskStatus.RUNNING, usage=self.usage)
        recalled = await self.agent.recall(self.task.prompt)
        await self.agent.remember(
            self.task.prompt, MemoryEntryType.CONVERSATION, MemoryRole.USER, task_id=self.task.id
        )
        for iteration in range(1, self.agent.planning.max_iterations + 1):
            prompt = self._build_prompt(iteration, recalled)
            context = PromptContext(agent_name=self.agent.name, task_id=self.task.id, iteration=iteration)
            try:
                generation = await self.agent.generate(prompt, context, self.task.retry_policy)
            except LanguageModelError as exc:
                self.trace.append(f"error@{iteration}: {exc}")
                failure = TaskResult.failure(self.task.id, str(exc), exc.kind, started_at=result.started_at)
                failure.usage = self.usage
                return failure
            self.usage.add(generation.usage)
            self.trace.append(f"model@{iteration}: {generation.text}")
            logger.debug("%s@%d: %s", self.agent.name, iteration, generation.text)
            action = self._parse_response(generation.text)
            if action.is_final:
                answer = action.answer if action.answer is not None else action.action_input
                await self.agent.remember(
                    answer, MemoryEntryType.CONVERSATION, MemoryRole.ASSISTANT, task_id=self.task.id
                )
                result.status = TaskStatus.COMPLETED
                result.output = answer
                result.converged = action.converged
                result.completed_at = datetime.now(timezone.utc)
                return result
            observation = await self._invoke_tool(action, iteration)
            self.observations.append(observation)
            await self.agent.remember(observation, MemoryEntryType.TOOL, task_id=self.task.id)
        failure = TaskResult.failure(
            self.task.id,
            "Max iterations reached without final answer",
            ErrorKind.LOOP_EXHAUSTED,
            started_at=result.started_at,
        )
        failure.usage = self.usage
        return failure

    def _build_prompt(self, iteration: int, recalled: List[str]) -> str:
        tools_desc = "\n".join(f"- {info.name}: {info.description}" for info in self.agent.get_tools())
        memory_dump = "\n".join(f"- {item}" for item in recalled)
        scratch = "\n".join(self.observations)
        metadata = json.dumps(self.task.metadata, default=str, sort_keys=True)
        return textwrap.dedent(
            """\
            You are agent {name}. {description}
            Task: {task}
            You MUST respond using JSON with keys thought, action, input, answer (answer required when action == "final").
            Add "converged": true to a final answer when further rounds would not change it.
            Tools available:
            {tools}
            Task input: {prompt}
            Images: {images}
            Context: {metadata}
            Relevant memory:
            {memory}
            Observations so far:
            {scratch}
            Iteration: {iteration}"""
        ).format(
            name=self.agent.name,
            description=self.agent.description,
            task=self.task.description or self.task.name,
            tools=tools_desc or "- none",
            prompt=self.task.prompt,
            images=", ".join(self.task.input.images) or "none",
            metadata=metadata,
            memory=memory_dump or "empty",
            scratch=scratch or "none",
            iteration=iteration,
        )

    @staticmethod
    def _parse_response(response: str) -> AgentAction:
        try:
            payload = json.loads(response)
        except json.JSONDecodeError:
            payload = None
        if not isinstance(payload, dict):
            # Treat as direct answer
            return AgentAction(thought="Responding directly", action="final", action_input=response, answer=response)
        converged = payload.get("converged")
        answer = payload.get("answer")
        return AgentAction(
            thought=str(payload.get("thought", "")),
            action=str(payload.get("action", "final")),
            action_input=str(payload.get("input", "")),
            answer=answer if answer is None or isinstance(answer, str) else json.dumps(answer),
            converged=bool(converged) if converged is not None else None,
        )

    async def _invoke_tool(self, action: AgentAction, iteration: int) -> str:
        tool_name = action.action
        if tool_name not in self.agent.tools:
            observation = f"Unknown tool '{tool_name}'"
            self.trace.append(observation)
            return observation
        tool = self.agent.tools[tool_name]
        context = ToolContext(
            agent_name=self.agent.name,
            task_id=self.task.id,
            iteration=iteration,
            metadata={"task_description": self.task.description, **self.task.metadata},
        )
        try:
            result = await tool.invoke(action.action_input, context)
        except Exception as exc:
            observation = f"Tool {tool_name} failed: {exc}"
        else:
            observation = f"Tool {tool_name} => {result.content}"
        self.trace.append(observation)
        return observation
