"""Shared test doubles."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from swarmflow.agents.base import AgentConfiguration
from swarmflow.llm.provider import StaticResponseProvider
from swarmflow.memory.simple import InMemoryStore
from swarmflow.tasks.base import Task, TaskResult, TaskStatus
from swarmflow.tools.base import ToolInfo

Outcome = Union[str, Any, TaskResult, BaseException]


class ScriptedAgent:
    """Agent double whose outputs come from a handler or a queue of outcomes.

    Plain values complete the task, ``TaskResult`` objects are returned as is
    and exceptions are raised. Without a script the agent echoes the prompt.
    """

    def __init__(
        self,
        name: str,
        outcomes: Optional[Iterable[Outcome]] = None,
        *,
        handler: Optional[Callable[[Task], Outcome]] = None,
        tools: Sequence[str] = (),
        description: str = "",
        max_tokens: Optional[int] = None,
        model: Optional[StaticResponseProvider] = None,
        converged: Optional[bool] = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.memory = None
        self.outcomes = list(outcomes or [])
        self.handler = handler
        self.tools = [ToolInfo(name=tool, description=f"{tool} tool") for tool in tools]
        self.description = description
        self.max_tokens = max_tokens
        self.model = model or StaticResponseProvider([])
        self.converged = converged
        self.delay = delay
        self.calls: List[Task] = []

    async def execute(self, task: Task) -> TaskResult:
        self.calls.append(task)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.handler is not None:
            outcome = self.handler(task)
        elif self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = task.prompt
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, TaskResult):
            outcome.task_id = task.id
            return outcome
        return TaskResult(task_id=task.id, status=TaskStatus.COMPLETED, output=outcome, converged=self.converged)

    async def plan(self, task: Task) -> List[str]:
        return [task.prompt]

    def get_tools(self) -> List[ToolInfo]:
        return list(self.tools)

    def get_language_model(self) -> StaticResponseProvider:
        return self.model

    def get_configuration(self) -> AgentConfiguration:
        return AgentConfiguration(description=self.description, max_tokens=self.max_tokens)


def failed(error: str = "boom") -> TaskResult:
    return TaskResult.failure("pending", error)


class FlakyStore(InMemoryStore):
    """In-memory store that raises for the named operations (``*`` for all)."""

    def __init__(self, *failing: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.failing = set(failing)

    def _check(self, operation: str) -> None:
        if operation in self.failing or "*" in self.failing:
            raise ConnectionError(f"{self.name} {operation} unavailable")

    async def add(self, entry):
        self._check("add")
        return await super().add(entry)

    async def get(self, entry_id):
        self._check("get")
        return await super().get(entry_id)

    async def update(self, entry_id, changes):
        self._check("update")
        await super().update(entry_id, changes)

    async def delete(self, entry_id):
        self._check("delete")
        await super().delete(entry_id)

    async def clear(self):
        self._check("clear")
        await super().clear()

    async def search(self, query, options=None):
        self._check("search")
        return await super().search(query, options)

    async def similarity_search(self, embedding, options=None):
        self._check("similarity_search")
        return await super().similarity_search(embedding, options)

    async def count(self):
        self._check("count")
        return await super().count()


def analysis_text(
    capabilities: Sequence[str] = (),
    specializations: Sequence[str] = (),
    complexity: float = 0.5,
) -> str:
    return (
        "[CAPABILITIES]\n" + "\n".join(capabilities) + "\n[/CAPABILITIES]\n"
        f"[COMPLEXITY]\n{complexity} moderate\n[/COMPLEXITY]\n"
        "[SPECIALIZATIONS]\n" + "\n".join(specializations) + "\n[/SPECIALIZATIONS]\n"
        "[ACTIONS]\n- gather\n[/ACTIONS]\n"
        "[DEPENDENCIES]\n- none\n[/DEPENDENCIES]\n"
        "[VALIDATION]\n- Analysis complete: yes\n[/VALIDATION]"
    )


def plan_text(steps: Sequence[str], fallbacks: Sequence[str] = (), *, valid: bool = True) -> str:
    verdict = "yes" if valid else "no"
    return (
        "[STEPS]\n" + "\n".join(steps) + "\n[/STEPS]\n"
        f"[COUNT]\n{len(steps)}\n[/COUNT]\n"
        "[FALLBACKS]\n" + "\n".join(fallbacks) + "\n[/FALLBACKS]\n"
        f"[VALIDATION]\n- Steps valid: {verdict}\n- Tools available: {verdict}\n[/VALIDATION]"
    )
