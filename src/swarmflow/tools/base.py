"""Tool contract: what agents advertise to planners and call while planning."""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ToolInfo:
    """Name and description an agent advertises for planning and scoring."""

    name: str
    description: str


@dataclass
class ToolContext:
    """Which agent is calling, for which task and planning iteration."""

    agent_name: str
    task_id: str
    iteration: int
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolResult:
    content: str
    metadata: Dict[str, str] = field(default_factory=dict)


class Tool:
    """A synchronous capability an agent invokes by name.

    Subclasses implement :meth:`run`. Extra keyword arguments, usually the
    ``args`` block of a ``tools`` config entry, are kept in :attr:`config`.
    Without an explicit description the first line of the class docstring is
    advertised.
    """

    def __init__(self, name: str, description: Optional[str] = None, **config: Any) -> None:
        self.name = name
        summary = (inspect.getdoc(type(self)) or "").split("\n", 1)[0]
        self.description = description or summary
        self.config: Dict[str, Any] = config

    @property
    def info(self) -> ToolInfo:
        return ToolInfo(name=self.name, description=self.description)

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:  # pragma: no cover - abstract
        raise NotImplementedError

    async def invoke(self, input_text: str, context: ToolContext) -> ToolResult:
        """Await :meth:`run` on a worker thread."""

        return await asyncio.to_thread(self.run, input_text=input_text, context=context)
