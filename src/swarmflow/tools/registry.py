"""Named tool lookup shared by every agent of a project."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Iterator, List

from ..config import ConfigError, ToolSpec, instantiate_from_path
from .base import Tool

ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Maps tool names to factories; a tool is built once, on first lookup.

    Agents resolved from the same registry share tool instances, so tools
    must not keep per-task state.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, ToolFactory] = {}
        self._built: Dict[str, Tool] = {}

    def add(self, tool: Tool, *, replace: bool = False) -> None:
        self.add_factory(tool.name, lambda: tool, replace=replace)

    def add_factory(self, name: str, factory: ToolFactory, *, replace: bool = False) -> None:
        if name in self._factories and not replace:
            raise ValueError(f"Tool '{name}' is already registered")
        self._factories[name] = factory
        self._built.pop(name, None)

    def add_spec(self, spec: ToolSpec) -> None:
        """Register a config-declared tool; later specs win over earlier names."""

        def build() -> Tool:
            tool = instantiate_from_path(spec.type, name=spec.name, **spec.args)
            if not isinstance(tool, Tool):
                raise ConfigError(f"Tool '{spec.name}' ({spec.type}) must subclass Tool")
            return tool

        self.add_factory(spec.name, build, replace=True)

    def add_specs(self, specs: Iterable[ToolSpec]) -> None:
        for spec in specs:
            self.add_spec(spec)

    def get(self, name: str) -> Tool:
        if name not in self._built:
            if name not in self._factories:
                raise ConfigError(f"Unknown tools: {name}")
            self._built[name] = self._factories[name]()
        return self._built[name]

    def resolve(self, names: Iterable[str]) -> Dict[str, Tool]:
        """Build the named tools, reporting every unknown name at once."""

        wanted = list(names)
        missing = [name for name in wanted if name not in self]
        if missing:
            raise ConfigError(f"Unknown tools: {', '.join(missing)}")
        return {name: self.get(name) for name in wanted}

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._factories)
