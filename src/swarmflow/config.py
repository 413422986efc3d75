"""Configuration helpers for swarmflow projects."""

from __future__ import annotations

import importlib
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Union

import yaml

from .tasks.base import RetryPolicy


class ConfigError(RuntimeError):
    """Raised when configuration files are invalid."""


TOPOLOGIES = ("sequential", "parallel", "hierarchical", "mesh")
DEFAULT_STORE = "swarmflow.memory.simple:InMemoryStore"


@dataclass
class PlanningSpec:
    """Runtime planning parameters for an agent."""

    max_iterations: int = 4

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "PlanningSpec":
        if not data:
            return cls()
        return cls(max_iterations=int(data.get("max_iterations", 4)))


@dataclass
class StoreSpec:
    """One storage backend: import path plus constructor params."""

    type: str = DEFAULT_STORE
    params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Union[str, Mapping[str, Any], None]) -> "StoreSpec":
        if not data:
            return cls()
        if isinstance(data, str):
            return cls(type=data)
        return cls(
            type=str(data.get("type", DEFAULT_STORE)),
            params=dict(data.get("params", {})),
        )


@dataclass
class MemorySpec:
    """Memory manager layout for an agent."""

    primary: StoreSpec = field(default_factory=StoreSpec)
    fallbacks: List[StoreSpec] = field(default_factory=list)
    replicas: List[StoreSpec] = field(default_factory=list)
    replication_enabled: bool = False
    consistency_check: bool = False
    consistency_check_interval: float = 60.0
    deduplicate: bool = False
    dedup_window: float = 300.0
    max_entries: Optional[int] = None
    archive_threshold: float = 0.8

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "MemorySpec":
        if not data:
            return cls()
        interval = float(data.get("consistency_check_interval", 60.0))
        if interval <= 0:
            raise ConfigError("consistency_check_interval must be positive")
        max_entries = data.get("max_entries")
        if max_entries is not None and int(max_entries) < 1:
            raise ConfigError("max_entries must be >= 1")
        threshold = float(data.get("archive_threshold", 0.8))
        if not 0.0 < threshold <= 1.0:
            raise ConfigError("archive_threshold must be within (0, 1]")
        return cls(
            primary=StoreSpec.from_mapping(data.get("primary")),
            fallbacks=[StoreSpec.from_mapping(item) for item in data.get("fallbacks") or []],
            replicas=[StoreSpec.from_mapping(item) for item in data.get("replicas") or []],
            replication_enabled=bool(data.get("replication_enabled", False)),
            consistency_check=bool(data.get("consistency_check", False)),
            consistency_check_interval=interval,
            deduplicate=bool(data.get("deduplicate", False)),
            dedup_window=float(data.get("dedup_window", 300.0)),
            max_entries=int(max_entries) if max_entries is not None else None,
            archive_threshold=threshold,
        )


@dataclass
class AgentSpec:
    """Definition of an agent from config."""

    name: str
    llm_provider: Optional[str]
    tools: List[str]
    planning: PlanningSpec
    description: Optional[str] = None
    max_tokens: Optional[int] = None
    memory: MemorySpec = field(default_factory=MemorySpec)
    metadata: Dict[str, Any] = field(default_factory=dict)
    llm_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "AgentSpec":
        if "tools" not in data:
            raise ConfigError(f"Agent '{name}' requires a tools list")
        max_tokens = data.get("max_tokens")
        return cls(
            name=name,
            llm_provider=data.get("llm_provider"),
            tools=list(data.get("tools") or []),
            planning=PlanningSpec.from_mapping(data.get("planning")),
            description=data.get("description"),
            max_tokens=int(max_tokens) if max_tokens is not None else None,
            memory=MemorySpec.from_mapping(data.get("memory")),
            metadata=dict(data.get("metadata", {})),
            llm_params=dict(data.get("llm_params", {})),
        )


@dataclass
class SwarmSpec:
    """A fixed agent group bound to one topology."""

    name: str
    topology: str
    agents: List[str]
    max_concurrency: int = 5
    coordinator_only: bool = False

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "SwarmSpec":
        topology = str(data.get("topology", "")).strip().lower()
        if topology not in TOPOLOGIES:
            raise ConfigError(f"Swarm '{name}' has unsupported topology '{topology}'")
        agents = [str(item) for item in data.get("agents") or []]
        if not agents:
            raise ConfigError(f"Swarm '{name}' requires at least one agent")
        return cls(
            name=name,
            topology=topology,
            agents=agents,
            max_concurrency=int(data.get("max_concurrency", 5)),
            coordinator_only=bool(data.get("coordinator_only", False)),
        )


@dataclass
class ExecutorSpec:
    """An agentic executor: orchestrator agent plus candidate pool."""

    name: str
    orchestrator: str
    agents: List[str]
    max_loops: int = 3
    timeout: Optional[float] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ExecutorSpec":
        if "orchestrator" not in data:
            raise ConfigError(f"Executor '{name}' requires an orchestrator agent")
        agents = [str(item) for item in data.get("agents") or []]
        if not agents:
            raise ConfigError(f"Executor '{name}' requires candidate agents")
        max_loops = int(data.get("max_loops", 3))
        if max_loops < 1:
            raise ConfigError(f"Executor '{name}' max_loops must be >= 1")
        timeout = data.get("timeout")
        try:
            retry = RetryPolicy.from_mapping(data.get("retry"))
        except ValueError as exc:
            raise ConfigError(f"Executor '{name}' has invalid retry settings: {exc}") from exc
        return cls(
            name=name,
            orchestrator=str(data["orchestrator"]),
            agents=agents,
            max_loops=max_loops,
            timeout=float(timeout) if timeout is not None else None,
            retry=retry,
        )


@dataclass
class TaskSpec:
    """Represents a task routed to an agent, a swarm or an agentic executor."""

    id: str
    description: str
    prompt: str
    agent: Optional[str] = None
    swarm: Optional[str] = None
    executor: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    images: List[str] = field(default_factory=list)
    timeout: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TaskSpec":
        missing = [key for key in ("id", "description") if key not in data]
        if missing:
            raise ConfigError(f"Task is missing required keys: {', '.join(missing)}")
        targets = [key for key in ("agent", "swarm", "executor") if data.get(key)]
        if len(targets) != 1:
            raise ConfigError(f"Task '{data['id']}' must name exactly one of agent, swarm or executor")
        timeout = data.get("timeout")
        return cls(
            id=str(data["id"]),
            description=str(data["description"]),
            prompt=str(data.get("prompt") or data["description"]),
            agent=data.get("agent"),
            swarm=data.get("swarm"),
            executor=data.get("executor"),
            metadata=dict(data.get("metadata", {})),
            images=[str(item) for item in data.get("images") or []],
            timeout=float(timeout) if timeout is not None else None,
        )

    @property
    def target(self) -> str:
        return self.agent or self.swarm or self.executor or ""


@dataclass
class ToolSpec:
    """Configuration for a tool instance."""

    name: str
    type: str
    args: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping[str, Any]) -> "ToolSpec":
        if "type" not in data:
            raise ConfigError(f"Tool '{name}' requires a type path")
        return cls(name=name, type=str(data["type"]), args=dict(data.get("args", {})))


@dataclass
class DefaultsSpec:
    """Optional defaults applied to agents."""

    llm_provider: Optional[str] = None
    llm_params: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "DefaultsSpec":
        if not data:
            return cls()
        return cls(
            llm_provider=data.get("llm_provider"),
            llm_params=dict(data.get("llm_params", {})),
        )


@dataclass
class ProjectConfig:
    """Representation of the YAML configuration."""

    name: str
    description: Optional[str]
    defaults: DefaultsSpec
    agents: Dict[str, AgentSpec]
    tasks: List[TaskSpec]
    tool_specs: Dict[str, ToolSpec]
    swarms: Dict[str, SwarmSpec] = field(default_factory=dict)
    executors: Dict[str, ExecutorSpec] = field(default_factory=dict)
    file_path: Optional[pathlib.Path] = None

    @classmethod
    def from_file(cls, path: str | pathlib.Path) -> "ProjectConfig":
        p = pathlib.Path(path)
        data = _parse_yaml(p.read_text())
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        return cls.from_mapping(data, p)

    @classmethod
    def from_yaml(cls, content: str) -> "ProjectConfig":
        data = _parse_yaml(content)
        if not isinstance(data, MutableMapping):
            raise ConfigError("Configuration root must be a mapping")
        return cls.from_mapping(data)

    @classmethod
    def from_mapping(cls, data: MutableMapping, path: Optional[pathlib.Path] = None) -> "ProjectConfig":
        agents = {
            name: AgentSpec.from_mapping(name, info)
            for name, info in (data.get("agents") or {}).items()
        }
        tasks = [TaskSpec.from_mapping(item) for item in data.get("tasks") or []]
        if not agents:
            raise ConfigError("At least one agent must be defined")
        if not tasks:
            raise ConfigError("At least one task must be defined")
        swarms = {
            name: SwarmSpec.from_mapping(name, info)
            for name, info in (data.get("swarms") or {}).items()
        }
        executors = {
            name: ExecutorSpec.from_mapping(name, info)
            for name, info in (data.get("executors") or {}).items()
        }
        tool_specs = {
            name: ToolSpec.from_mapping(name, info)
            for name, info in (data.get("tools") or {}).items()
        }
        config = cls(
            name=data.get("name", path.stem if path else "Untitled"),
            description=data.get("description"),
            defaults=DefaultsSpec.from_mapping(data.get("defaults")),
            agents=agents,
            tasks=tasks,
            tool_specs=tool_specs,
            swarms=swarms,
            executors=executors,
            file_path=path,
        )
        config._check_references()
        return config

    def get_agent(self, name: str) -> AgentSpec:
        try:
            return self.agents[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown agent '{name}' referenced") from exc

    def _check_references(self) -> None:
        seen: set[str] = set()
        for task in self.tasks:
            if task.id in seen:
                raise ConfigError(f"Duplicate task id '{task.id}'")
            seen.add(task.id)
        for swarm in self.swarms.values():
            for agent in swarm.agents:
                self.get_agent(agent)
        for executor in self.executors.values():
            self.get_agent(executor.orchestrator)
            for agent in executor.agents:
                self.get_agent(agent)
        for task in self.tasks:
            if task.agent:
                self.get_agent(task.agent)
            elif task.swarm and task.swarm not in self.swarms:
                raise ConfigError(f"Task '{task.id}' references unknown swarm '{task.swarm}'")
            elif task.executor and task.executor not in self.executors:
                raise ConfigError(f"Task '{task.id}' references unknown executor '{task.executor}'")


def _parse_yaml(content: str) -> Any:
    try:
        return yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML: {exc}") from exc


def import_string(path: str) -> Any:
    """Return attribute from module specified by path "module:qualname"."""

    if ":" not in path:
        raise ConfigError(f"Import path '{path}' must use module:qualname format")
    module_path, attr = path.split(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as exc:
        raise ConfigError(f"Cannot import module '{module_path}': {exc}") from exc
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigError(f"Module '{module_path}' has no attribute '{attr}'") from exc


def instantiate_from_path(path: str, *args: Any, **kwargs: Any) -> Any:
    """Import and instantiate a class given its dotted path."""

    cls = import_string(path)
    return cls(*args, **kwargs)
