"""Agents and the executors that coordinate them."""

from .agentic import AgentSelectionResult, AgenticExecutor
from .base import Agent, AgentConfiguration, LLMAgent, PlanningConfig
from .orchestrator import Orchestrator
from .prompts import AgentActionPlan, AgentTaskAnalysis
from .topology import AgentFailure, TopologyExecutor

__all__ = [
    "Agent",
    "AgentConfiguration",
    "AgentActionPlan",
    "AgentFailure",
    "AgentSelectionResult",
    "AgentTaskAnalysis",
    "AgenticExecutor",
    "LLMAgent",
    "Orchestrator",
    "PlanningConfig",
    "TopologyExecutor",
]
