"""Prompt templates and parsers for the task analysis and planning round trips.

Models answer in a tagged layout (``[STEPS] ... [/STEPS]``). Sections are
pulled out with regular expressions and validated through pydantic models, so
a malformed answer surfaces as a :class:`ParseError` the caller can degrade on.
"""

from __future__ import annotations

import re
import textwrap
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field, ValidationError

from ..errors import ErrorKind, ParseError
from ..tools.base import ToolInfo

ANALYSIS_SECTIONS = ("CAPABILITIES", "COMPLEXITY", "SPECIALIZATIONS", "ACTIONS", "DEPENDENCIES")
PLAN_SECTIONS = ("STEPS", "COUNT", "FALLBACKS", "VALIDATION")

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s*")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


class AgentTaskAnalysis(BaseModel):
    """What the orchestrator thinks a task needs."""

    capabilities: List[str] = Field(default_factory=list)
    complexity: float = Field(default=0.0, ge=0.0, le=1.0)
    specialization: List[str] = Field(default_factory=list)
    required_actions: List[str] = Field(default_factory=list)
    context_dependencies: List[str] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "AgentTaskAnalysis":
        return cls()


class AgentActionPlan(BaseModel):
    """Ordered steps an agent proposes, plus fallbacks for failed steps."""

    steps: List[str] = Field(min_length=1)
    estimated_steps: int = Field(default=1, ge=1)
    fallbacks: List[str] = Field(default_factory=list)


def build_analysis_prompt(prompt: str, previous_results: Sequence[str] = ()) -> str:
    previous = ""
    if previous_results:
        listing = "\n".join(f"{index}. {item}" for index, item in enumerate(previous_results, start=1))
        previous = f"\n## Previous Results\n{listing}\n"
    return textwrap.dedent(
        """\
        # Task Analysis System

        ## Task Information
        Original Query: {prompt}
        {previous}
        ## Analysis Requirements
        Provide a detailed breakdown of task requirements and complexity.

        ## Response Format
        Your response must contain these sections:

        ### Required Capabilities
        [CAPABILITIES]
        List of specific abilities needed, one per line
        [/CAPABILITIES]

        ### Task Complexity
        [COMPLEXITY]
        Score (0-1) with justification
        [/COMPLEXITY]

        ### Required Specializations
        [SPECIALIZATIONS]
        List of domain expertise needed, one per line
        [/SPECIALIZATIONS]

        ### Required Actions
        [ACTIONS]
        List of concrete steps/operations, one per line
        [/ACTIONS]

        ### Context Dependencies
        [DEPENDENCIES]
        List of required contextual information, one per line
        [/DEPENDENCIES]

        ### Validation
        [VALIDATION]
        - Analysis complete: [yes/no]
        - Requirements clear: [yes/no]
        - Dependencies identified: [yes/no]
        [/VALIDATION]

        Provide your analysis below:"""
    ).format(prompt=prompt, previous=previous)


def build_plan_prompt(prompt: str, tools: Iterable[ToolInfo]) -> str:
    tools_desc = "\n".join(f"- {tool.name}: {tool.description}" for tool in tools)
    return textwrap.dedent(
        """\
        # Task Planning System

        ## Task Information
        {prompt}

        ## Available Tools
        {tools}

        ## Planning Requirements
        - Break down task into concrete steps
        - Use available tools effectively
        - Include error handling
        - Consider fallback options

        ## Response Format
        Your response must contain these sections:

        ### Execution Steps
        [STEPS]
        List steps one per line, using format:
        "[Action] using [Tool] with {{parameters}}"
        [/STEPS]

        ### Step Count
        [COUNT]
        Total number of steps
        [/COUNT]

        ### Fallback Actions
        [FALLBACKS]
        List of fallback actions, one per line
        [/FALLBACKS]

        ### Validation
        [VALIDATION]
        - Steps valid: [yes/no]
        - Tools available: [yes/no]
        - Fallbacks defined: [yes/no]
        [/VALIDATION]

        Provide your plan below:"""
    ).format(prompt=prompt, tools=tools_desc or "- none")


def extract_sections(text: str, names: Iterable[str]) -> Dict[str, str]:
    """Return the body of every ``[NAME]...[/NAME]`` block present in ``text``."""

    sections: Dict[str, str] = {}
    for name in names:
        match = re.search(rf"\[{name}\](.*?)\[/{name}\]", text, re.DOTALL)
        if match:
            sections[name] = match.group(1).strip()
    return sections


def split_lines(body: Optional[str]) -> List[str]:
    if not body:
        return []
    items = (_BULLET.sub("", line).strip().strip('"') for line in body.splitlines())
    return [item for item in items if item]


def parse_analysis(text: str) -> AgentTaskAnalysis:
    sections = extract_sections(text, ANALYSIS_SECTIONS)
    missing = [name for name in ANALYSIS_SECTIONS if name not in sections]
    if missing:
        raise ParseError(f"Analysis is missing sections: {', '.join(missing)}", kind=ErrorKind.ANALYSIS_PARSE_FAILURE)
    number = _NUMBER.search(sections["COMPLEXITY"])
    if number is None:
        raise ParseError("Analysis complexity is not a number", kind=ErrorKind.ANALYSIS_PARSE_FAILURE)
    try:
        return AgentTaskAnalysis(
            capabilities=split_lines(sections["CAPABILITIES"]),
            complexity=float(number.group(0)),
            specialization=split_lines(sections["SPECIALIZATIONS"]),
            required_actions=split_lines(sections["ACTIONS"]),
            context_dependencies=split_lines(sections["DEPENDENCIES"]),
        )
    except ValidationError as exc:
        raise ParseError(f"Invalid analysis: {exc}", kind=ErrorKind.ANALYSIS_PARSE_FAILURE) from exc


def parse_plan(text: str) -> AgentActionPlan:
    sections = extract_sections(text, PLAN_SECTIONS)
    validation = sections.get("VALIDATION", "")
    if "Steps valid: yes" not in validation or "Tools available: yes" not in validation:
        raise ParseError("Plan validation did not pass", kind=ErrorKind.PLAN_PARSE_FAILURE)
    count = _NUMBER.search(sections.get("COUNT", ""))
    try:
        return AgentActionPlan(
            steps=split_lines(sections.get("STEPS")),
            estimated_steps=max(1, int(float(count.group(0)))) if count else 1,
            fallbacks=split_lines(sections.get("FALLBACKS")),
        )
    except ValidationError as exc:
        raise ParseError(f"Invalid plan: {exc}", kind=ErrorKind.PLAN_PARSE_FAILURE) from exc

