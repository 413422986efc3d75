import asyncio
import json

import pytest

from swarmflow.config import ConfigError, ToolSpec
from swarmflow.tools.base import Tool, ToolContext, ToolInfo, ToolResult
from swarmflow.tools.builtin import (
    KeywordExtractorTool,
    StructuredLookupTool,
    TextStatsTool,
    register_builtin_tools,
)
from swarmflow.tools.registry import ToolRegistry

CONTEXT = ToolContext(agent_name="tester", task_id="t1", iteration=0)


class UpperTool(Tool):
    """Upper-cases its input."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        return ToolResult(content=input_text.upper())


def test_structured_lookup_follows_dotted_path():
    tool = StructuredLookupTool(name="structured_lookup")
    payload = json.dumps({"document": {"team": {"members": ["ana", "bo"]}}, "path": "team.members.1"})

    result = tool.run(input_text=payload, context=CONTEXT)

    assert result.content == "bo"
    assert result.metadata == {"found": "true"}


def test_structured_lookup_accepts_yaml_documents():
    tool = StructuredLookupTool(name="structured_lookup")
    payload = json.dumps({"document": "limits:\n  rps: 5\n", "path": "limits"})

    result = tool.run(input_text=payload, context=CONTEXT)

    assert json.loads(result.content) == {"rps": 5}


def test_structured_lookup_reports_missing_path():
    tool = StructuredLookupTool(name="structured_lookup")

    result = tool.run(input_text=json.dumps({"document": {}, "path": "a.b"}), context=CONTEXT)

    assert result.metadata == {"found": "false"}


def test_structured_lookup_rejects_plain_text():
    with pytest.raises(ValueError):
        StructuredLookupTool(name="structured_lookup").run(input_text="just words", context=CONTEXT)


def test_text_stats_counts():
    result = TextStatsTool(name="text_stats").run(input_text="One two. Three!", context=CONTEXT)

    assert json.loads(result.content) == {"words": 3, "sentences": 2, "characters": 15}


def test_keyword_extractor_honours_limit():
    tool = KeywordExtractorTool(name="keyword_extractor", limit=2)

    result = tool.run(input_text="Latency and latency budgets for the cache cache cache", context=CONTEXT)

    assert result.content == "cache, latency"


def test_registry_resolves_builtin_and_spec_tools():
    registry = ToolRegistry()
    register_builtin_tools(registry)
    registry.add_specs([ToolSpec(name="upper", type="test_tools:UpperTool")])

    tools = registry.resolve(["text_stats", "upper"])

    assert list(tools) == ["text_stats", "upper"]
    assert tools["upper"].run(input_text="hi", context=CONTEXT).content == "HI"
    assert registry.get("upper") is tools["upper"]
    assert "upper" in registry
    assert registry.names() == ["keyword_extractor", "structured_lookup", "text_stats", "upper"]


def test_registry_reports_every_unknown_tool():
    registry = ToolRegistry()
    register_builtin_tools(registry)

    with pytest.raises(ConfigError, match="Unknown tools: search, browse"):
        registry.resolve(["text_stats", "search", "browse"])
    with pytest.raises(ConfigError):
        registry.get("search")


def test_registry_refuses_duplicate_registration_unless_replacing():
    registry = ToolRegistry()
    registry.add(UpperTool(name="upper"))

    with pytest.raises(ValueError):
        registry.add(UpperTool(name="upper"))

    replacement = UpperTool(name="upper", description="louder")
    registry.add(replacement, replace=True)
    assert registry.get("upper") is replacement
    assert len(registry) == 1


def test_spec_with_non_tool_type_is_rejected():
    registry = ToolRegistry()
    registry.add_spec(ToolSpec(name="bad", type="collections:OrderedDict"))

    with pytest.raises(ConfigError, match="must subclass Tool"):
        registry.get("bad")


def test_tool_description_defaults_to_docstring_summary():
    tool = UpperTool(name="upper", shout=True)

    assert tool.info == ToolInfo(name="upper", description="Upper-cases its input.")
    assert tool.config == {"shout": True}


def test_invoke_runs_the_tool_off_the_event_loop():
    result = asyncio.run(UpperTool(name="upper").invoke("quiet", CONTEXT))

    assert result.content == "QUIET"
