"""Built-in tools available to every agent."""

from __future__ import annotations

import json
import re
from collections import Counter
from typing import Any

import yaml

from .base import Tool, ToolContext, ToolResult
from .registry import ToolRegistry

_STOPWORDS = frozenset(
    "a an and are as at be by for from has in is it of on or that the to was were will with".split()
)


def _load_structured(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError:
            return text


class StructuredLookupTool(Tool):
    """Reads a dotted path (``path``) out of a JSON/YAML ``document``."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        payload = _load_structured(input_text)
        if not isinstance(payload, dict) or "document" not in payload:
            raise ValueError("StructuredLookupTool expects a mapping with 'document' and 'path'")
        document = payload["document"]
        if isinstance(document, str):
            document = _load_structured(document)
        current: Any = document
        for part in str(payload.get("path", "")).split("."):
            if not part:
                continue
            if isinstance(current, dict) and part in current:
                current = current[part]
            elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
                current = current[int(part)]
            else:
                return ToolResult(content=f"Path '{payload.get('path')}' not found", metadata={"found": "false"})
        rendered = current if isinstance(current, str) else json.dumps(current)
        return ToolResult(content=rendered, metadata={"found": "true"})


class TextStatsTool(Tool):
    """Counts words, sentences and characters in the input text."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        words = re.findall(r"\w+", input_text)
        sentences = [s for s in re.split(r"[.!?]+", input_text) if s.strip()]
        stats = {"words": len(words), "sentences": len(sentences), "characters": len(input_text)}
        return ToolResult(content=json.dumps(stats), metadata={k: str(v) for k, v in stats.items()})


class KeywordExtractorTool(Tool):
    """Returns the most frequent non-trivial words of the input text."""

    def run(self, *, input_text: str, context: ToolContext) -> ToolResult:
        limit = int(self.config.get("limit", 5))
        words = [w.lower() for w in re.findall(r"[A-Za-z][A-Za-z0-9_-]+", input_text)]
        counts = Counter(w for w in words if w not in _STOPWORDS)
        keywords = [word for word, _ in counts.most_common(limit)]
        return ToolResult(content=", ".join(keywords) or "no keywords", metadata={"count": str(len(keywords))})


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register the default toolset."""

    registry.add_factory("structured_lookup", lambda: StructuredLookupTool(name="structured_lookup"), replace=True)
    registry.add_factory("text_stats", lambda: TextStatsTool(name="text_stats"), replace=True)
    registry.add_factory(
        "keyword_extractor", lambda: KeywordExtractorTool(name="keyword_extractor"), replace=True
    )
