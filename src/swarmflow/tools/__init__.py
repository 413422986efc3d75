"""Tool abstractions and registries."""

from .base import Tool, ToolContext, ToolInfo, ToolResult
from .registry import ToolRegistry

__all__ = ["Tool", "ToolContext", "ToolInfo", "ToolResult", "ToolRegistry"]
