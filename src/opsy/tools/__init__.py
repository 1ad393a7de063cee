"""Tools the agent can invoke and the registry that owns them."""

from .definition import ToolDefinition, ToolInput, build_input_schema, validate_definition
from .models import ExecutedCommand, RunRequest, Runner, ToolOutput
from .registry import ToolRegistry
from .tool import EXEC_TOOL_NAME, Tool, ToolKind, new_declarative_tool, new_exec_tool

__all__ = [
    "EXEC_TOOL_NAME",
    "ExecutedCommand",
    "RunRequest",
    "Runner",
    "Tool",
    "ToolDefinition",
    "ToolInput",
    "ToolKind",
    "ToolOutput",
    "ToolRegistry",
    "build_input_schema",
    "new_declarative_tool",
    "new_exec_tool",
    "validate_definition",
]
