"""Tool descriptors shared by the registry and the agent loop."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from opsy.config import ToolsConfig
from opsy.context import RunContext
from opsy.prompts import render_tool_system_prompt
from opsy.tools.declarative import execute_declarative
from opsy.tools.definition import (
    INPUT_COMMAND,
    INPUT_WORKING_DIRECTORY,
    ToolDefinition,
    ToolInput,
    build_input_schema,
    common_inputs,
)
from opsy.tools.exec import execute_command
from opsy.tools.models import Runner, ToolOutput

LOGGER = logging.getLogger(__name__)

EXEC_TOOL_NAME = "exec"


class ToolKind(str, Enum):
    DECLARATIVE = "declarative"
    EXEC = "exec"


@dataclass(frozen=True, slots=True, eq=False)
class Tool:
    """A named capability the model can invoke.

    ``kind`` selects how :meth:`execute` behaves: declarative tools run a
    nested agent loop restricted to ``nested_tools``; the exec tool runs a
    shell command directly.
    """

    name: str
    display_name: str
    description: str
    input_schema: dict[str, object]
    kind: ToolKind
    config: ToolsConfig
    executable: str | None = None
    system_prompt: str = ""
    runner: Runner | None = None
    nested_tools: Mapping[str, Tool] = field(default_factory=dict)

    @property
    def timeout(self) -> int:
        """Seconds this tool may run for."""
        if self.kind is ToolKind.EXEC:
            return self.config.exec_timeout
        return self.config.timeout

    def execute(self, inputs: dict[str, Any], ctx: RunContext | None = None) -> ToolOutput:
        if ctx is None:
            ctx = RunContext.background()
        if self.kind is ToolKind.EXEC:
            return execute_command(self, inputs, ctx)
        return execute_declarative(self, inputs, ctx)


def new_exec_tool(config: ToolsConfig) -> Tool:
    inputs = {
        INPUT_COMMAND: ToolInput(
            type="string",
            description="The shell command, including all the arguments, to execute",
            examples=[
                "ls -l | grep 'myfile'",
                "git status",
                "curl -X GET https://api.example.com/data",
            ],
        ),
        INPUT_WORKING_DIRECTORY: ToolInput(
            type="string",
            description="The working directory for the command",
            default=".",
            examples=["/path/to/working/directory", "."],
            optional=True,
        ),
    }
    return Tool(
        name=EXEC_TOOL_NAME,
        display_name="Exec",
        description=f"Executes the provided shell command via the `{config.exec.shell}` shell.",
        input_schema=build_input_schema(inputs),
        kind=ToolKind.EXEC,
        config=config,
    )


def new_declarative_tool(
    name: str,
    definition: ToolDefinition,
    config: ToolsConfig,
    runner: Runner,
) -> Tool:
    """Build a tool that completes its task through a nested, exec-only agent run."""
    tool = Tool(
        name=name,
        display_name=definition.display_name,
        description=definition.description,
        input_schema=build_input_schema({**common_inputs(), **definition.inputs}),
        kind=ToolKind.DECLARATIVE,
        config=config,
        executable=definition.executable,
        system_prompt=render_tool_system_prompt(
            name=definition.display_name,
            shell=config.exec.shell,
            executable=definition.executable,
            rules=definition.rules,
        ),
        runner=runner,
        nested_tools={EXEC_TOOL_NAME: new_exec_tool(config)},
    )
    LOGGER.debug(
        "tool_loaded",
        extra={
            "tool_name": name,
            "display_name": tool.display_name,
            "executable": tool.executable,
        },
    )
    return tool
