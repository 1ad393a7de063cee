"""Declarative tools: complete a task through a nested, exec-only agent run."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from opsy.context import RunContext
from opsy.errors import InvalidInputTypeError, OpsyError, RunInterruptedError, ToolExecutionError
from opsy.prompts import render_tool_user_prompt
from opsy.tools.definition import INPUT_TASK
from opsy.tools.models import RunRequest, ToolOutput

if TYPE_CHECKING:
    from opsy.tools.tool import Tool

LOGGER = logging.getLogger(__name__)


def execute_declarative(tool: Tool, inputs: dict[str, Any], ctx: RunContext) -> ToolOutput:
    task = inputs.get(INPUT_TASK)
    if not isinstance(task, str):
        raise InvalidInputTypeError(INPUT_TASK)
    if tool.runner is None:
        msg = f"tool {tool.name} has no runner"
        raise OpsyError(msg)

    LOGGER.info("tool_executing", extra={"tool_name": tool.name, "inputs": inputs})
    request = RunRequest(
        task=render_tool_user_prompt(
            executable=tool.executable,
            task=task,
            inputs_json=json.dumps(inputs, indent=2, default=str),
        ),
        prompt=tool.system_prompt,
        caller=tool.display_name,
        tools=dict(tool.nested_tools),
    )
    output = ToolOutput(tool=tool.name)

    try:
        run_outputs = tool.runner.run(request, ctx.with_timeout(tool.timeout))
    except RunInterruptedError as exc:
        _record_failure(tool, output, exc.outputs, exc)
        raise ToolExecutionError(str(exc), output=output) from exc
    except OpsyError as exc:
        _record_failure(tool, output, [], exc)
        raise ToolExecutionError(str(exc), output=output) from exc

    if run_outputs:
        output.result = run_outputs[-1].result
    return output


def _record_failure(
    tool: Tool,
    output: ToolOutput,
    partial_outputs: list[ToolOutput],
    exc: Exception,
) -> None:
    LOGGER.error("tool_run_failed", extra={"tool_name": tool.name, "error": str(exc)})
    output.is_error = True
    if partial_outputs:
        output.result = partial_outputs[-1].result
