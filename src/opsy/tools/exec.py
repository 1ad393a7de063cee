"""Exec tool: run one shell command as the leaf action of a task."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

from opsy.context import RunContext
from opsy.errors import InvalidInputTypeError, ToolExecutionError
from opsy.shell import ShellRunner
from opsy.tools.definition import INPUT_COMMAND, INPUT_WORKING_DIRECTORY
from opsy.tools.models import ExecutedCommand, ToolOutput

if TYPE_CHECKING:
    from opsy.tools.tool import Tool

LOGGER = logging.getLogger(__name__)


def execute_command(tool: Tool, inputs: dict[str, Any], ctx: RunContext) -> ToolOutput:
    """Run ``inputs["command"]`` and report it as an executed command.

    Raises :class:`ToolExecutionError` carrying the populated output when the
    command exits non-zero, is killed, or cannot be started.
    """
    command = inputs.get(INPUT_COMMAND)
    if not isinstance(command, str):
        raise InvalidInputTypeError(INPUT_COMMAND)

    working_directory = resolve_working_directory(inputs)
    exec_ctx = ctx.with_timeout(tool.timeout)
    result = ShellRunner(tool.config.exec.shell).execute(
        command,
        cwd=working_directory,
        timeout=exec_ctx.remaining(),
        interrupted=lambda: exec_ctx.cancelled,
    )

    output_text = result.output.strip()
    output = ToolOutput(
        tool=tool.name,
        result=output_text,
        is_error=result.failed,
        executed_command=ExecutedCommand(
            command=command,
            working_directory=working_directory,
            exit_code=result.returncode,
            output=output_text,
            started_at=result.started_at,
            completed_at=result.completed_at,
        ),
    )
    error_message = result.error_message
    if error_message is not None:
        LOGGER.error(
            "command_execution_failed",
            extra={
                "working_directory": working_directory,
                "exit_code": result.returncode,
                "error": error_message,
            },
        )
        raise ToolExecutionError(error_message, output=output)
    return output


def resolve_working_directory(inputs: dict[str, Any]) -> str:
    """Map the ``working_directory`` input onto a directory path.

    ``.`` or a missing value means the current directory; ``./x`` and bare
    names are relative to it; anything else is used as given. Trailing
    separators are stripped.
    """
    current = os.getcwd().rstrip(os.sep) or os.sep
    value = inputs.get(INPUT_WORKING_DIRECTORY)
    if not isinstance(value, str) or value in ("", "."):
        return current

    value = os.path.expanduser(value)
    if value.startswith("./") or os.sep not in value:
        return os.path.normpath(os.path.join(current, value.removeprefix("./")))

    prefix = current.rstrip(os.sep) + os.sep
    if value.startswith(prefix):
        value = os.path.normpath(os.path.join(prefix, value[len(prefix):]))
    return value.rstrip(os.sep) or os.sep
