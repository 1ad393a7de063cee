"""Exception types raised across opsy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from opsy.tools.models import ToolOutput


class OpsyError(Exception):
    """Base class for all opsy errors."""


class ConfigError(OpsyError):
    """Configuration failed validation."""


class NoRunOptionsError(OpsyError):
    def __init__(self) -> None:
        super().__init__("no run options provided")


class NoTaskProvidedError(OpsyError):
    def __init__(self) -> None:
        super().__init__("no task provided")


class InvalidInputTypeError(OpsyError):
    """A tool input is missing or has the wrong type."""

    def __init__(self, input_name: str) -> None:
        super().__init__(f"invalid input type: {input_name}")
        self.input_name = input_name


class ToolDefinitionError(OpsyError):
    """A declarative tool definition could not be parsed or is invalid."""


class MissingDisplayNameError(ToolDefinitionError):
    def __init__(self) -> None:
        super().__init__("missing tool display name")


class MissingDescriptionError(ToolDefinitionError):
    def __init__(self) -> None:
        super().__init__("missing tool description")


class InputMissingTypeError(ToolDefinitionError):
    def __init__(self, input_name: str) -> None:
        super().__init__(f"missing tool input type: {input_name!r}")
        self.input_name = input_name


class InputMissingDescriptionError(ToolDefinitionError):
    def __init__(self, input_name: str) -> None:
        super().__init__(f"missing tool input description: {input_name!r}")
        self.input_name = input_name


class ExecutableNotFoundError(ToolDefinitionError):
    def __init__(self, executable: str) -> None:
        super().__init__(f"tool executable not found: {executable!r}")
        self.executable = executable


class ToolLoadError(OpsyError):
    """The tool definitions source could not be read."""


class ToolNotFoundError(OpsyError, LookupError):
    def __init__(self, name: str) -> None:
        super().__init__(f"tool not found: {name}")
        self.name = name


class ToolExecutionError(OpsyError):
    """A tool ran but failed.

    ``output`` holds the populated tool output so callers can still report
    what the tool produced.
    """

    def __init__(self, message: str, *, output: ToolOutput) -> None:
        super().__init__(message)
        self.output = output


class RunInterruptedError(OpsyError):
    """An agent run stopped before the model gave its final answer.

    ``outputs`` holds the tool outputs collected before the interruption.
    """

    outputs: list[ToolOutput]

    def __init__(self, message: str, *, outputs: list[ToolOutput] | None = None) -> None:
        super().__init__(message)
        self.outputs = list(outputs) if outputs else []


class ModelRequestError(RunInterruptedError):
    """The language-model API call failed."""


class RunCancelledError(RunInterruptedError):
    """The run context was cancelled or its deadline passed."""


class MaxTurnsExceededError(RunInterruptedError):
    def __init__(self, max_turns: int, *, outputs: list[ToolOutput] | None = None) -> None:
        super().__init__(
            f"model still requesting tools after {max_turns} turns",
            outputs=outputs,
        )
        self.max_turns = max_turns
