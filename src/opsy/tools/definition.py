"""Declarative tool definitions and their input schemas."""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field

import yaml

from opsy.errors import (
    ExecutableNotFoundError,
    InputMissingDescriptionError,
    InputMissingTypeError,
    MissingDescriptionError,
    MissingDisplayNameError,
    ToolDefinitionError,
)

INPUT_TASK = "task"
INPUT_WORKING_DIRECTORY = "working_directory"
INPUT_COMMAND = "command"


@dataclass(slots=True)
class ToolInput:
    """One parameter a tool accepts."""

    type: str = ""
    description: str = ""
    default: object = None
    examples: list[object] = field(default_factory=list)
    optional: bool = False

    @classmethod
    def from_mapping(cls, name: str, data: object) -> ToolInput:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            msg = f"input {name!r} must be a mapping"
            raise ToolDefinitionError(msg)
        examples = data.get("examples")
        return cls(
            type=_to_string(data.get("type")),
            description=_to_string(data.get("description")),
            default=data.get("default"),
            examples=list(examples) if isinstance(examples, list) else [],
            optional=bool(data.get("optional", False)),
        )


@dataclass(slots=True)
class ToolDefinition:
    """Contents of one tool definition file."""

    display_name: str = ""
    description: str = ""
    rules: list[str] = field(default_factory=list)
    inputs: dict[str, ToolInput] = field(default_factory=dict)
    executable: str | None = None

    @classmethod
    def from_mapping(cls, data: object) -> ToolDefinition:
        if not isinstance(data, dict):
            msg = "tool definition must be a mapping"
            raise ToolDefinitionError(msg)
        raw_rules = data.get("rules") or []
        if not isinstance(raw_rules, list):
            msg = "rules must be a list"
            raise ToolDefinitionError(msg)
        raw_inputs = data.get("inputs") or {}
        if not isinstance(raw_inputs, dict):
            msg = "inputs must be a mapping"
            raise ToolDefinitionError(msg)
        return cls(
            display_name=_to_string(data.get("display_name")),
            description=_to_string(data.get("description")),
            rules=[str(rule).strip() for rule in raw_rules if str(rule).strip()],
            inputs={
                str(name): ToolInput.from_mapping(str(name), value)
                for name, value in raw_inputs.items()
            },
            executable=_to_string(data.get("executable")) or None,
        )

    @classmethod
    def from_yaml(cls, text: str) -> ToolDefinition:
        try:
            parsed = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            msg = f"failed to parse tool: {exc}"
            raise ToolDefinitionError(msg) from exc
        return cls.from_mapping(parsed)


def validate_definition(definition: ToolDefinition) -> None:
    """Raise the first problem that makes ``definition`` unusable."""
    if not definition.display_name:
        raise MissingDisplayNameError()
    if not definition.description:
        raise MissingDescriptionError()
    for name, tool_input in definition.inputs.items():
        if not tool_input.type:
            raise InputMissingTypeError(name)
        if not tool_input.description:
            raise InputMissingDescriptionError(name)
    if definition.executable and shutil.which(definition.executable) is None:
        raise ExecutableNotFoundError(definition.executable)


def common_inputs() -> dict[str, ToolInput]:
    """Parameters every declarative tool accepts."""
    return {
        INPUT_TASK: ToolInput(
            type="string",
            description="Task (without parameters) the user wants to complete with the tool.",
            examples=["Clone the repository", "Get deployments"],
        ),
        INPUT_WORKING_DIRECTORY: ToolInput(
            type="string",
            description="Working directory to use for the tool.",
            default=".",
            examples=["~/projects/my-project", "/tmp"],
            optional=True,
        ),
    }


def build_input_schema(inputs: dict[str, ToolInput]) -> dict[str, object]:
    """JSON-schema object describing ``inputs``."""
    properties: dict[str, object] = {}
    required: list[str] = []
    for name in sorted(inputs):
        tool_input = inputs[name]
        prop: dict[str, object] = {
            "type": tool_input.type,
            "description": tool_input.description,
        }
        if tool_input.default not in (None, ""):
            prop["default"] = tool_input.default
        if tool_input.examples:
            prop["examples"] = list(tool_input.examples)
        properties[name] = prop
        if not tool_input.optional:
            required.append(name)
    return {"type": "object", "properties": properties, "required": required}


def _to_string(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()
