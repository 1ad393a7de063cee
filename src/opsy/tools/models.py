"""Data passed between tools and the agent loop."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from opsy.context import RunContext
    from opsy.tools.tool import Tool


@dataclass(frozen=True, slots=True)
class ExecutedCommand:
    """A shell command run by the exec tool."""

    command: str
    working_directory: str
    exit_code: int
    output: str
    started_at: datetime
    completed_at: datetime


@dataclass(slots=True)
class ToolOutput:
    """Result of one tool execution."""

    tool: str
    result: str = ""
    is_error: bool = False
    executed_command: ExecutedCommand | None = None


@dataclass(frozen=True, slots=True)
class RunRequest:
    """A task for the agent loop.

    ``prompt`` overrides the default system prompt when non-empty and
    ``caller`` labels the messages the run emits.
    """

    task: str
    prompt: str = ""
    caller: str = ""
    tools: Mapping[str, Tool] = field(default_factory=dict)


class Runner(Protocol):
    """Anything that can run a nested agent request."""

    def run(self, request: RunRequest | None, ctx: RunContext | None = None) -> list[ToolOutput]:
        ...
