"""Events the agent loop publishes to the presentation layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Status(str, Enum):
    READY = "Ready"
    RUNNING = "Running"
    FINISHED = "Finished"
    ERROR = "Error"

    @property
    def terminal(self) -> bool:
        return self in (Status.FINISHED, Status.ERROR)


@dataclass(frozen=True, slots=True)
class Message:
    """Text from the model or a tool; ``tool`` is empty for the top-level agent."""

    tool: str
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
