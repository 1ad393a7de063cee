"""Bounded FIFO channels between the agent loop and its consumers."""

from __future__ import annotations

import queue
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from opsy.agent.models import Message, Status
from opsy.tools.models import ExecutedCommand

T = TypeVar("T")

DEFAULT_CAPACITY = 1

_CLOSED = object()


class Channel(Generic[T]):
    """Single-consumer queue with blocking sends.

    With the default capacity of one a producer runs at most one item ahead
    of its consumer, so a slow consumer slows the agent loop down rather than
    letting events pile up.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            msg = "channel capacity must be at least 1"
            raise ValueError(msg)
        self._queue: queue.Queue[object] = queue.Queue(maxsize=capacity)

    def send(self, item: T) -> None:
        self._queue.put(item)

    def receive(self, timeout: float | None = None) -> T:
        """Next item; raises ``EOFError`` once the channel is closed and ``queue.Empty`` on timeout."""
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Leave the marker in place for any later receive.
            self._queue.put(_CLOSED)
            raise EOFError("channel closed")
        return item  # type: ignore[return-value]

    def close(self) -> None:
        self._queue.put(_CLOSED)

    def drain(self) -> list[T]:
        """Items currently buffered, without blocking."""
        items: list[T] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return items
            if item is _CLOSED:
                self._queue.put(_CLOSED)
                return items
            items.append(item)  # type: ignore[arg-type]

    def __iter__(self) -> Iterator[T]:
        while True:
            try:
                yield self.receive()
            except EOFError:
                return


@dataclass(slots=True)
class Communication:
    """The three event streams an agent run publishes on."""

    messages: Channel[Message] = field(default_factory=Channel)
    commands: Channel[ExecutedCommand] = field(default_factory=Channel)
    status: Channel[Status] = field(default_factory=Channel)

    @classmethod
    def with_capacity(cls, capacity: int) -> Communication:
        return cls(
            messages=Channel(capacity),
            commands=Channel(capacity),
            status=Channel(capacity),
        )

    def close(self) -> None:
        self.messages.close()
        self.commands.close()
        self.status.close()
