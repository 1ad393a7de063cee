"""Orchestration loop between the language model and the tools."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Protocol

from opsy.agent.channels import Communication
from opsy.agent.models import Message, Status
from opsy.config import AppConfig
from opsy.context import RunContext
from opsy.errors import (
    MaxTurnsExceededError,
    NoRunOptionsError,
    NoTaskProvidedError,
    OpsyError,
    RunInterruptedError,
    ToolExecutionError,
)
from opsy.llm.client import ModelResponse, TextBlock, ToolUseBlock
from opsy.prompts import render_agent_system_prompt
from opsy.tools.models import RunRequest, ToolOutput
from opsy.tools.tool import Tool

LOGGER = logging.getLogger(__name__)

ConversationTurn = dict[str, object]
ToolSpec = dict[str, object]


class ModelClient(Protocol):
    def create_message(
        self,
        payload: dict[str, object],
        *,
        timeout: float | None = None,
    ) -> ModelResponse:
        ...


class Agent:
    """Runs the plan/act/observe cycle until the model stops requesting tools.

    The agent keeps no per-run state: each :meth:`run` owns its conversation,
    so one instance can serve the top-level task and every nested tool run.
    At most one tool is executed per model turn.
    """

    def __init__(
        self,
        *,
        client: ModelClient,
        config: AppConfig,
        communication: Communication | None = None,
        max_turns: int | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.communication = communication if communication is not None else Communication()
        self.max_turns = config.max_turns if max_turns is None else max_turns
        LOGGER.debug(
            "agent_initialized",
            extra={
                "model": config.anthropic.model,
                "max_tokens": config.anthropic.max_tokens,
                "temperature": config.anthropic.temperature,
                "max_turns": self.max_turns,
            },
        )

    def run(self, request: RunRequest | None, ctx: RunContext | None = None) -> list[ToolOutput]:
        """Drive ``request`` to completion and return every tool output produced.

        Raises :class:`NoRunOptionsError` / :class:`NoTaskProvidedError` before
        any status is emitted, and :class:`RunInterruptedError` subclasses when
        the model call fails, the context is cancelled, or the turn cap is hit.
        """
        if request is None:
            raise NoRunOptionsError()
        if not request.task:
            raise NoTaskProvidedError()
        if ctx is None:
            ctx = RunContext.background()

        prompt = request.prompt or render_agent_system_prompt(self.config.tools.exec.shell)
        log_context = {
            "task": request.task,
            "caller": request.caller,
            "tools_count": len(request.tools),
        }
        LOGGER.debug("agent_running", extra=log_context)
        self.communication.status.send(Status.RUNNING)

        outputs: list[ToolOutput] = []
        conversation: list[ConversationTurn] = [
            {"role": "user", "content": [{"type": "text", "text": request.task}]}
        ]
        turns = 0
        try:
            while True:
                if self.max_turns and turns >= self.max_turns:
                    raise MaxTurnsExceededError(self.max_turns)
                ctx.raise_if_done()

                payload = self._build_payload(prompt, conversation, request.tools)
                response = self.client.create_message(payload, timeout=ctx.remaining())
                turns += 1

                tool_results: list[dict[str, object]] = []
                for block in response.content:
                    if isinstance(block, TextBlock):
                        self._send_message(request.caller, block.text)
                    elif isinstance(block, ToolUseBlock):
                        result_block = self._use_tool(block, request, ctx, outputs)
                        if result_block is not None:
                            tool_results.append(result_block)

                conversation.append(response.to_param())
                if not tool_results:
                    break
                conversation.append({"role": "user", "content": tool_results})
        except RunInterruptedError as exc:
            exc.outputs = list(outputs)
            LOGGER.error("agent_run_failed", extra={**log_context, "error": str(exc)})
            raise

        LOGGER.debug("agent_finished", extra={**log_context, "turns": turns})
        return outputs

    def _build_payload(
        self,
        prompt: str,
        conversation: list[ConversationTurn],
        tools: Mapping[str, Tool],
    ) -> dict[str, object]:
        settings = self.config.anthropic
        payload: dict[str, object] = {
            "model": settings.model,
            "max_tokens": settings.max_tokens,
            "system": prompt,
            "messages": list(conversation),
            "temperature": settings.temperature,
        }
        tool_specs = convert_tools(tools)
        if tool_specs:
            payload["tools"] = tool_specs
            payload["tool_choice"] = {"type": "auto", "disable_parallel_tool_use": True}
        return payload

    def _use_tool(
        self,
        block: ToolUseBlock,
        request: RunRequest,
        ctx: RunContext,
        outputs: list[ToolOutput],
    ) -> dict[str, object] | None:
        """Execute one tool-use block; ``None`` means the block was skipped."""
        inputs = _parse_tool_inputs(block)
        if inputs is None:
            return None

        tool = request.tools.get(block.name)
        if tool is None:
            LOGGER.warning("tool_not_found", extra={"tool_name": block.name})
            return None

        try:
            output = tool.execute(inputs, ctx)
        except ToolExecutionError as exc:
            LOGGER.error(
                "tool_execution_failed",
                extra={"tool_name": block.name, "error": str(exc)},
            )
            output = exc.output
        except RunInterruptedError:
            raise
        except OpsyError as exc:
            LOGGER.error(
                "tool_execution_skipped",
                extra={"tool_name": block.name, "error": str(exc)},
            )
            return None

        outputs.append(output)
        ctx.raise_if_done()

        if output.executed_command is not None:
            self.communication.commands.send(output.executed_command)
        elif output.result:
            self._send_message(request.caller, output.result)
        LOGGER.debug(
            "tool_result",
            extra={
                "tool_name": block.name,
                "is_error": output.is_error,
                "result_length": len(output.result),
            },
        )
        return {
            "type": "tool_result",
            "tool_use_id": block.id,
            "content": output.result,
            "is_error": output.is_error,
        }

    def _send_message(self, caller: str, text: str) -> None:
        self.communication.messages.send(Message(tool=caller, message=text))


def convert_tools(tools: Mapping[str, Tool]) -> list[ToolSpec]:
    """Model-facing specs (name, description, input schema) for ``tools``."""
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "input_schema": tool.input_schema,
        }
        for tool in tools.values()
    ]


def _parse_tool_inputs(block: ToolUseBlock) -> dict[str, object] | None:
    raw = block.input
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.error(
                "tool_inputs_unmarshal_failed",
                extra={"tool_name": block.name, "error": str(exc)},
            )
            return None
    if not isinstance(raw, dict):
        LOGGER.error(
            "tool_inputs_unmarshal_failed",
            extra={"tool_name": block.name, "error": "tool input is not an object"},
        )
        return None
    return raw
