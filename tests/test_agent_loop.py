from __future__ import annotations

from datetime import datetime, timezone

import pytest

from opsy.agent.channels import Communication
from opsy.agent.loop import Agent, convert_tools
from opsy.agent.models import Status
from opsy.config import AppConfig, ToolsConfig
from opsy.context import RunContext
from opsy.errors import (
    InvalidInputTypeError,
    MaxTurnsExceededError,
    ModelRequestError,
    NoRunOptionsError,
    NoTaskProvidedError,
    RunCancelledError,
    ToolExecutionError,
)
from opsy.llm.client import AnthropicClient, ModelResponse
from opsy.prompts import render_agent_system_prompt
from opsy.tools.models import ExecutedCommand, RunRequest, ToolOutput
from opsy.tools.tool import new_exec_tool


def _text(text: str) -> dict[str, object]:
    return {"type": "text", "text": text}


def _tool_use(block_id: str, name: str, tool_input: object) -> dict[str, object]:
    return {"type": "tool_use", "id": block_id, "name": name, "input": tool_input}


def _response(*blocks: dict[str, object]) -> ModelResponse:
    return AnthropicClient.parse_response({"content": list(blocks), "stop_reason": "end_turn"})


class FakeClient:
    def __init__(self, responses: list[ModelResponse | Exception]) -> None:
        self.responses = list(responses)
        self.payloads: list[dict[str, object]] = []
        self.timeouts: list[float | None] = []

    def create_message(
        self,
        payload: dict[str, object],
        *,
        timeout: float | None = None,
    ) -> ModelResponse:
        self.payloads.append(payload)
        self.timeouts.append(timeout)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeTool:
    def __init__(
        self,
        name: str,
        *,
        output: ToolOutput | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.description = f"{name} description"
        self.input_schema = {"type": "object", "properties": {}, "required": []}
        self.output = output if output is not None else ToolOutput(tool=name, result=f"{name} ok")
        self.error = error
        self.calls: list[dict[str, object]] = []

    def execute(self, inputs: dict[str, object], ctx: RunContext | None = None) -> ToolOutput:
        self.calls.append(inputs)
        if self.error is not None:
            raise self.error
        return self.output


def _agent(client: FakeClient, *, max_turns: int | None = None) -> tuple[Agent, Communication]:
    communication = Communication.with_capacity(100)
    agent = Agent(
        client=client,
        config=AppConfig(),
        communication=communication,
        max_turns=max_turns,
    )
    return agent, communication


def _executed_command(output: str = "hello") -> ExecutedCommand:
    now = datetime.now(timezone.utc)
    return ExecutedCommand(
        command="echo hello",
        working_directory="/tmp",
        exit_code=0,
        output=output,
        started_at=now,
        completed_at=now,
    )


def test_run_without_request_fails_before_emitting_status() -> None:
    client = FakeClient([])
    agent, communication = _agent(client)

    with pytest.raises(NoRunOptionsError, match="no run options provided"):
        agent.run(None)

    assert communication.status.drain() == []
    assert client.payloads == []


def test_run_with_empty_task_fails_before_emitting_status() -> None:
    client = FakeClient([])
    agent, communication = _agent(client)

    with pytest.raises(NoTaskProvidedError, match="no task provided"):
        agent.run(RunRequest(task=""))

    assert communication.status.drain() == []


def test_text_only_reply_finishes_in_one_turn() -> None:
    client = FakeClient([_response(_text("Hello there"))])
    agent, communication = _agent(client)

    outputs = agent.run(RunRequest(task="say hello"))

    assert outputs == []
    assert communication.status.drain() == [Status.RUNNING]
    messages = communication.messages.drain()
    assert [(m.tool, m.message) for m in messages] == [("", "Hello there")]

    payload = client.payloads[0]
    assert payload["system"] == render_agent_system_prompt("/bin/bash")
    assert payload["model"] == "claude-3-5-sonnet-latest"
    assert payload["max_tokens"] == 1024
    assert payload["temperature"] == 0.5
    assert payload["messages"] == [
        {"role": "user", "content": [{"type": "text", "text": "say hello"}]}
    ]
    assert "tools" not in payload
    assert "tool_choice" not in payload


def test_tool_result_is_fed_back_to_the_model() -> None:
    tool = FakeTool("lookup", output=ToolOutput(tool="lookup", result="42"))
    first = _response(_text("Let me check"), _tool_use("toolu_1", "lookup", {"query": "answer"}))
    client = FakeClient([first, _response(_text("The answer is 42"))])
    agent, communication = _agent(client)

    outputs = agent.run(RunRequest(task="find the answer", tools={"lookup": tool}))

    assert outputs == [tool.output]
    assert tool.calls == [{"query": "answer"}]
    assert len(client.payloads) == 2

    first_payload = client.payloads[0]
    assert first_payload["tools"] == [
        {
            "name": "lookup",
            "description": "lookup description",
            "input_schema": tool.input_schema,
        }
    ]
    assert first_payload["tool_choice"] == {"type": "auto", "disable_parallel_tool_use": True}

    conversation = client.payloads[1]["messages"]
    assert len(conversation) == 3
    assert conversation[1] == {"role": "assistant", "content": first.raw_content}
    assert conversation[2] == {
        "role": "user",
        "content": [
            {
                "type": "tool_result",
                "tool_use_id": "toolu_1",
                "content": "42",
                "is_error": False,
            }
        ],
    }
    assert [m.message for m in communication.messages.drain()] == [
        "Let me check",
        "42",
        "The answer is 42",
    ]


def test_executed_commands_go_to_the_commands_channel() -> None:
    command = _executed_command()
    tool = FakeTool(
        "exec",
        output=ToolOutput(tool="exec", result="hello", executed_command=command),
    )
    client = FakeClient(
        [
            _response(_tool_use("toolu_1", "exec", {"command": "echo hello"})),
            _response(_text("done")),
        ]
    )
    agent, communication = _agent(client)

    agent.run(RunRequest(task="greet", tools={"exec": tool}))

    assert communication.commands.drain() == [command]
    assert [m.message for m in communication.messages.drain()] == ["done"]


def test_tool_errors_are_reported_to_the_model() -> None:
    failed = ToolOutput(tool="exec", result="boom", is_error=True)
    tool = FakeTool("exec", error=ToolExecutionError("exit status 1", output=failed))
    client = FakeClient(
        [
            _response(_tool_use("toolu_1", "exec", {"command": "false"})),
            _response(_text("it failed")),
        ]
    )
    agent, _ = _agent(client)

    outputs = agent.run(RunRequest(task="fail", tools={"exec": tool}))

    assert outputs == [failed]
    tool_result = client.payloads[1]["messages"][2]["content"][0]
    assert tool_result["is_error"] is True
    assert tool_result["content"] == "boom"


def test_command_that_cannot_start_is_reported_without_aborting(tmp_path) -> None:
    exec_tool = new_exec_tool(ToolsConfig())
    client = FakeClient(
        [
            _response(
                _tool_use("toolu_1", "exec", {"command": "echo a\x00b", "working_directory": str(tmp_path)})
            ),
            _response(_text("that command could not start")),
        ]
    )
    agent, communication = _agent(client)

    outputs = agent.run(RunRequest(task="echo", tools={"exec": exec_tool}))

    assert len(outputs) == 1
    assert outputs[0].is_error is True
    tool_result = client.payloads[1]["messages"][2]["content"][0]
    assert tool_result["is_error"] is True
    assert [m.message for m in communication.messages.drain()] == ["that command could not start"]


def test_block_with_invalid_inputs_is_skipped() -> None:
    tool = FakeTool("exec", error=InvalidInputTypeError("command"))
    client = FakeClient([_response(_tool_use("toolu_1", "exec", {"command": 5}))])
    agent, _ = _agent(client)

    outputs = agent.run(RunRequest(task="bad input", tools={"exec": tool}))

    assert outputs == []
    assert len(client.payloads) == 1


def test_unknown_tool_is_skipped() -> None:
    client = FakeClient([_response(_tool_use("toolu_1", "missing", {}))])
    agent, _ = _agent(client)

    outputs = agent.run(RunRequest(task="use missing tool", tools={"exec": FakeTool("exec")}))

    assert outputs == []
    assert len(client.payloads) == 1


def test_tool_input_given_as_json_string_is_decoded() -> None:
    tool = FakeTool("lookup")
    client = FakeClient(
        [
            _response(_tool_use("toolu_1", "lookup", '{"query": "x"}')),
            _response(_text("ok")),
        ]
    )
    agent, _ = _agent(client)

    agent.run(RunRequest(task="lookup", tools={"lookup": tool}))

    assert tool.calls == [{"query": "x"}]


@pytest.mark.parametrize("tool_input", ["not json", "[1, 2]", None])
def test_tool_input_that_is_not_an_object_is_skipped(tool_input: object) -> None:
    tool = FakeTool("lookup")
    client = FakeClient([_response(_tool_use("toolu_1", "lookup", tool_input))])
    agent, _ = _agent(client)

    outputs = agent.run(RunRequest(task="lookup", tools={"lookup": tool}))

    assert outputs == []
    assert tool.calls == []


def test_model_failure_carries_outputs_collected_so_far() -> None:
    tool = FakeTool("lookup")
    client = FakeClient(
        [
            _response(_tool_use("toolu_1", "lookup", {})),
            ModelRequestError("Model request failed with HTTP 500: Internal Server Error"),
        ]
    )
    agent, communication = _agent(client)

    with pytest.raises(ModelRequestError) as excinfo:
        agent.run(RunRequest(task="lookup", tools={"lookup": tool}))

    assert excinfo.value.outputs == [tool.output]
    assert communication.status.drain() == [Status.RUNNING]


def test_cancelled_context_stops_before_calling_the_model() -> None:
    client = FakeClient([])
    agent, _ = _agent(client)
    ctx = RunContext.background()
    ctx.cancel()

    with pytest.raises(RunCancelledError, match="context canceled"):
        agent.run(RunRequest(task="anything"), ctx)

    assert client.payloads == []


def test_cancellation_during_a_tool_keeps_its_output() -> None:
    class CancellingTool(FakeTool):
        def execute(self, inputs: dict[str, object], ctx: RunContext | None = None) -> ToolOutput:
            assert ctx is not None
            ctx.cancel()
            return super().execute(inputs, ctx)

    tool = CancellingTool("lookup")
    client = FakeClient([_response(_tool_use("toolu_1", "lookup", {}))])
    agent, _ = _agent(client)

    with pytest.raises(RunCancelledError) as excinfo:
        agent.run(RunRequest(task="lookup", tools={"lookup": tool}))

    assert excinfo.value.outputs == [tool.output]
    assert len(client.payloads) == 1


def test_model_call_timeout_follows_context_deadline() -> None:
    client = FakeClient([_response(_text("ok"))])
    agent, _ = _agent(client)

    agent.run(RunRequest(task="quick"), RunContext.background().with_timeout(30))

    timeout = client.timeouts[0]
    assert timeout is not None
    assert 0 < timeout <= 30


def test_max_turns_stops_a_model_that_keeps_calling_tools() -> None:
    tool = FakeTool("lookup")
    client = FakeClient(
        [
            _response(_tool_use("toolu_1", "lookup", {})),
            _response(_tool_use("toolu_2", "lookup", {})),
        ]
    )
    agent, _ = _agent(client, max_turns=2)

    with pytest.raises(MaxTurnsExceededError) as excinfo:
        agent.run(RunRequest(task="loop", tools={"lookup": tool}))

    assert excinfo.value.max_turns == 2
    assert len(excinfo.value.outputs) == 2
    assert len(client.payloads) == 2


def test_max_turns_defaults_to_config_value() -> None:
    config = AppConfig(max_turns=7)

    agent = Agent(client=FakeClient([]), config=config, communication=Communication())

    assert agent.max_turns == 7


def test_request_prompt_and_caller_override_defaults() -> None:
    client = FakeClient([_response(_text("nested reply"))])
    agent, communication = _agent(client)

    agent.run(RunRequest(task="nested", prompt="custom system", caller="Git"))

    assert client.payloads[0]["system"] == "custom system"
    assert [(m.tool, m.message) for m in communication.messages.drain()] == [("Git", "nested reply")]


def test_convert_tools_preserves_name_description_and_schema() -> None:
    tools = {"a": FakeTool("a"), "b": FakeTool("b")}

    specs = convert_tools(tools)

    assert [spec["name"] for spec in specs] == ["a", "b"]
    assert specs[0]["description"] == "a description"
    assert specs[1]["input_schema"] == tools["b"].input_schema
    assert convert_tools({}) == []
