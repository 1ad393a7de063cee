"""Command-line interface for opsy."""

from __future__ import annotations

import argparse
import logging
import queue
import threading
from typing import cast

from .agent.channels import Channel, Communication
from .agent.loop import Agent
from .agent.models import Message, Status
from .config import AppConfig, bootstrap_home
from .context import RunContext
from .errors import ConfigError, OpsyError, ToolLoadError
from .llm.client import AnthropicClient
from .logs import ROOT_LOGGER_NAME, configure_logging
from .prompts import AGENT_NAME
from .tools import ExecutedCommand, RunRequest, ToolRegistry

LOGGER = logging.getLogger(__name__)

RENDER_POLL_INTERVAL = 0.1

RenderItem = tuple[str, object]


class CLIArgs(argparse.Namespace):
    task: str | None
    config_file: str | None
    tools_dir: str | None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="opsy",
        description="Opsy: AI colleague for operations tasks in the terminal",
    )
    parser.add_argument(
        "--config",
        dest="config_file",
        help="Path to a config file. Takes precedence over OPSY_CONFIG_FILE.",
    )
    parser.add_argument(
        "--tools-dir",
        dest="tools_dir",
        help="Load tool definitions from this directory instead of the built-in set.",
    )
    parser.add_argument("task", nargs="?", help="Task for opsy to complete")
    return parser


def main() -> int:
    parser = build_parser()
    args = cast(CLIArgs, parser.parse_args())

    try:
        bootstrap_home()
        config = AppConfig.from_env(config_file=args.config_file)
        config.validate()
    except ConfigError as exc:
        print(f"Configuration error: {exc}")
        return 1

    task = args.task or input("Task: ").strip()
    if not task:
        print("No task provided.")
        return 1

    handler = configure_logging(config.logging)
    try:
        return _run(config, task, tools_dir=args.tools_dir)
    finally:
        logging.getLogger(ROOT_LOGGER_NAME).removeHandler(handler)
        handler.close()


def _run(config: AppConfig, task: str, *, tools_dir: str | None) -> int:
    communication = Communication()
    client = AnthropicClient(
        api_key=config.anthropic.api_key,
        api_url=config.anthropic.api_url,
        timeout=config.anthropic.request_timeout,
    )
    agent = Agent(client=client, config=config, communication=communication)
    registry = ToolRegistry(config=config.tools, runner=agent, directory=tools_dir)
    try:
        registry.load()
    except ToolLoadError as exc:
        print(f"Error: {exc}")
        return 1

    render_queue: queue.Queue[RenderItem | None] = queue.Queue()
    drains = [
        _start_drain(communication.messages, "message", render_queue),
        _start_drain(communication.commands, "command", render_queue),
        _start_drain(communication.status, "status", render_queue),
    ]

    ctx = RunContext.background()
    request = RunRequest(task=task, tools=registry.get_all())
    outcome: dict[str, object] = {"status": Status.ERROR}
    communication.status.send(Status.READY)
    worker = threading.Thread(
        target=_run_agent,
        args=(agent, request, ctx, communication, outcome),
        name="opsy-agent",
        daemon=True,
    )
    worker.start()

    _render_until_closed(render_queue, len(drains), ctx)
    worker.join()
    for drain in drains:
        drain.join()

    error = outcome.get("error")
    if error is not None:
        print(f"Error: {error}")
    return 0 if outcome["status"] is Status.FINISHED else 1


def _run_agent(
    agent: Agent,
    request: RunRequest,
    ctx: RunContext,
    communication: Communication,
    outcome: dict[str, object],
) -> None:
    status = Status.ERROR
    try:
        outputs = agent.run(request, ctx)
        status = Status.FINISHED
        LOGGER.info("task_finished", extra={"outputs_count": len(outputs)})
    except OpsyError as exc:
        outcome["error"] = exc
        LOGGER.error("task_failed", extra={"error": str(exc)})
    finally:
        outcome["status"] = status
        communication.status.send(status)
        communication.close()


def _start_drain(
    channel: Channel[object],
    kind: str,
    render_queue: queue.Queue[RenderItem | None],
) -> threading.Thread:
    def drain() -> None:
        for item in channel:
            render_queue.put((kind, item))
        render_queue.put(None)

    thread = threading.Thread(target=drain, name=f"opsy-{kind}-drain", daemon=True)
    thread.start()
    return thread


def _render_until_closed(
    render_queue: queue.Queue[RenderItem | None],
    open_channels: int,
    ctx: RunContext,
) -> None:
    while open_channels:
        try:
            item = render_queue.get(timeout=RENDER_POLL_INTERVAL)
            if item is None:
                open_channels -= 1
                continue
            print(render_item(*item))
        except queue.Empty:
            continue
        except KeyboardInterrupt:
            if not ctx.cancelled:
                print("\nCancelling...")
                LOGGER.info("task_cancel_requested")
                ctx.cancel()


def render_item(kind: str, item: object) -> str:
    if kind == "message" and isinstance(item, Message):
        return render_message(item)
    if kind == "command" and isinstance(item, ExecutedCommand):
        return render_command(item)
    if kind == "status" and isinstance(item, Status):
        return render_status(item)
    return str(item)


def render_message(message: Message) -> str:
    return f"[{message.tool or AGENT_NAME}] {message.message}"


def render_command(command: ExecutedCommand) -> str:
    lines = [
        f"$ {command.command}",
        f"  cwd: {command.working_directory}  exit: {command.exit_code}",
    ]
    output = command.output.rstrip()
    if output:
        lines.extend(f"    {line}" for line in output.splitlines())
    return "\n".join(lines)


def render_status(status: Status) -> str:
    return f"--- {status.value} ---"


if __name__ == "__main__":
    raise SystemExit(main())
