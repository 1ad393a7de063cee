"""Prompt text for the top-level agent and for declarative tools."""

from __future__ import annotations

AGENT_NAME = "Opsy"

AGENT_SYSTEM_PROMPT_PARTS = [
    f"You are {AGENT_NAME}, an AI colleague for operations and platform engineering work.",
    (
        "You complete the user's task by delegating to the tools you are given."
        " Each tool is an expert in one command-line program; pick the tool whose"
        " description matches the step you need next."
    ),
    "Call one tool at a time and read its result before deciding on the next step.",
    (
        "Prefer read-only and reversible operations. Do not run destructive"
        " operations unless the task explicitly asks for them."
    ),
    (
        "When a tool reports an error, adjust the inputs and try again or explain"
        " why the task cannot be completed."
    ),
    "When the task is complete, reply with a short summary and do not call any more tools.",
]

TOOL_SYSTEM_PROMPT_PARTS = [
    "You are the {name} tool of {agent}.",
    (
        "You complete the task you are given by running shell commands through the"
        " `exec` tool. Commands run in the `{shell}` shell."
    ),
    "{executable_rule}",
    (
        "Run one command at a time, inspect its output, and continue until the task"
        " is done. Always pass the working_directory input you received to `exec`."
    ),
    "Never ask for interactive input; use non-interactive flags instead.",
    (
        "When you are done, reply with a concise result for the caller: what you did"
        " and the relevant output."
    ),
]

TOOL_USER_PROMPT = """\
Executable: {executable}
Task: {task}

Inputs:
{inputs}
"""


def render_agent_system_prompt(shell: str) -> str:
    return " ".join([*AGENT_SYSTEM_PROMPT_PARTS, f"Commands run in the `{shell}` shell."])


def render_tool_system_prompt(
    *,
    name: str,
    shell: str,
    executable: str | None,
    rules: list[str],
) -> str:
    """Tool-specific rules followed by the behaviour shared by every tool."""
    executable_rule = (
        f"Only run commands that invoke `{executable}`; do not call other programs."
        if executable
        else "Use whichever standard command-line programs the task requires."
    )
    common = " ".join(
        part.format(name=name, agent=AGENT_NAME, shell=shell, executable_rule=executable_rule)
        for part in TOOL_SYSTEM_PROMPT_PARTS
    )
    if not rules:
        return common
    rule_lines = "\n".join(f"- {rule}" for rule in rules)
    return f"Rules:\n{rule_lines}\n\n{common}"


def render_tool_user_prompt(*, executable: str | None, task: str, inputs_json: str) -> str:
    return TOOL_USER_PROMPT.format(
        executable=executable or "(any)",
        task=task,
        inputs=inputs_json,
    )
