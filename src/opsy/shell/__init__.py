"""Shell process execution."""

from .runner import CommandResult, ShellRunner, sanitize_command

__all__ = [
    "CommandResult",
    "ShellRunner",
    "sanitize_command",
]
