"""Shell process execution with process-group timeouts."""

from __future__ import annotations

import locale
import logging
import os
import re
import signal
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

LOGGER = logging.getLogger(__name__)

Interrupted = Callable[[], bool]

POLL_INTERVAL = 0.1
KILL_GRACE_PERIOD = 5.0
SPAWN_FAILED_RETURNCODE = -1

_SECRET_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"(--?(?:password|token|secret|api[-_]?key)\s+)([^\s]+)",
        r"((?:password|token|secret|api[-_]?key)\s*=\s*)([^\s]+)",
    )
]


@dataclass(slots=True)
class CommandResult:
    """Result of a command execution."""

    command: str
    working_directory: str
    returncode: int
    output: str
    started_at: datetime
    completed_at: datetime
    timed_out: bool = False
    cancelled: bool = False
    spawn_error: str | None = None

    @property
    def failed(self) -> bool:
        return (
            self.returncode != 0
            or self.timed_out
            or self.cancelled
            or self.spawn_error is not None
        )

    @property
    def error_message(self) -> str | None:
        """Describe the failure the way the process layer reports it."""
        if self.spawn_error is not None:
            return self.spawn_error
        if self.timed_out or self.cancelled:
            return "signal: killed"
        if self.returncode != 0:
            return f"exit status {self.returncode}"
        return None


class ShellRunner:
    """Runs ``<shell> -c <command>`` in its own process group.

    Stdout and stderr are captured together. On timeout or interruption the
    whole process group is killed so that children spawned by the command do
    not outlive it.
    """

    def __init__(self, shell: str) -> None:
        self.shell = shell

    def execute(
        self,
        command: str,
        *,
        cwd: str,
        timeout: float | None = None,
        interrupted: Interrupted | None = None,
    ) -> CommandResult:
        self.log_request(command, cwd=cwd, timeout=timeout)
        started_at = _now()
        try:
            process = subprocess.Popen(
                [self.shell, "-c", command],
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            result = CommandResult(
                command=command,
                working_directory=cwd,
                returncode=SPAWN_FAILED_RETURNCODE,
                output="",
                started_at=started_at,
                completed_at=_now(),
                spawn_error=_describe_spawn_error(exc, self.shell, cwd),
            )
            self.log_result(result)
            return result

        deadline = None if timeout is None else time.monotonic() + timeout
        timed_out = False
        cancelled = False
        payload = b""
        while True:
            wait_for = POLL_INTERVAL
            if deadline is not None:
                wait_for = max(0.0, min(POLL_INTERVAL, deadline - time.monotonic()))
            try:
                payload, _ = process.communicate(timeout=wait_for)
                break
            except subprocess.TimeoutExpired:
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                elif interrupted is not None and interrupted():
                    cancelled = True
                else:
                    continue
            _kill_group(process)
            payload = _collect_after_kill(process)
            break

        result = CommandResult(
            command=command,
            working_directory=cwd,
            returncode=process.returncode,
            output=_normalize_output(payload),
            started_at=started_at,
            completed_at=_now(),
            timed_out=timed_out,
            cancelled=cancelled,
        )
        self.log_result(result)
        return result

    def log_request(self, command: str, *, cwd: str, timeout: float | None) -> None:
        LOGGER.debug(
            "command_request",
            extra={
                "shell": self.shell,
                "command": sanitize_command(command),
                "working_directory": cwd,
                "timeout": timeout,
            },
        )

    def log_result(self, result: CommandResult) -> None:
        log = LOGGER.error if result.failed else LOGGER.info
        log(
            "command_result",
            extra={
                "shell": self.shell,
                "command": sanitize_command(result.command),
                "returncode": result.returncode,
                "timed_out": result.timed_out,
                "cancelled": result.cancelled,
                "spawn_error": result.spawn_error,
                "duration_seconds": round(
                    (result.completed_at - result.started_at).total_seconds(), 4
                ),
                "output_length": len(result.output),
            },
        )


def sanitize_command(command: str) -> str:
    sanitized = command
    for pattern in _SECRET_PATTERNS:
        sanitized = pattern.sub(r"\1***", sanitized)
    return sanitized


def _kill_group(process: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _collect_after_kill(process: subprocess.Popen[bytes]) -> bytes:
    # A detached grandchild may still hold the pipe open.
    try:
        payload, _ = process.communicate(timeout=KILL_GRACE_PERIOD)
    except subprocess.TimeoutExpired as exc:
        LOGGER.warning("command_output_abandoned", extra={"pid": process.pid})
        process.wait()
        if process.stdout is not None:
            process.stdout.close()
        return exc.output or b""
    return payload or b""


def _describe_spawn_error(exc: OSError | ValueError, shell: str, cwd: str) -> str:
    reason = (getattr(exc, "strerror", None) or str(exc)).lower()
    if getattr(exc, "filename", None) == cwd:
        return f"chdir {cwd}: {reason}"
    return f"fork/exec {shell}: {reason}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
