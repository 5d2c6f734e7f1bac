"""Execution of file operations and shell commands on behalf of the model.

Neither function raises: every failure comes back as a ToolResult whose
error is one of the AgentError subclasses.
"""

import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import AccessDenied, AgentError, CommandNotAllowed, IoError
from .guard import blocked_substring, is_path_allowed, is_path_ignored

logger = logging.getLogger(__name__)

FILE_ACTIONS = ("read", "write", "list", "exists")
VIRTUAL_ENV_PREFIX = "docker run --rm alpine "


@dataclass
class ShellOutput:
    stdout: str
    stderr: str
    success: bool
    returncode: int


@dataclass
class ToolResult:
    """Outcome of one file operation or shell command."""

    succeeded: bool
    data: Any = None
    error: AgentError | None = None

    @classmethod
    def failure(cls, error: AgentError) -> "ToolResult":
        return cls(False, None, error)


def execute_file_operation(
    action: str,
    path: str,
    content: str | None = None,
    *,
    allowed_directories,
    working_directory=None,
    ignore_patterns=(),
    ignore_base=None,
) -> ToolResult:
    """Run one of read, write, list or exists on path.

    Relative paths resolve against working_directory. The action and the
    allow-list are checked before any I/O. Paths matched by ignore_patterns
    (relative to ignore_base) are refused for every action except exists.
    """
    if action not in FILE_ACTIONS:
        return ToolResult.failure(IoError(f"Operation {action} not allowed"))

    target = Path(path).expanduser()
    if not target.is_absolute() and working_directory is not None:
        target = Path(working_directory) / target
    resolved = target.resolve()
    if not is_path_allowed(resolved, allowed_directories):
        return ToolResult.failure(
            AccessDenied(f"Access denied: {path} is outside the allowed directories")
        )
    if (
        action != "exists"
        and ignore_base is not None
        and is_path_ignored(resolved, ignore_patterns, ignore_base)
    ):
        return ToolResult.failure(
            AccessDenied(
                f"Access to {resolved} is blocked by .aiignore rules. "
                f"This file or directory is restricted."
            )
        )

    logger.debug("file operation %s on %s", action, resolved)
    try:
        if action == "read":
            return ToolResult(True, resolved.read_text(encoding="utf-8"))
        if action == "write":
            resolved.parent.mkdir(parents=True, exist_ok=True)
            data = (content or "").encode("utf-8")
            resolved.write_bytes(data)
            return ToolResult(True, f"Wrote {len(data)} bytes to {path}")
        if action == "list":
            return ToolResult(True, sorted(p.name for p in resolved.iterdir()))
        return ToolResult(True, resolved.exists())
    except UnicodeDecodeError:
        return ToolResult.failure(IoError(f"{path}: not a UTF-8 text file"))
    except OSError as e:
        return ToolResult.failure(IoError(f"{path}: {e.strerror or e}"))


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill the process and its session (Unix) or just the process (Windows)."""
    try:
        if sys.platform != "win32":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except OSError:
        pass
    proc.wait()


def execute_shell_command(
    command_line: str,
    *,
    working_directory,
    disallowed_commands,
    virtual_environment: bool = False,
) -> ToolResult:
    """Run command_line through the shell in working_directory.

    Success means "nothing was written to stderr"; the exit status is
    reported in the returned ShellOutput but does not decide success.
    There is no timeout.
    """
    blocked = blocked_substring(command_line, disallowed_commands)
    if blocked is not None:
        return ToolResult.failure(CommandNotAllowed(command_line, blocked))

    cwd = Path(working_directory)
    if not cwd.is_dir():
        return ToolResult.failure(
            IoError(f"working directory does not exist: {working_directory}")
        )

    if virtual_environment:
        command_line = VIRTUAL_ENV_PREFIX + command_line

    if sys.platform == "win32":
        shell_cmd = ["cmd.exe", "/c", command_line]
    else:
        shell_cmd = ["/bin/sh", "-c", command_line]

    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=str(cwd),
        text=True,
        errors="replace",
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True

    logger.debug("running %r in %s", command_line, cwd)
    try:
        proc = subprocess.Popen(shell_cmd, **popen_kwargs)
    except OSError as e:
        return ToolResult.failure(IoError(f"failed to start shell command: {e}"))

    try:
        stdout, stderr = proc.communicate()
    except KeyboardInterrupt:
        _kill_process_tree(proc)
        raise

    output = ShellOutput(
        stdout=stdout,
        stderr=stderr,
        success=stderr == "",
        returncode=proc.returncode,
    )
    return ToolResult(output.success, output)
