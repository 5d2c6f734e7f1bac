"""Confirmation and execution of agent operations found in a reply.

Operations are resolved one at a time, in order of appearance. Each span
in the reply is then replaced by an annotation, so the stored history
only ever holds "(Executed: ...)" or "(Command not executed: ...)" in
place of actionable tokens.
"""

import logging
from pathlib import Path

from . import fmt
from .commands import (
    EXECUTED_CLOSE,
    EXECUTED_OPEN,
    NOT_EXECUTED_OPEN,
    FileOperation,
    ShellOperation,
    find_pending_token,
)
from .errors import CommandNotAllowed
from .guard import blocked_substring, load_ignore_patterns
from .tools import ToolResult, execute_file_operation, execute_shell_command

logger = logging.getLogger(__name__)


def intent(op) -> str:
    return "access file" if isinstance(op, FileOperation) else "run command"


def executed_marker(payload: str) -> str:
    return f"{EXECUTED_OPEN}{payload}{EXECUTED_CLOSE}"


def declined_marker(payload: str) -> str:
    return f"{NOT_EXECUTED_OPEN}{payload}{EXECUTED_CLOSE}"


class OperationRunner:
    """Executes operations against the current settings and working directory."""

    def __init__(self, settings, working_directory):
        self.settings = settings
        self.working_directory = Path(working_directory)

    def __call__(self, op) -> ToolResult:
        if isinstance(op, FileOperation):
            return execute_file_operation(
                op.action,
                op.path,
                op.content,
                allowed_directories=self.settings.allowed_dirs,
                working_directory=self.working_directory,
                ignore_patterns=load_ignore_patterns(self.working_directory),
                ignore_base=self.working_directory,
            )
        return execute_shell_command(
            op.command_line,
            working_directory=self.working_directory,
            disallowed_commands=self.settings.disallowed_commands,
            virtual_environment=self.settings.use_virtual_environment,
        )


def report_result(op, result: ToolResult) -> None:
    """Display the outcome of an executed operation."""
    if result.error is not None:
        fmt.tool_error(str(result.error))
        return
    if isinstance(op, FileOperation):
        fmt.file_result(op.action, op.path, result.data)
        return
    out = result.data
    fmt.command_output(out.stdout, out.stderr, out.returncode)


def resolve_operations(
    text: str,
    operations,
    *,
    confirm,
    runner,
    disallowed_commands=(),
) -> str:
    """Confirm and run each operation, returning text with every span annotated.

    confirm(message) -> bool blocks for the user's answer. Shell operations
    containing a blocked substring are refused without asking. An approved
    operation is marked executed even if it fails.
    """
    pieces = []
    pos = 0
    for op in operations:
        pieces.append(text[pos : op.start])
        pos = op.end

        if isinstance(op, ShellOperation):
            blocked = blocked_substring(op.command_line, disallowed_commands)
            if blocked is not None:
                fmt.tool_error(str(CommandNotAllowed(op.command_line, blocked)))
                pieces.append(declined_marker(op.raw_spec))
                continue

        fmt.operation_request(intent(op), op.raw_spec)
        message = f"AI wants to {intent(op)}: {op.raw_spec}\nAllow this operation?"
        if not confirm(message):
            fmt.operation_declined()
            logger.debug("declined %s", op.raw_spec)
            pieces.append(declined_marker(op.raw_spec))
            continue

        result = runner(op)
        logger.debug("ran %s: succeeded=%s", op.raw_spec, result.succeeded)
        report_result(op, result)
        pieces.append(executed_marker(op.raw_spec))

    pieces.append(text[pos:])
    return "".join(pieces)


SHORTCUT_ANSWERS = ("y", "yes")


def is_shortcut_answer(line: str) -> bool:
    return line.strip().lower() in SHORTCUT_ANSWERS


def run_pending_confirmation(session):
    """Run the first raw token left in the last assistant message.

    Used when the user answers a bare "y"/"yes" after a reply whose
    operation was never resolved. Returns the follow-up AskResult, or None
    when there is nothing to run.
    """
    if not session.settings.agent_enabled:
        return None
    history = session.messages
    if not history or history[-1]["role"] != "assistant":
        return None
    op = find_pending_token(history[-1]["content"], session.settings.document_root)
    if op is None:
        return None

    if isinstance(op, ShellOperation):
        fmt.info(f"Executing command: {op.command_line}")
    result = session.runner(op)
    report_result(op, result)

    session.append_message("user", f"Yes, please execute the command: {op.raw_spec}")
    return session.ask(
        f'I\'ve executed the command "{op.raw_spec}" as you suggested. What\'s next?'
    )


def file_exchange(action: str, path: str, data) -> tuple[str, str]:
    """History entries noting a file operation the user ran by hand."""
    if isinstance(data, bool):
        detail = f"The file exists: {str(data).lower()}."
    elif isinstance(data, list):
        detail = f"The directory contains {len(data)} items."
    elif action == "read":
        detail = f"The file contains {len(data)} characters."
    else:
        detail = data or "The operation was successful."
    return (
        f"I performed a file system {action} on {path}.",
        f"I see you performed a file system {action} on {path}. {detail}",
    )


def command_exchange(command: str, output) -> tuple[str, str]:
    """History entries noting a shell command the user ran by hand."""
    status = "completed successfully" if output.success else "had some errors"
    if output.stdout:
        preview = output.stdout[:200] + ("..." if len(output.stdout) > 200 else "")
        tail = f" with output: {preview}"
    else:
        tail = "."
    return (
        f"I executed the command: {command}",
        f"I see you executed the command: {command}. The command {status}{tail}",
    )
