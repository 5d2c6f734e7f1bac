import argparse
import itertools
import logging
import sys
from importlib import metadata
from pathlib import Path

from dotenv import load_dotenv

from . import fmt
from .commands import FileOperation, ShellOperation, parse_fs_payload
from .config import (
    _UNSET,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
    save_settings,
    settings_from_args,
)
from .errors import AgentError, ConfigError, ProviderUnavailable
from .guard import is_path_allowed
from .menu import SettingsMenu
from .pipeline import (
    command_exchange,
    file_exchange,
    is_shortcut_answer,
    report_result,
    run_pending_confirmation,
)
from .providers import PROVIDERS, resolve_api_key
from .review import analyze_directory, build_review_prompt
from .session import ConversationSession

MAX_INPUT_HISTORY = 50

EXIT_COMMANDS = ("/exit", "/quit", "/end", "/q")


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="qa",
        usage="%(prog)s [options] [question]",
        description="Terminal chat with hosted LLMs. Models can suggest file and "
        "shell operations, which run only after you confirm them.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Ask a single question and exit instead of starting the REPL.",
    )
    parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=_UNSET,
        help="LLM provider (default: anthropic).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Powerful-tier model for the selected provider.",
    )
    parser.add_argument(
        "--light-model",
        type=str,
        default=None,
        help="Light-tier model for the selected provider, used by routing.",
    )
    parser.add_argument(
        "--max-context-messages",
        type=int,
        default=_UNSET,
        help="Keep at most twice this many messages in history (default: 100).",
    )
    parser.add_argument(
        "--smart",
        dest="routing_enabled",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Route simple questions to the light model.",
    )
    parser.add_argument(
        "--routing-threshold",
        type=float,
        default=_UNSET,
        help="Minimum classifier confidence for the light model (default: 0.7).",
    )
    parser.add_argument(
        "--think",
        dest="reasoning_enabled",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Refine answers with multi-step reasoning on the powerful model.",
    )
    parser.add_argument(
        "--reasoning-iterations",
        type=int,
        default=_UNSET,
        help="Number of reasoning turns, 1 to 5 (default: 3).",
    )
    parser.add_argument(
        "--no-agent",
        dest="agent_enabled",
        action="store_const",
        const=False,
        default=_UNSET,
        help="Don't offer file and shell operations to the model.",
    )
    parser.add_argument(
        "--docker",
        dest="use_virtual_environment",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Run shell commands inside a throwaway alpine container.",
    )
    parser.add_argument(
        "--allow-dir",
        type=str,
        action="append",
        default=None,
        help="Another directory the model may access besides --cwd (repeatable).",
    )
    parser.add_argument(
        "--cwd",
        type=str,
        default=".",
        help="Working directory for commands and relative paths (default: current directory).",
    )
    parser.add_argument(
        "--print-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Disable ANSI color even when stderr is a TTY.",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_const",
        const=True,
        default=_UNSET,
        help="Suppress diagnostics; only print answers.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log debug messages to stderr.",
    )

    return parser


def confirm_prompt(message: str) -> bool:
    """Ask a yes/no question on the terminal. Defaults to no."""
    from prompt_toolkit import prompt

    if not sys.stdin.isatty():
        return False
    try:
        answer = prompt(f"{message} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("qaterm")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.print_config:
        print(generate_config())
        sys.exit(0)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(name)s: %(message)s",
    )

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        print(file=sys.stderr)  # newline after ^C
        sys.exit(130)


def _run_main(args):
    base_dir = Path(args.cwd).expanduser().resolve()
    if not base_dir.is_dir():
        raise ConfigError(f"not a directory: {args.cwd}")

    load_dotenv(base_dir / ".env")
    load_dotenv()

    config = load_config(base_dir)
    apply_config_to_args(args, config)
    args.verbose = not args.quiet
    fmt.init(color=args.color, no_color=args.no_color)

    settings = settings_from_args(args, base_dir, config)

    try:
        resolve_api_key(settings.provider)
    except ProviderUnavailable as e:
        if args.question is not None:
            raise
        fmt.warning(str(e))

    session = ConversationSession(
        settings,
        confirm=confirm_prompt,
        working_directory=base_dir,
        display=print,
        verbose=args.verbose,
    )

    if args.question is not None:
        result = session.ask(args.question)
        if result.error is not None:
            print(result.answer)
            sys.exit(1)
        return

    repl_loop(session, verbose=args.verbose)


def _persist(settings) -> None:
    try:
        save_settings(settings)
    except ConfigError as e:
        fmt.warning(str(e))


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help, /h            Show this help message\n"
        "  /exit, /quit, /q     Exit the REPL\n"
        "  /clear, /c           Reset the conversation and clear the screen\n"
        "  /cls, /clearscreen   Clear the screen only\n"
        "  /menu, /m            Change provider, models and other settings\n"
        "  /d <question>        Ask the powerful model directly, skipping routing\n"
        "  /fs, /f <op>:<path>[:content]  Run read, write, list or exists yourself\n"
        "  /exec, /e <command>  Run a shell command yourself\n"
        "  /terminal, /t        Toggle terminal mode (input runs as shell commands)\n"
        "  /smart               Toggle routing between light and powerful models\n"
        "  /think               Toggle multi-step reasoning\n"
        "  /add-dir <path>      Allow the model to access another directory\n"
        "  /home                Go back to the first allowed directory\n"
        "  /review [path]       Ask for a review of a project directory\n"
        "  y, yes               Run the operation suggested in the last reply"
    )


def _repl_clear(session: ConversationSession) -> None:
    dropped = session.clear()
    fmt.clear_screen()
    fmt.info(f"context cleared ({dropped} messages removed)")


def _repl_add_dir(path_str: str, session: ConversationSession) -> None:
    """Add a directory to the allow-list and save it."""
    path_str = path_str.strip()
    if not path_str:
        fmt.warning("/add-dir requires a path argument")
        return
    before = len(session.settings.allowed_dirs)
    try:
        p = session.settings.add_allowed_directory(path_str)
    except ConfigError as e:
        fmt.warning(str(e))
        return
    if len(session.settings.allowed_dirs) == before:
        fmt.info(f"already allowed: {p}")
        return
    _persist(session.settings)
    fmt.info(f"added to allowed directories: {p}")


def _repl_toggle(session: ConversationSession, key: str, label: str) -> None:
    value = not getattr(session.settings, key)
    session.settings.update(**{key: value})
    _persist(session.settings)
    fmt.info(f"{label} {'enabled' if value else 'disabled'}")


def _repl_home(session: ConversationSession) -> None:
    session.working_directory = session.settings.document_root
    fmt.info(f"working directory: {session.working_directory}")


def _repl_terminal(session: ConversationSession, enabled: bool) -> bool:
    """Switch terminal mode on or off and return the new state."""
    if enabled and not session.settings.agent_enabled:
        fmt.warning("file and terminal operations are disabled (see /menu)")
        return False
    if enabled:
        fmt.info('terminal mode: input runs as shell commands, "exit" or /t to leave')
        fmt.info(f"current directory: {session.working_directory}")
    else:
        fmt.info("terminal mode off")
    return enabled


def _repl_cd(arg: str, session: ConversationSession) -> None:
    if not arg:
        session.working_directory = session.settings.document_root
        return
    target = Path(arg).expanduser()
    if not target.is_absolute():
        target = session.working_directory / target
    target = target.resolve()
    if not target.is_dir():
        fmt.warning(f"not a directory: {target}")
    elif not is_path_allowed(target, session.settings.allowed_dirs):
        fmt.warning(f"access denied: {target} is outside the allowed directories")
    else:
        session.working_directory = target


def _repl_terminal_command(line: str, session: ConversationSession) -> None:
    """Run a line typed in terminal mode. Not recorded in history."""
    if line == "cd" or line.startswith("cd "):
        _repl_cd(line[2:].strip(), session)
    else:
        fmt.info(f"Executing: {line}")
        op = ShellOperation(line, line, 0, len(line), line)
        report_result(op, session.runner(op))
    fmt.info(f"current directory: {session.working_directory}")


def _repl_fs(arg: str, session: ConversationSession, confirm) -> None:
    """Run a file operation typed by the user and note it in history."""
    parsed = parse_fs_payload(arg)
    if parsed is None:
        fmt.warning("usage: /fs <operation>:<path>[:content]")
        return
    action, path, content = parsed
    target = Path(path).expanduser()
    if not target.is_absolute():
        target = session.working_directory / target

    if not confirm(f"Confirm {action} operation on {target}?"):
        fmt.info("Operation cancelled by user.")
        return

    op = FileOperation(arg, arg, 0, len(arg), action, str(target), content)
    result = session.runner(op)
    report_result(op, result)
    if result.succeeded:
        session.record_exchange(*file_exchange(action, str(target), result.data))


def _repl_exec(arg: str, session: ConversationSession, confirm) -> None:
    """Run a shell command typed by the user and note it in history."""
    command = arg.strip()
    if not command:
        fmt.warning("usage: /exec <command>")
        return
    where = " in virtual environment" if session.settings.use_virtual_environment else ""
    if not confirm(f"Run command{where}: {command}?"):
        fmt.info("Command execution cancelled by user.")
        return

    fmt.info("Executing command...")
    op = ShellOperation(command, command, 0, len(command), command)
    result = session.runner(op)
    report_result(op, result)
    if result.error is None:
        session.record_exchange(*command_exchange(command, result.data))


def _repl_review(arg: str, session: ConversationSession):
    """Collect a directory's files and ask the powerful model to review them."""
    target = Path(arg.strip() or ".").expanduser()
    if not target.is_absolute():
        target = session.working_directory / target
    target = target.resolve()
    if not target.is_dir():
        fmt.warning(f"not a directory: {target}")
        return None
    if not is_path_allowed(target, session.settings.allowed_dirs):
        fmt.warning(f"access denied: {target} is outside the allowed directories")
        return None

    with fmt.llm_spinner(f"Analyzing directory {target}"):
        analysis = analyze_directory(target)
    fmt.info(f"directory analysis complete: {len(analysis.files)} files")
    for err in analysis.errors:
        fmt.warning(err)
    return session.ask(build_review_prompt(analysis), force_powerful=True)


def _show_failure(result) -> None:
    if result is not None and result.error is not None:
        print(result.answer)


def repl_loop(
    session: ConversationSession,
    *,
    verbose: bool,
    confirm=confirm_prompt,
    history_path: Path | None = None,
) -> None:
    """Interactive read-eval-print loop."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory

    class CappedFileHistory(FileHistory):
        def load_history_strings(self):
            return itertools.islice(super().load_history_strings(), MAX_INPUT_HISTORY)

    if history_path is None:
        history_path = global_config_dir() / "history"
    history_path.parent.mkdir(parents=True, exist_ok=True)
    prompt_session = PromptSession(
        history=CappedFileHistory(str(history_path)),
        enable_history_search=True,
    )

    settings = session.settings
    if verbose:
        fmt.repl_banner(settings.provider, settings.model)

    terminal = False
    while True:
        if terminal:
            prompt_text = FormattedText(
                [("bold fg:ansiyellow", f"{session.working_directory}> ")]
            )
        else:
            prompt_text = FormattedText([("bold fg:ansigreen", "qa> ")])
        try:
            print(file=sys.stderr)  # blank line before prompt
            line = prompt_session.prompt(prompt_text)
        except EOFError:
            print(file=sys.stderr)  # newline after ^D
            break

        line = line.strip()
        if not line:
            continue

        if terminal and not line.startswith("/"):
            if line.lower() == "exit":
                terminal = _repl_terminal(session, False)
            else:
                _repl_terminal_command(line, session)
            continue

        cmd_parts = line.split(None, 1)
        cmd = cmd_parts[0].lower()
        cmd_arg = cmd_parts[1] if len(cmd_parts) > 1 else ""

        if cmd in EXIT_COMMANDS:
            fmt.info("Goodbye!")
            break
        elif cmd in ("/help", "/h"):
            _repl_help()
        elif cmd in ("/clear", "/c"):
            _repl_clear(session)
        elif cmd in ("/cls", "/clearscreen"):
            fmt.clear_screen()
        elif cmd in ("/menu", "/m"):
            SettingsMenu(settings).run()
        elif cmd == "/smart":
            _repl_toggle(session, "routing_enabled", "routing")
        elif cmd == "/think":
            _repl_toggle(session, "reasoning_enabled", "reasoning")
        elif cmd == "/add-dir":
            _repl_add_dir(cmd_arg, session)
        elif cmd == "/home":
            _repl_home(session)
        elif cmd in ("/terminal", "/t"):
            terminal = _repl_terminal(session, not terminal)
        elif cmd in ("/fs", "/f", "/exec", "/e") and not settings.agent_enabled:
            fmt.warning("file and terminal operations are disabled (see /menu)")
        elif cmd in ("/fs", "/f"):
            _repl_fs(cmd_arg, session, confirm)
        elif cmd in ("/exec", "/e"):
            _repl_exec(cmd_arg, session, confirm)
        elif cmd == "/review":
            _show_failure(_repl_review(cmd_arg, session))
        elif cmd == "/d":
            if not cmd_arg:
                fmt.warning("/d requires a question")
                continue
            _show_failure(session.ask(cmd_arg, force_powerful=True))
        elif is_shortcut_answer(line):
            result = run_pending_confirmation(session)
            if result is None:
                result = session.ask(line)
            _show_failure(result)
        else:
            _show_failure(session.ask(line))


if __name__ == "__main__":
    main()
