"""ANSI-formatted stderr output using Rich."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

_console = Console(stderr=True)


def init(*, color: bool = False, no_color: bool = False) -> None:
    """Reconfigure the module-level console from CLI flags.

    Call once at startup, before any output.
    """
    global _console
    kwargs: dict = {"stderr": True}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(**kwargs)


def llm_spinner(label: str = "Thinking"):
    """Return a Rich Status context manager that spins on stderr."""
    return _console.status(f"  {label}", spinner="dots")


def clear_screen() -> None:
    _console.clear()


# -- Routing and reasoning ---------------------------------------------------


def routing(tier: str, model: str, reason: str) -> None:
    line = Text()
    line.append(f"  [{tier}] ", style="cyan")
    line.append(model, style="bold cyan")
    line.append(f"  {reason}", style="dim")
    _console.print(line)


def reasoning_step(number: int, total: int, text: str) -> None:
    _console.print(Rule(f"Reasoning step {number}/{total}", style="yellow"))
    _console.print(Text(text, style="dim italic"))


def reasoning_final() -> None:
    _console.print(Rule("Final response", style="cyan"))


# -- Agent operations --------------------------------------------------------


def operation_request(intent: str, payload: str) -> None:
    line = Text()
    line.append("  \u25b6 AI wants to ", style="bold magenta")
    line.append(f"{intent}: ", style="bold magenta")
    line.append(payload)
    _console.print(line)


def operation_declined() -> None:
    _console.print(Text("  Operation declined.", style="red"))


def file_result(action: str, path: str, data) -> None:
    """Show the outcome of a successful file operation."""
    if action == "exists":
        _console.print(Text(f"  File {path} exists: {str(data).lower()}", style="green"))
    elif action == "list":
        _console.print(Text(f"  Directory contents of {path}:", style="green"))
        for item in data:
            _console.print(Text(f"    {item}"))
    elif action == "read":
        _console.print(
            Panel(Text(data), title=escape(path), border_style="green", expand=False)
        )
    else:
        _console.print(Text(f"  \u2713 {data}", style="green"))


def command_output(stdout: str, stderr: str, returncode: int) -> None:
    """Show captured streams of a finished shell command."""
    body = stdout or "Command executed successfully with no output."
    _console.print(
        Panel(Text(body), title="Command output", border_style="green", expand=False)
    )
    if stderr:
        _console.print(
            Panel(
                Text(stderr),
                title=f"Command error output (exit {returncode})",
                border_style="yellow",
                expand=False,
            )
        )


def tool_error(msg: str) -> None:
    line = Text()
    line.append("  \u2717 ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    _console.print(Text(f"  {msg}", style="dim"))


def context_stats(messages: int, tokens: int) -> None:
    _console.print(Text(f"  context: {messages} messages, ~{tokens} tokens", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)


def repl_banner(provider: str, model: str) -> None:
    _console.print(Text(f"Using {provider} / {model}", style="bold cyan"))
    _console.print(
        Text("Interactive mode. Type /help for commands, /exit or Ctrl-D to quit.", style="dim")
    )
