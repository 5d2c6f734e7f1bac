"""Tests for the fmt module (ANSI-formatted output helpers)."""

from io import StringIO

from rich.console import Console

from qaterm import fmt


def _capture(func, *args, **kwargs):
    """Call a fmt function with a captured console and return plain-text output."""
    buf = StringIO()
    old = fmt._console
    fmt._console = Console(file=buf, no_color=True, width=80)
    try:
        func(*args, **kwargs)
    finally:
        fmt._console = old
    return buf.getvalue()


class TestRouting:
    def test_tier_model_reason(self):
        out = _capture(fmt.routing, "light", "gpt-3.5-turbo", "Using light model")
        assert "[light]" in out
        assert "gpt-3.5-turbo" in out
        assert "Using light model" in out


class TestReasoning:
    def test_step(self):
        out = _capture(fmt.reasoning_step, 2, 3, "consider edge cases")
        assert "Reasoning step 2/3" in out
        assert "consider edge cases" in out

    def test_final(self):
        assert "Final response" in _capture(fmt.reasoning_final)


class TestOperations:
    def test_request(self):
        out = _capture(fmt.operation_request, "run command", "ls -la")
        assert "AI wants to run command: ls -la" in out

    def test_declined(self):
        assert "Operation declined." in _capture(fmt.operation_declined)

    def test_file_exists(self):
        out = _capture(fmt.file_result, "exists", "/tmp/a", False)
        assert "File /tmp/a exists: false" in out

    def test_file_list(self):
        out = _capture(fmt.file_result, "list", "/tmp", ["a.txt", "b.txt"])
        assert "Directory contents of /tmp:" in out
        assert "a.txt" in out
        assert "b.txt" in out

    def test_file_read_panel(self):
        out = _capture(fmt.file_result, "read", "/tmp/[x].txt", "line one")
        assert "/tmp/[x].txt" in out
        assert "line one" in out

    def test_file_write(self):
        out = _capture(fmt.file_result, "write", "/tmp/a", "Wrote 3 bytes to /tmp/a")
        assert "Wrote 3 bytes to /tmp/a" in out

    def test_command_output(self):
        out = _capture(fmt.command_output, "hello\n", "", 0)
        assert "Command output" in out
        assert "hello" in out
        assert "error output" not in out

    def test_command_no_output(self):
        out = _capture(fmt.command_output, "", "", 0)
        assert "no output" in out

    def test_command_stderr(self):
        out = _capture(fmt.command_output, "", "boom", 2)
        assert "Command error output (exit 2)" in out
        assert "boom" in out

    def test_markup_not_interpreted(self):
        out = _capture(fmt.tool_error, "[bold]not markup[/bold]")
        assert "[bold]not markup[/bold]" in out


class TestDiagnostics:
    def test_warning(self):
        out = _capture(fmt.warning, "careful")
        assert "Warning: careful" in out

    def test_error(self):
        assert "Error: broken" in _capture(fmt.error, "broken")

    def test_context_stats(self):
        out = _capture(fmt.context_stats, 4, 120)
        assert "4 messages" in out
        assert "~120 tokens" in out

    def test_banner(self):
        out = _capture(fmt.repl_banner, "openai", "gpt-4o")
        assert "Using openai / gpt-4o" in out
        assert "/help" in out


class TestInit:
    def test_no_color(self):
        old = fmt._console
        try:
            fmt.init(no_color=True)
            assert fmt._console.no_color
        finally:
            fmt._console = old

    def test_force_color(self):
        old = fmt._console
        try:
            fmt.init(color=True)
            assert fmt._console.is_terminal
        finally:
            fmt._console = old
